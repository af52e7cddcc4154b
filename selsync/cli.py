"""selsync CLI — the main entry point for the selective-sync demo."""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from selsync import __version__

console = Console()


def _setup_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    # Per-request lines from the HTTP client are noise next to our own logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _fail(error, code: int = 1):
    console.print(f"[red]Error:[/] {error}")
    hint = getattr(error, "hint", "")
    if hint:
        console.print(f"[dim]Hint:[/] {hint}")
    sys.exit(code)


class _Components:
    """Everything one command needs, wired from a ``SelsyncConfig``."""

    def __init__(self, config, dry_run: bool = False, on_sample=None):
        from selsync.change.driver import ChangeDriver
        from selsync.change.packaging import make_packager
        from selsync.change.record_store import GitRecordStore
        from selsync.cleanup.compensating import CompensatingCleanup
        from selsync.probe.kubectl import KubectlStatusAccessor
        from selsync.probe.status_probe import StatusProbe
        from selsync.registry.nexus import NexusRegistry
        from selsync.runtime.clock import Clock
        from selsync.runtime.commands import CommandRunner
        from selsync.runtime.retry import RetryingExecutor
        from selsync.watch.phase_detector import PhaseDetector

        self.config = config
        self.clock = Clock()
        self.executor = RetryingExecutor(
            max_attempts=int(config.retry.max_attempts),
            initial_delay=float(config.retry.initial_delay),
            clock=self.clock,
        )
        self.probe = StatusProbe(KubectlStatusAccessor(config.cluster))
        self.detector = PhaseDetector.from_config(self.probe, config.watch, clock=self.clock, on_sample=on_sample)
        self.record_store = GitRecordStore(config.repo.root_path, remote=config.repo.remote, executor=self.executor)
        self.registry = NexusRegistry(config.registry)
        self.driver = ChangeDriver(
            config,
            record_store=self.record_store,
            packager=make_packager(config.demo.packager, CommandRunner(), self.executor),
            registry=self.registry,
            executor=self.executor,
        )
        self.cleanup = CompensatingCleanup(
            config,
            record_store=self.record_store,
            registry=self.registry,
            detector=self.detector,
            dry_run=dry_run,
        )

    def close(self):
        self.registry.close()


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False), help="YAML config file")
@click.pass_context
def main(ctx, config_path: str | None):
    """selsync — GitOps selective-sync demo.

    Scales one Helm-packaged application, publishes its chart to Nexus,
    watches Argo CD detect and converge the change, checks that a sibling
    application was left alone, and rolls everything back.
    """
    ctx.obj = {"config_path": config_path}


def _load(ctx):
    from selsync.config import load_config
    from selsync.errors import ConfigError

    try:
        return load_config(ctx.obj["config_path"])
    except ConfigError as e:
        _fail(e)


# ── Demo ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--dry-run", "-n", is_flag=True, help="Print the intended actions without changing anything")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings, errors and results")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation and run cleanup automatically")
@click.option("--no-cleanup", is_flag=True, help="Leave the change in place")
@click.pass_context
def demo(ctx, dry_run: bool, quiet: bool, yes: bool, no_cleanup: bool):
    """Run the selective-sync demo end to end."""
    from selsync.demo.orchestrator import DemoOrchestrator, CleanupMode, EXIT_CANCELLED
    from selsync.demo.render import render_outcome
    from selsync.errors import SelsyncError
    from selsync.runtime.clock import CancellationToken

    _setup_logging(quiet)
    config = _load(ctx)
    changed, control = config.demo.changed_app, config.demo.control_app

    if not quiet:
        title = "Dry run" if dry_run else "Demo"
        console.print(
            f"\n[bold blue]selsync[/] — {title}: scale [cyan]{changed}[/], "
            f"control [cyan]{control}[/]\n"
        )

    spinner = None

    def on_sample(phase, elapsed, status):
        if spinner is not None:
            spinner.update(f"{phase.value} {elapsed:.0f}s  {status.describe()}")

    def confirm(question: str) -> bool:
        if spinner is not None:
            spinner.stop()
        answer = click.confirm(question, default=True)
        if spinner is not None:
            spinner.start()
        return answer

    if no_cleanup:
        mode = CleanupMode.SKIP
    elif yes:
        mode = CleanupMode.AUTO
    else:
        mode = CleanupMode.ASK

    try:
        components = _Components(config, dry_run=dry_run, on_sample=on_sample)
    except SelsyncError as e:
        _fail(e)

    orchestrator = DemoOrchestrator(
        config,
        driver=components.driver,
        detector=components.detector,
        probe=components.probe,
        cleanup=components.cleanup,
        confirm=confirm,
        clock=components.clock,
    )
    token = CancellationToken()

    try:
        if quiet or dry_run:
            outcome = orchestrator.run(dry_run=dry_run, cleanup_mode=mode, token=token)
        else:
            with console.status("Working...") as spinner:
                outcome = orchestrator.run(dry_run=dry_run, cleanup_mode=mode, token=token)
            spinner = None
    except KeyboardInterrupt:
        token.cancel()
        console.print("\n[yellow]Interrupted.[/] Run 'selsync cleanup' if a change was pushed.")
        sys.exit(EXIT_CANCELLED)
    finally:
        components.close()

    render_outcome(console, outcome, changed, control)
    sys.exit(outcome.exit_code)


# ── Cleanup ──────────────────────────────────────────────────────────


@main.command()
@click.option("--app", default=None, help="Only consider changes to this application")
@click.option("--dry-run", "-n", is_flag=True, help="Print the intended actions without changing anything")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings, errors and results")
@click.pass_context
def cleanup(ctx, app: str | None, dry_run: bool, yes: bool, quiet: bool):
    """Roll back the most recent demo change found in history."""
    from selsync.demo.orchestrator import EXIT_CANCELLED, EXIT_CLEANUP_FAILED
    from selsync.demo.render import render_cleanup
    from selsync.errors import SelsyncError
    from selsync.runtime.clock import CancellationToken

    _setup_logging(quiet)
    config = _load(ctx)
    try:
        components = _Components(config, dry_run=dry_run)
    except SelsyncError as e:
        _fail(e)

    try:
        record = components.cleanup.find_record(app)
        if record is None:
            console.print("[yellow]Nothing to clean up: no demo change commit found.[/]")
            return

        console.print(f"\n[bold blue]selsync[/] — Cleanup: {record.subject} ({record.commit_sha[:8]})\n")
        if not dry_run and not yes:
            if not click.confirm("Roll back this change?", default=True):
                console.print("Cleanup cancelled.")
                return

        token = CancellationToken()
        try:
            report = components.cleanup.rollback(record, token)
        except KeyboardInterrupt:
            token.cancel()
            sys.exit(EXIT_CANCELLED)
    finally:
        components.close()

    if dry_run:
        for i, action in enumerate(report.messages, 1):
            console.print(f"  {i}. {action}", highlight=False, soft_wrap=True)
        console.print("[yellow]No changes were made.[/]")
        return

    render_cleanup(console, report)
    console.print(Panel(report.summary(), title="Cleanup Result"))
    if not report.ok:
        sys.exit(EXIT_CLEANUP_FAILED)


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@click.argument("apps", nargs=-1)
@click.pass_context
def status(ctx, apps: tuple):
    """Show the current Argo CD status of APPS (default: the demo pair)."""
    from selsync.demo.render import status_table
    from selsync.probe.kubectl import KubectlStatusAccessor
    from selsync.probe.status_probe import StatusProbe

    _setup_logging(quiet=True)
    config = _load(ctx)
    names = list(apps) or [config.demo.changed_app, config.demo.control_app]

    probe = StatusProbe(KubectlStatusAccessor(config.cluster))
    statuses = {name: probe.fetch(name) for name in names}
    console.print(status_table("Applications", statuses))

    unknown = [name for name, s in statuses.items() if s.is_unknown]
    if unknown:
        console.print(f"[yellow]No status for:[/] {', '.join(unknown)} (is the cluster reachable?)")


# ── Scale ────────────────────────────────────────────────────────────


@main.command()
@click.argument("app")
@click.argument("replicas", type=click.IntRange(min=0))
@click.option("--bump", default=None, type=click.Choice(["patch", "minor", "major"]), help="Version bump kind")
@click.option("--dry-run", "-n", is_flag=True, help="Print the intended actions without changing anything")
@click.pass_context
def scale(ctx, app: str, replicas: int, bump: str | None, dry_run: bool):
    """Scale APP to REPLICAS, publish its chart and push, without watching."""
    from selsync.errors import ChangeError, SelsyncError

    _setup_logging(quiet=False)
    config = _load(ctx)
    bump_kind = bump or config.demo.bump_kind

    try:
        components = _Components(config, dry_run=dry_run)
    except SelsyncError as e:
        _fail(e)

    try:
        if dry_run:
            plan = components.driver.plan(app, replicas, bump_kind)
            for i, action in enumerate(plan.actions, 1):
                console.print(f"  {i}. {action}", highlight=False, soft_wrap=True)
            console.print("[yellow]No changes were made.[/]")
            return
        record = components.driver.apply(app, replicas, bump_kind)
    except ChangeError as e:
        _fail(e)
    finally:
        components.close()

    console.print(
        f"\n[green]Scaled {record.resource_id}:[/] {record.previous_value} -> {record.new_value} replicas, "
        f"chart {record.published_artifact_version} ({record.commit_sha[:8]})"
    )


if __name__ == "__main__":
    main()
