"""Rich rendering for demo results."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from selsync.change.driver import ChangePlan
from selsync.models.records import CleanupReport
from selsync.models.status import HealthState, Status, SyncState, WatchResult

from selsync.demo.orchestrator import DemoOutcome, SelectiveSyncAnalysis, Snapshot

_SYNC_STYLE = {SyncState.SYNCED: "green", SyncState.PENDING: "yellow", SyncState.UNKNOWN: "dim"}
_HEALTH_STYLE = {
    HealthState.HEALTHY: "green",
    HealthState.PROGRESSING: "yellow",
    HealthState.DEGRADED: "red",
    HealthState.MISSING: "red",
    HealthState.SUSPENDED: "yellow",
    HealthState.UNKNOWN: "dim",
}


def _mark(ok: bool) -> str:
    return "[green]v[/]" if ok else "[yellow]![/]"


def status_row(name: str, status: Status) -> list[str]:
    replicas = "?" if status.observed_replica_count is None else str(status.observed_replica_count)
    sync = _SYNC_STYLE[status.sync_state]
    health = _HEALTH_STYLE[status.health_state]
    return [
        name,
        f"[{sync}]{status.sync_state.value}[/]",
        f"[{health}]{status.health_state.value}[/]",
        status.observed_revision or "?",
        replicas,
    ]


def status_table(title: str, statuses: dict[str, Status]) -> Table:
    table = Table(title=title)
    table.add_column("Application", style="cyan")
    table.add_column("Sync")
    table.add_column("Health")
    table.add_column("Revision")
    table.add_column("Replicas", justify="right")
    for name, status in statuses.items():
        table.add_row(*status_row(name, status))
    return table


def render_snapshot(console: Console, title: str, snapshot: Snapshot, changed: str, control: str) -> None:
    console.print(status_table(title, {changed: snapshot.changed, control: snapshot.control}))


def render_plan(console: Console, plan: ChangePlan, cleanup_plan: list[str]) -> None:
    lines = [f"  {i}. {action}" for i, action in enumerate(plan.actions, 1)]
    console.print(Panel("\n".join(lines), title="[bold]Dry run: change[/]", border_style="blue"))
    console.print("[dim]Commit message:[/]")
    console.print(plan.commit_message.rstrip(), highlight=False)
    if cleanup_plan:
        lines = [f"  {i}. {action}" for i, action in enumerate(cleanup_plan, 1)]
        console.print(Panel("\n".join(lines), title="[bold]Dry run: cleanup[/]", border_style="blue"))
    console.print("[yellow]No changes were made.[/]")


def render_watch(console: Console, watch: WatchResult) -> None:
    table = Table(title="Watch")
    table.add_column("Phase", style="cyan")
    table.add_column("Result")
    table.add_column("Elapsed", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Final status")
    for result in (watch.detection, watch.convergence):
        if result is None:
            continue
        if result.cancelled:
            outcome = "[yellow]cancelled[/]"
        elif result.timed_out:
            outcome = "[red]timed out[/]"
        elif result.relaxed:
            outcome = "[green]ok[/] [dim](health settling)[/]"
        else:
            outcome = "[green]ok[/]"
        table.add_row(
            result.phase.value,
            outcome,
            f"{result.elapsed_seconds:.0f}s",
            str(result.samples),
            result.final_status.describe(),
        )
    console.print(table)


def render_analysis(console: Console, analysis: SelectiveSyncAnalysis, changed: str, control: str) -> None:
    console.print("\n[bold]Selective sync[/]")
    console.print(f"  {_mark(analysis.changed_converged)} {changed} converged")
    console.print(f"  {_mark(analysis.changed_replicas_ok)} {changed} shows the new replica count")
    console.print(f"  {_mark(analysis.control_revision_unchanged)} {control} revision unchanged")
    console.print(f"  {_mark(analysis.control_replicas_unchanged)} {control} replicas unchanged")
    if analysis.selective_sync_ok:
        console.print("  [green]Only the changed application was synced.[/]")


def render_cleanup(console: Console, report: CleanupReport) -> None:
    table = Table(title="Cleanup")
    table.add_column("Step", style="cyan")
    table.add_column("Outcome")
    for step, value in (
        ("Local revert", report.local_revert),
        ("Re-convergence", report.convergence),
        ("Registry", report.remote_cleanup),
        ("Local package", report.local_package),
    ):
        style = "yellow" if "warning" in value else ("red" if "failed" in value else "green")
        table.add_row(step, f"[{style}]{value}[/]")
    console.print(table)
    for message in report.messages:
        console.print(f"  [dim]{message}[/]", highlight=False)
    for warning in report.warnings:
        console.print(f"  [yellow]![/] {warning}", highlight=False)


def render_failure(console: Console, outcome: DemoOutcome) -> None:
    lines = [f"[bold]Failed phase:[/] {outcome.failed_phase or 'unknown'}"]
    if outcome.message:
        lines.append(outcome.message)
    if outcome.last_status is not None:
        lines.append(f"[bold]Last status:[/] {outcome.last_status.describe()}")
    if outcome.record is not None and outcome.record.commit_sha:
        lines.append(f"[bold]Change commit:[/] {outcome.record.commit_sha[:8]}")
    if outcome.hint:
        lines.append(f"[bold]Hint:[/] {outcome.hint}")
    console.print(Panel("\n".join(lines), title="[red]Demo did not complete[/]", border_style="red"))


def render_outcome(console: Console, outcome: DemoOutcome, changed: str, control: str) -> None:
    """Print everything the run produced, in order."""
    if outcome.before is not None and outcome.plan is None:
        render_snapshot(console, "Before", outcome.before, changed, control)
    if outcome.plan is not None:
        render_snapshot(console, "Current state", outcome.before, changed, control)
        render_plan(console, outcome.plan, outcome.cleanup_plan)
    if outcome.watch is not None:
        render_watch(console, outcome.watch)
    if outcome.after is not None:
        render_snapshot(console, "After", outcome.after, changed, control)
    if outcome.analysis is not None:
        render_analysis(console, outcome.analysis, changed, control)
    if outcome.cleanup is not None:
        render_cleanup(console, outcome.cleanup)

    if not outcome.ok:
        render_failure(console, outcome)
    elif outcome.warnings:
        console.print(f"\n[yellow]Completed with {len(outcome.warnings)} warning(s).[/]")
    elif not outcome.dry_run:
        console.print("\n[green]Demo completed successfully.[/]")
