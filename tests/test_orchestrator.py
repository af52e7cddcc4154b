"""End-to-end tests for the demo orchestrator."""

from selsync.demo.orchestrator import (
    EXIT_CHANGE_FAILED,
    EXIT_CONVERGENCE_TIMEOUT,
    EXIT_DETECTION_TIMEOUT,
    EXIT_OK,
    CleanupMode,
    DemoOrchestrator,
)
from selsync.models.records import RemoteOutcome, RevertOutcome
from selsync.models.status import HealthState


def _orchestrator(stack, confirm=None) -> DemoOrchestrator:
    return DemoOrchestrator(
        stack.config,
        driver=stack.driver,
        detector=stack.detector,
        probe=stack.probe,
        cleanup=stack.cleanup,
        confirm=confirm,
        clock=stack.clock,
    )


def test_demo_with_cleanup(stack):
    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.AUTO)

    assert outcome.exit_code == EXIT_OK
    assert outcome.record.new_value == 2
    assert outcome.watch.fully_converged
    assert outcome.after.changed.observed_replica_count == 2
    assert outcome.analysis.selective_sync_ok
    assert outcome.analysis.control_unchanged
    assert outcome.before.control.observed_revision == outcome.after.control.observed_revision
    assert outcome.cleanup.local_revert == RevertOutcome.SUCCESS
    assert outcome.cleanup.remote_cleanup == RemoteOutcome.DELETED
    assert stack.probe.fetch("dev-api-app").observed_replica_count == 1
    assert stack.nexus.components == {}
    assert 3.0 in stack.clock.sleeps


def test_demo_without_cleanup_leaves_change(stack):
    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.SKIP)

    assert outcome.exit_code == EXIT_OK
    assert outcome.cleanup is None
    assert stack.nexus.has("dev-api-app", "0.1.1")
    assert stack.probe.fetch("dev-api-app").observed_replica_count == 2


def test_ask_mode_uses_confirm(stack):
    questions = []

    def decline(question):
        questions.append(question)
        return False

    outcome = _orchestrator(stack, confirm=decline).run(cleanup_mode=CleanupMode.ASK)

    assert outcome.cleanup is None
    assert len(questions) == 1
    assert "dev-api-app 0.1.1" in questions[0]


def test_dry_run_plans_without_changes(stack):
    head = stack.record_store.head_revision(short=False)
    outcome = _orchestrator(stack).run(dry_run=True, cleanup_mode=CleanupMode.AUTO)

    assert outcome.exit_code == EXIT_OK
    assert outcome.plan.new_value == 2
    assert outcome.cleanup_plan
    assert outcome.record is None
    assert stack.record_store.head_revision(short=False) == head
    assert stack.nexus.uploads == []


def test_change_failure(stack):
    stack.nexus.upload_status = 403
    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.AUTO)

    assert outcome.exit_code == EXIT_CHANGE_FAILED
    assert outcome.failed_phase == "change"
    assert "password" in outcome.hint
    assert outcome.watch is None


def test_preflight_passes_on_ready_stack(stack):
    orchestrator = _orchestrator(stack)
    assert orchestrator.preflight(orchestrator.snapshot()) == []


def test_preflight_stops_before_any_change(stack):
    head = stack.record_store.head_revision(short=False)
    stack.controller.down = True
    stack.nexus.down = True

    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.AUTO)

    assert outcome.exit_code == EXIT_CHANGE_FAILED
    assert outcome.failed_phase == "preflight"
    assert "No Argo CD status for application dev-api-app" in outcome.message
    assert "No Argo CD status for application dev-demo-app" in outcome.message
    assert "Cannot connect to registry" in outcome.message
    assert outcome.hint
    assert outcome.record is None
    assert stack.record_store.head_revision(short=False) == head
    assert stack.nexus.uploads == []


def test_preflight_rejects_local_edits(stack):
    deployment = stack.gitops.root / "environments/dev-api-app/templates/deployment.yaml"
    deployment.write_text(deployment.read_text() + "# local tweak\n")

    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.AUTO)

    assert outcome.failed_phase == "preflight"
    assert "Uncommitted edits" in outcome.message
    assert "# local tweak" in deployment.read_text()
    assert stack.nexus.uploads == []


def test_preflight_requires_helm_sourced_application(stack):
    application = stack.gitops.root / "app-of-apps/applications/dev/templates/dev-api-app.yaml"
    application.write_text(application.read_text().replace("    chart: dev-api-app\n", "    path: environments/dev-api-app\n"))
    stack.record_store.commit("Switch to a directory source", paths=[application])

    orchestrator = _orchestrator(stack)
    problems = orchestrator.preflight(orchestrator.snapshot())

    assert any("not deployed from a Helm chart" in p for p in problems)


def test_preflight_checks_git_remote(stack):
    stack.record_store.repo.git.remote("set-url", "origin", str(stack.gitops.root.parent / "missing.git"))

    orchestrator = _orchestrator(stack)
    problems = orchestrator.preflight(orchestrator.snapshot())

    assert any("ls-remote" in p for p in problems)


def test_detection_timeout_exit_code(stack):
    stack.controller.ignored.add("dev-api-app")
    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.SKIP)

    assert outcome.exit_code == EXIT_DETECTION_TIMEOUT
    assert outcome.failed_phase == "detection"
    assert outcome.last_status is not None
    assert outcome.hint


def test_convergence_timeout_exit_code(stack):
    stack.controller.health_override["dev-api-app"] = HealthState.DEGRADED
    outcome = _orchestrator(stack).run(cleanup_mode=CleanupMode.SKIP)

    assert outcome.exit_code == EXIT_CONVERGENCE_TIMEOUT
    assert outcome.failed_phase == "convergence"
    assert outcome.last_status.health_state is HealthState.DEGRADED


def test_control_drift_is_a_warning(stack):
    orchestrator = _orchestrator(stack)
    original = stack.controller.get_status

    def drifting(app):
        status = original(app)
        if app == "dev-demo-app" and stack.clock.now() > 5:
            return status.__class__(
                sync_state=status.sync_state,
                health_state=status.health_state,
                observed_revision="0.1.9",
                observed_replica_count=status.observed_replica_count,
            )
        return status

    stack.controller.get_status = drifting
    outcome = orchestrator.run(cleanup_mode=CleanupMode.SKIP)

    assert outcome.exit_code == EXIT_OK
    assert not outcome.analysis.control_unchanged
    assert not outcome.analysis.selective_sync_ok
    assert any("Control resource revision moved" in w for w in outcome.warnings)
