"""DemoOrchestrator — run one selective-sync demo end to end.

snapshot -> preflight -> ChangeDriver.apply -> PhaseDetector.watch -> snapshot ->
selective-sync analysis -> optional CompensatingCleanup.rollback

The orchestrator reports what happened. A control resource that moved is a
warning in the outcome, never a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from selsync.change.driver import ChangeDriver, ChangePlan
from selsync.cleanup.compensating import CompensatingCleanup
from selsync.config import SelsyncConfig
from selsync.errors import ChangeError, SelsyncError
from selsync.models.records import ChangeRecord, CleanupReport, RevertOutcome
from selsync.models.status import Phase, Status, WatchResult, WatchTarget
from selsync.probe.status_probe import StatusProbe
from selsync.runtime.clock import CancellationToken, Clock
from selsync.watch.phase_detector import PhaseDetector

logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_CHANGE_FAILED = 1
EXIT_DETECTION_TIMEOUT = 2
EXIT_CONVERGENCE_TIMEOUT = 3
EXIT_CLEANUP_FAILED = 4
EXIT_CANCELLED = 130


class CleanupMode(Enum):
    ASK = "ask"
    AUTO = "auto"
    SKIP = "skip"


@dataclass
class Snapshot:
    """Status of the changed and the control resource at one moment."""

    changed: Status
    control: Status


@dataclass
class SelectiveSyncAnalysis:
    """Did the change land on its target and leave the control alone?"""

    changed_converged: bool
    changed_replicas_ok: bool
    control_revision_unchanged: bool
    control_replicas_unchanged: bool
    notes: list[str] = field(default_factory=list)

    @property
    def control_unchanged(self) -> bool:
        return self.control_revision_unchanged and self.control_replicas_unchanged

    @property
    def selective_sync_ok(self) -> bool:
        return self.changed_converged and self.changed_replicas_ok and self.control_unchanged


@dataclass
class DemoOutcome:
    exit_code: int = EXIT_OK
    failed_phase: str = ""
    message: str = ""
    hint: str = ""
    dry_run: bool = False
    before: Snapshot | None = None
    after: Snapshot | None = None
    plan: ChangePlan | None = None
    cleanup_plan: list[str] = field(default_factory=list)
    record: ChangeRecord | None = None
    watch: WatchResult | None = None
    analysis: SelectiveSyncAnalysis | None = None
    cleanup: CleanupReport | None = None
    last_status: Status | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK


def analyze(
    before: Snapshot,
    after: Snapshot,
    watch: WatchResult,
    expected_replicas: int,
) -> SelectiveSyncAnalysis:
    """Compare the two snapshots against what the change should have done."""
    analysis = SelectiveSyncAnalysis(
        changed_converged=watch.fully_converged,
        changed_replicas_ok=after.changed.observed_replica_count == expected_replicas,
        control_revision_unchanged=before.control.observed_revision == after.control.observed_revision,
        control_replicas_unchanged=before.control.observed_replica_count == after.control.observed_replica_count,
    )
    if not analysis.changed_converged:
        analysis.notes.append("Changed resource did not fully converge")
    if not analysis.changed_replicas_ok:
        analysis.notes.append(
            f"Changed resource shows {after.changed.observed_replica_count} replicas, expected {expected_replicas}"
        )
    if not analysis.control_revision_unchanged:
        analysis.notes.append(
            f"Control resource revision moved: {before.control.observed_revision} -> {after.control.observed_revision}"
        )
    if not analysis.control_replicas_unchanged:
        analysis.notes.append(
            f"Control resource replicas moved: {before.control.observed_replica_count} -> "
            f"{after.control.observed_replica_count}"
        )
    return analysis


class DemoOrchestrator:
    """Sequences one change, its watch, the analysis and the cleanup."""

    def __init__(
        self,
        config: SelsyncConfig,
        driver: ChangeDriver,
        detector: PhaseDetector,
        probe: StatusProbe,
        cleanup: CompensatingCleanup,
        confirm: Callable[[str], bool] | None = None,
        clock: Clock | None = None,
    ):
        self.config = config
        self.driver = driver
        self.detector = detector
        self.probe = probe
        self.cleanup = cleanup
        self.confirm = confirm
        self.clock = clock or detector.clock
        self.changed_app = config.demo.changed_app
        self.control_app = config.demo.control_app

    def snapshot(self) -> Snapshot:
        return Snapshot(
            changed=self.probe.fetch(self.changed_app),
            control=self.probe.fetch(self.control_app),
        )

    def preflight(self, before: Snapshot) -> list[str]:
        """Problems that would make the demo fail part-way; empty when ready.

        Runs before anything is changed or published.
        """
        problems = []
        store = self.driver.record_store
        try:
            store.check_remote()
        except SelsyncError as e:
            problems.append(str(e))

        try:
            if not self.driver.is_helm_sourced(self.changed_app):
                problems.append(f"{self.changed_app} is not deployed from a Helm chart (no 'chart:' in its Application)")
            if store.is_dirty(self.driver.change_files(self.changed_app)):
                problems.append(f"Uncommitted edits to {self.changed_app}'s chart or Application manifest")
        except SelsyncError as e:
            problems.append(str(e))

        for name, status in ((self.changed_app, before.changed), (self.control_app, before.control)):
            if status.is_unknown:
                problems.append(f"No Argo CD status for application {name}")

        try:
            code = self.driver.registry.check_health()
        except SelsyncError as e:
            problems.append(str(e))
        else:
            if code >= 400:
                problems.append(f"Registry health check returned HTTP {code}")
        return problems

    def run(
        self,
        dry_run: bool = False,
        cleanup_mode: CleanupMode = CleanupMode.ASK,
        token: CancellationToken | None = None,
    ) -> DemoOutcome:
        outcome = DemoOutcome(dry_run=dry_run)
        bump_kind = self.config.demo.bump_kind

        outcome.before = self.snapshot()
        current = self.driver.current_replicas(self.changed_app)
        new_value = current + 1

        if dry_run:
            try:
                outcome.plan = self.driver.plan(self.changed_app, new_value, bump_kind)
            except ChangeError as e:
                return self._change_failed(outcome, e)
            if cleanup_mode is not CleanupMode.SKIP:
                outcome.cleanup_plan = self.cleanup.plan(outcome.plan.to_record())
            return outcome

        problems = self.preflight(outcome.before)
        if problems:
            for problem in problems:
                logger.error("Preflight: %s", problem)
            outcome.exit_code = EXIT_CHANGE_FAILED
            outcome.failed_phase = "preflight"
            outcome.message = "; ".join(problems)
            outcome.hint = "Start the cluster and Nexus, commit or stash local edits, and check the Git remote."
            outcome.last_status = outcome.before.changed
            return outcome

        logger.info("Scaling %s from %d to %d replicas", self.changed_app, current, new_value)
        try:
            record = self.driver.apply(self.changed_app, new_value, bump_kind)
        except ChangeError as e:
            return self._change_failed(outcome, e)
        outcome.record = record

        if self.clock.sleep(float(self.config.watch.push_grace_seconds), token):
            return self._cancelled(outcome)

        target = WatchTarget(
            resource_id=record.resource_id,
            namespace=record.resource_id,
            target_revision=record.published_artifact_version,
            target_replica_count=record.new_value,
        )
        outcome.watch = self.detector.watch(target, token)
        outcome.last_status = outcome.watch.last_status
        if outcome.watch.cancelled:
            return self._cancelled(outcome)

        outcome.after = self.snapshot()
        outcome.analysis = analyze(outcome.before, outcome.after, outcome.watch, new_value)
        outcome.warnings.extend(outcome.analysis.notes)
        if outcome.analysis.selective_sync_ok:
            logger.info("Selective sync held: only %s changed", self.changed_app)
        else:
            for note in outcome.analysis.notes:
                logger.warning(note)

        failed = outcome.watch.failed_phase
        if failed is Phase.DETECTION:
            outcome.exit_code = EXIT_DETECTION_TIMEOUT
            outcome.failed_phase = "detection"
            outcome.message = f"Argo CD did not detect the change to {self.changed_app}"
            outcome.hint = "Check that the push reached the remote and that Argo CD can reach the repository."
        elif failed is Phase.CONVERGENCE:
            outcome.exit_code = EXIT_CONVERGENCE_TIMEOUT
            outcome.failed_phase = "convergence"
            outcome.message = f"{self.changed_app} did not converge to {new_value} replicas"
            outcome.hint = "Check the workload's pods and events; it may be slow to become ready."

        if self._should_clean(cleanup_mode, record):
            outcome.cleanup = self.cleanup.rollback(record, token)
            outcome.warnings.extend(outcome.cleanup.warnings)
            if self.cleanup.last_watch is not None and self.cleanup.last_watch.cancelled:
                return self._cancelled(outcome)
            if not outcome.cleanup.ok and outcome.exit_code == EXIT_OK:
                outcome.exit_code = EXIT_CLEANUP_FAILED
                outcome.failed_phase = "cleanup"
                outcome.message = "Rollback failed: " + "; ".join(outcome.cleanup.messages)
                if outcome.cleanup.local_revert == RevertOutcome.PUSH_FAILED:
                    outcome.hint = "Check access to the Git remote, then run 'selsync cleanup' to push the revert."
                else:
                    outcome.hint = "Resolve the revert conflict in the repository, then run 'selsync cleanup'."
        return outcome

    # -- helpers -------------------------------------------------------------

    def _should_clean(self, mode: CleanupMode, record: ChangeRecord) -> bool:
        if mode is CleanupMode.SKIP:
            return False
        if mode is CleanupMode.AUTO:
            return True
        if self.confirm is None:
            return False
        return self.confirm(
            f"Roll back {record.resource_id} to {record.previous_value} replicas and delete "
            f"{record.published_artifact_id} {record.published_artifact_version} from the registry?"
        )

    def _change_failed(self, outcome: DemoOutcome, error: ChangeError) -> DemoOutcome:
        logger.error("%s", error)
        outcome.exit_code = EXIT_CHANGE_FAILED
        outcome.failed_phase = "change"
        outcome.message = str(error)
        outcome.hint = error.hint
        outcome.record = error.record
        outcome.last_status = outcome.before.changed if outcome.before else None
        return outcome

    def _cancelled(self, outcome: DemoOutcome) -> DemoOutcome:
        outcome.exit_code = EXIT_CANCELLED
        outcome.failed_phase = "cancelled"
        outcome.message = "Interrupted by operator"
        if outcome.record is not None:
            outcome.hint = "The change is still applied. Run 'selsync cleanup' to roll it back."
        return outcome
