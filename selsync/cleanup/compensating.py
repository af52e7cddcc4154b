"""CompensatingCleanup — undo a change and remove exactly what it published.

Steps, in order:

1. Revert the change commit (skipped if it is already reverted) and push.
   A failed revert or push is fatal and stops the rollback here.
2. Watch the resource back to its previous revision and replica count.
3. Delete the published artifact version from the registry by identity.
4. Remove the locally built package file.

Steps 2-4 never stop the rollback; their problems are collected as warnings.
Running ``rollback`` twice with the same record is safe.
"""

from __future__ import annotations

import logging

from selsync.change.record_store import GitRecordStore
from selsync.config import SelsyncConfig
from selsync.errors import SelsyncError
from selsync.models.records import (
    ChangeRecord,
    CleanupReport,
    ConvergenceOutcome,
    LocalPackageOutcome,
    RemoteOutcome,
    RevertOutcome,
)
from selsync.models.status import WatchResult, WatchTarget
from selsync.registry.nexus import NexusRegistry
from selsync.runtime.clock import CancellationToken
from selsync.watch.phase_detector import PhaseDetector

logger = logging.getLogger(__name__)


class CompensatingCleanup:
    """Rolls back one ``ChangeRecord``."""

    def __init__(
        self,
        config: SelsyncConfig,
        record_store: GitRecordStore,
        registry: NexusRegistry,
        detector: PhaseDetector,
        dry_run: bool = False,
    ):
        self.config = config
        self.record_store = record_store
        self.registry = registry
        self.detector = detector
        self.dry_run = dry_run
        self.last_watch: WatchResult | None = None

    def find_record(self, resource_id: str | None = None) -> ChangeRecord | None:
        """Most recent change record in history, or None if there is nothing to clean."""
        record = self.record_store.latest_record(resource_id)
        if record is None:
            logger.info("No change commit found in history")
        return record

    def plan(self, record: ChangeRecord) -> list[str]:
        package = self.config.repo.package_file(record.published_artifact_id, record.published_artifact_version)
        return [
            f"git revert --no-edit {record.commit_sha[:8]} ({record.subject})",
            "git push",
            (
                f"Wait for {record.resource_id} to return to revision {record.created_at_revision} "
                f"with {record.previous_value} replicas"
            ),
            (
                f"Delete ONLY {record.published_artifact_id} {record.published_artifact_version} "
                f"from registry repository '{self.config.registry.repository}'"
            ),
            f"Remove local package {package.name}",
        ]

    def rollback(self, record: ChangeRecord, token: CancellationToken | None = None) -> CleanupReport:
        report = CleanupReport()

        if self.dry_run:
            report.local_revert = RevertOutcome.DRY_RUN
            report.remote_cleanup = RemoteOutcome.DRY_RUN
            report.local_package = LocalPackageOutcome.DRY_RUN
            report.messages.extend(self.plan(record))
            return report

        if not self._revert(record, report):
            return report

        self._wait_for_revert(record, report, token)
        self._clean_registry(record, report)
        self._remove_package(record, report)
        return report

    # -- steps ---------------------------------------------------------------

    def _revert(self, record: ChangeRecord, report: CleanupReport) -> bool:
        if not record.commit_sha:
            report.local_revert = RevertOutcome.FAILED
            report.messages.append("Change record has no commit to revert")
            return False

        try:
            already = self.record_store.is_reverted(record.commit_sha)
        except SelsyncError as e:
            report.local_revert = RevertOutcome.FAILED
            report.messages.append(str(e))
            return False

        if already:
            logger.info("Commit %s is already reverted", record.commit_sha[:8])
            report.local_revert = RevertOutcome.ALREADY_REVERTED
            report.messages.append(f"Commit {record.commit_sha[:8]} was already reverted")
        else:
            try:
                self.record_store.ensure_identity(self.config.repo.git_email, self.config.repo.git_name)
                report.revert_sha = self.record_store.revert(record.commit_sha)
            except SelsyncError as e:
                logger.error("Revert of %s failed: %s", record.commit_sha[:8], e)
                report.local_revert = RevertOutcome.FAILED
                report.messages.append(str(e))
                if e.hint:
                    report.messages.append(e.hint)
                return False
            report.local_revert = RevertOutcome.SUCCESS
            report.messages.append(f"Reverted {record.commit_sha[:8]} as {report.revert_sha[:8]}")

        try:
            self.record_store.push()
        except SelsyncError as e:
            # The controller still tracks the published version; it must stay published
            logger.error("Push after revert failed: %s", e)
            report.local_revert = RevertOutcome.PUSH_FAILED
            report.messages.append(f"Revert is local only, push failed: {e}")
            report.messages.append("Registry cleanup skipped; re-run 'selsync cleanup' once the push can succeed")
            return False
        report.pushed = True
        return True

    def _wait_for_revert(self, record: ChangeRecord, report: CleanupReport, token: CancellationToken | None) -> None:
        target = WatchTarget(
            resource_id=record.resource_id,
            namespace=record.resource_id,
            target_revision=record.created_at_revision,
            target_replica_count=record.previous_value,
        )
        result = self.detector.watch(target, token)
        self.last_watch = result
        if result.fully_converged:
            report.convergence = ConvergenceOutcome.CONVERGED
            return
        report.convergence = ConvergenceOutcome.TIMED_OUT
        phase = result.failed_phase.value if result.failed_phase else "convergence"
        report.warnings.append(
            f"{record.resource_id} did not return to {record.previous_value} replicas "
            f"({phase} {'cancelled' if result.cancelled else 'timed out'}; "
            f"last: {result.last_status.describe()})"
        )

    def _clean_registry(self, record: ChangeRecord, report: CleanupReport) -> None:
        artifact = record.published_artifact_id
        version = record.published_artifact_version
        try:
            self.registry.check_health()
        except SelsyncError as e:
            logger.warning("Registry not reachable, skipping remote cleanup: %s", e)
            report.remote_cleanup = RemoteOutcome.SKIPPED_WARNING
            report.warnings.append(f"Registry unreachable; {artifact} {version} may still be published")
            return

        try:
            component_id = self.registry.search(artifact, version)
            if component_id is None:
                logger.info("%s %s not found in registry", artifact, version)
                report.remote_cleanup = RemoteOutcome.ALREADY_CLEAN
                return
            if self.registry.delete(component_id):
                report.remote_cleanup = RemoteOutcome.DELETED
                report.messages.append(f"Deleted {artifact} {version} from registry")
            else:
                report.remote_cleanup = RemoteOutcome.ALREADY_CLEAN
        except SelsyncError as e:
            logger.warning("Registry cleanup of %s %s failed: %s", artifact, version, e)
            report.remote_cleanup = RemoteOutcome.FAILED_WARNING
            report.warnings.append(f"Could not delete {artifact} {version} from registry: {e}")

    def _remove_package(self, record: ChangeRecord, report: CleanupReport) -> None:
        package = self.config.repo.package_file(record.published_artifact_id, record.published_artifact_version)
        if not package.exists():
            report.local_package = LocalPackageOutcome.ABSENT
            return
        try:
            package.unlink()
        except OSError as e:
            logger.warning("Could not remove %s: %s", package, e)
            report.local_package = LocalPackageOutcome.FAILED_WARNING
            report.warnings.append(f"Could not remove local package {package.name}: {e}")
            return
        report.local_package = LocalPackageOutcome.REMOVED
        report.messages.append(f"Removed local package {package.name}")
