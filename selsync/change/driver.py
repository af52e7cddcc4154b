"""ChangeDriver — apply one scaling change as a single logical transaction.

Steps:
1. Set the replica count in the chart's deployment template
2. Bump the chart version (patch | minor | major)
3. Package the chart and publish the archive to the registry
4. Point the Argo CD Application's ``targetRevision`` at the new version
5. Commit with the serialized ``ChangeRecord`` and push

If any of 1-4 fails the touched files are restored and nothing is committed.
The record always holds the version that was actually packaged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from selsync.change.manifests import ManifestParameterStore
from selsync.change.packaging import PackagedChart, Packager, read_chart_metadata
from selsync.change.record_store import GitRecordStore
from selsync.change.semver import BUMP_KINDS, bump_version
from selsync.config import SelsyncConfig
from selsync.errors import ChangeError, LOCK_HINT, SelsyncError, TransientLockError
from selsync.models.records import ChangeRecord
from selsync.registry.nexus import NexusRegistry
from selsync.runtime.retry import RetryingExecutor

logger = logging.getLogger(__name__)

DEFAULT_REPLICAS = 1
DEFAULT_VERSION = "0.1.0"


@dataclass
class ChangePlan:
    """What ``apply`` would do, computed without touching anything."""

    resource_id: str
    previous_value: int
    new_value: int
    current_version: str
    new_version: str
    bump_kind: str
    files: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    commit_message: str = ""

    def to_record(self) -> ChangeRecord:
        """The record ``apply`` would produce if packaging used the bumped version."""
        return ChangeRecord(
            resource_id=self.resource_id,
            previous_value=self.previous_value,
            new_value=self.new_value,
            published_artifact_id=self.resource_id,
            published_artifact_version=self.new_version,
            created_at_revision=self.current_version,
        )


class ChangeDriver:
    """Drives one parameter edit through version bump, publish and commit."""

    def __init__(
        self,
        config: SelsyncConfig,
        record_store: GitRecordStore,
        packager: Packager,
        registry: NexusRegistry,
        params: ManifestParameterStore | None = None,
        executor: RetryingExecutor | None = None,
    ):
        self.config = config
        self.repo = config.repo
        self.record_store = record_store
        self.packager = packager
        self.registry = registry
        self.params = params or ManifestParameterStore()
        self.executor = executor or RetryingExecutor(
            max_attempts=config.retry.max_attempts,
            initial_delay=config.retry.initial_delay,
        )

    # -- read-only -----------------------------------------------------------

    def current_replicas(self, resource_id: str) -> int:
        return self.params.read_int(self.repo.deployment_file(resource_id), "replicas", DEFAULT_REPLICAS)

    def current_version(self, resource_id: str) -> str:
        value = self.params.read_field(self.repo.chart_file(resource_id), "version", top_level=True)
        return value or DEFAULT_VERSION

    def current_target_revision(self, resource_id: str) -> str:
        value = self.params.read_field(self.repo.application_file(resource_id), "targetRevision")
        return value or self.current_version(resource_id)

    def change_files(self, resource_id: str) -> list[Path]:
        """Files ``apply`` edits and commits for ``resource_id``."""
        return [
            self.repo.deployment_file(resource_id),
            self.repo.chart_file(resource_id),
            self.repo.application_file(resource_id),
        ]

    def is_helm_sourced(self, resource_id: str) -> bool:
        """True if the Argo CD Application pulls a chart from a Helm repository."""
        return self.params.read_field(self.repo.application_file(resource_id), "chart") is not None

    def plan(self, resource_id: str, new_value: int, bump_kind: str = "patch") -> ChangePlan:
        self._check_inputs(resource_id, new_value, bump_kind)
        previous = self.current_replicas(resource_id)
        version = self.current_version(resource_id)
        new_version = bump_version(version, bump_kind)
        deployment = self._display(self.repo.deployment_file(resource_id))
        chart = self._display(self.repo.chart_file(resource_id))
        application = self._display(self.repo.application_file(resource_id))
        package = self._display(self.repo.package_file(resource_id, new_version))

        plan = ChangePlan(
            resource_id=resource_id,
            previous_value=previous,
            new_value=new_value,
            current_version=version,
            new_version=new_version,
            bump_kind=bump_kind,
            files=[deployment, chart, application],
        )
        plan.actions = [
            f"Update replicas in {deployment}: {previous} -> {new_value}",
            f"Bump chart version in {chart} ({bump_kind}): {version} -> {new_version}",
            f"Package ONLY {resource_id} into {package}",
            f"Upload ONLY {package} to registry repository '{self.config.registry.repository}'",
            f"Update targetRevision in {application} -> {new_version}",
            f"git commit -m \"{plan.to_record().subject}\"",
            "git push",
        ]
        plan.commit_message = plan.to_record().to_commit_message()
        return plan

    # -- mutating ------------------------------------------------------------

    def apply(self, resource_id: str, new_value: int, bump_kind: str = "patch") -> ChangeRecord:
        """Apply the change and return its record.

        Raises:
            ChangeError: On any failure. ``error.record`` is set when the change
                was committed locally but could not be pushed.
        """
        self._check_inputs(resource_id, new_value, bump_kind)
        deployment = self.repo.deployment_file(resource_id)
        chart_file = self.repo.chart_file(resource_id)
        try:
            application = self.repo.application_file(resource_id)
        except SelsyncError as e:
            raise ChangeError(str(e), cause=e)
        touched = [deployment, chart_file, application]
        for path in touched:
            if not path.is_file():
                raise ChangeError(f"Required file not found: {self._display(path)}")

        previous = self.current_replicas(resource_id)
        base_version = self.current_version(resource_id)
        base_revision = self.current_target_revision(resource_id)
        packaged: PackagedChart | None = None
        published = False

        try:
            new_version = bump_version(base_version, bump_kind)
            logger.info("Scaling %s replicas: %d -> %d", resource_id, previous, new_value)
            self.params.write_field(deployment, "replicas", new_value)
            logger.info("Bumping %s version: %s -> %s", resource_id, base_version, new_version)
            self.params.write_field(chart_file, "version", new_version, top_level=True)

            packaged = self.packager.package(self.repo.chart_dir(resource_id), self.repo.root_path / self.repo.packages_dir)
            if packaged.version != new_version:
                logger.warning("Packaged version %s differs from requested %s", packaged.version, new_version)
            self._publish(packaged)
            published = True

            self.params.write_field(application, "targetRevision", packaged.version)
            logger.info("Updated %s targetRevision to %s", self._display(application), packaged.version)
        except (SelsyncError, OSError, ValueError) as e:
            self._abort(touched, packaged, published)
            raise ChangeError(f"Applying change to {resource_id} failed: {e}", hint=_hint(e), cause=e)

        record = ChangeRecord(
            resource_id=resource_id,
            previous_value=previous,
            new_value=new_value,
            published_artifact_id=packaged.name,
            published_artifact_version=packaged.version,
            created_at_revision=base_revision,
        )

        try:
            self.record_store.ensure_identity(self.repo.git_email, self.repo.git_name)
            record.commit_sha = self.record_store.commit(record.to_commit_message(), paths=touched)
        except SelsyncError as e:
            self._abort(touched, packaged, published)
            raise ChangeError(f"Committing change to {resource_id} failed: {e}", hint=_hint(e), cause=e)

        try:
            self.record_store.push()
        except SelsyncError as e:
            raise ChangeError(
                f"Change committed as {record.commit_sha[:8]} but push failed: {e}",
                hint=_hint(e) or "Push manually with 'git push', or run 'selsync cleanup' to undo it.",
                record=record,
                cause=e,
            )
        return record

    # -- helpers -------------------------------------------------------------

    def _publish(self, packaged: PackagedChart) -> None:
        data = packaged.path.read_bytes()
        result = self.executor.execute(
            lambda: self.registry.publish(packaged.name, packaged.version, data),
            retry_transient_other=True,
            description=f"upload {packaged.filename}",
        )
        result.unwrap()

    def _abort(self, touched: list[Path], packaged: PackagedChart | None, published: bool) -> None:
        """Put the working tree back and withdraw anything already published."""
        try:
            self.record_store.restore(touched)
        except SelsyncError as e:
            logger.error("Could not restore %s: %s", ", ".join(self._display(p) for p in touched), e)
        if packaged is None:
            return
        if published:
            try:
                component_id = self.registry.search(packaged.name, packaged.version)
                if component_id:
                    self.registry.delete(component_id)
            except SelsyncError as e:
                logger.warning("Published %s %s could not be withdrawn: %s", packaged.name, packaged.version, e)
        packaged.path.unlink(missing_ok=True)

    def _check_inputs(self, resource_id: str, new_value: int, bump_kind: str) -> None:
        if bump_kind not in BUMP_KINDS:
            raise ChangeError(f"Unknown bump kind {bump_kind!r}")
        if new_value < 0:
            raise ChangeError(f"Replica count must not be negative: {new_value}")
        if not self.repo.chart_dir(resource_id).is_dir():
            raise ChangeError(f"Chart directory not found: {self._display(self.repo.chart_dir(resource_id))}")
        try:
            read_chart_metadata(self.repo.chart_dir(resource_id))
        except SelsyncError as e:
            raise ChangeError(str(e), cause=e)

    def _display(self, path: Path) -> str:
        try:
            return path.relative_to(self.repo.root_path).as_posix()
        except ValueError:
            return str(path)


def _hint(error: BaseException) -> str:
    if isinstance(error, TransientLockError):
        return LOCK_HINT
    return getattr(error, "hint", "") or ""
