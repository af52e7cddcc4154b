"""Kubectl-backed status accessor for Argo CD applications.

Reads the Application's ``status.sync`` / ``status.health`` and the
workload's deployment replica count as JSON. Every field degrades to unknown
on its own, so a missing deployment does not hide a known sync state.
"""

from __future__ import annotations

import json
import logging

from selsync.config import ClusterConfig
from selsync.models.status import HealthState, Status, SyncState
from selsync.runtime.commands import CommandRunner

logger = logging.getLogger(__name__)


class KubectlStatusAccessor:
    """Queries Argo CD and the workload namespace via ``kubectl``."""

    def __init__(
        self,
        cluster: ClusterConfig,
        runner: CommandRunner | None = None,
        namespaces: dict[str, str] | None = None,
    ):
        self.cluster = cluster
        self.runner = runner or CommandRunner(
            prefix=list(cluster.remote_shell),
            timeout_seconds=cluster.command_timeout_seconds,
        )
        self.namespaces = namespaces or {}

    def get_status(self, resource_id: str) -> Status:
        app = self._get_json(
            ["get", "application", resource_id, "-n", self.cluster.argocd_namespace, "-o", "json"]
        )
        deployments = self._get_json(
            ["get", "deployment", "-n", self.namespaces.get(resource_id, resource_id), "-o", "json"]
        )
        sync_state, health_state, revision = _parse_application(app)
        return Status(
            sync_state=sync_state,
            health_state=health_state,
            observed_revision=revision,
            observed_replica_count=_parse_replicas(deployments),
        )

    def _get_json(self, args: list[str]) -> dict | None:
        result = self.runner.run([self.cluster.kubectl, *args])
        if not result.ok:
            logger.debug("kubectl %s failed: %s", " ".join(args[:3]), result.stderr.strip()[:200])
            return None
        try:
            data = json.loads(result.stdout)
        except ValueError:
            logger.debug("kubectl %s returned non-JSON output", " ".join(args[:3]))
            return None
        return data if isinstance(data, dict) else None


def _parse_application(data: dict | None) -> tuple[SyncState, HealthState, str | None]:
    if not data:
        return SyncState.UNKNOWN, HealthState.UNKNOWN, None
    status = data.get("status") or {}
    if not isinstance(status, dict):
        return SyncState.UNKNOWN, HealthState.UNKNOWN, None
    sync = status.get("sync") or {}
    health = status.get("health") or {}
    revision = sync.get("revision") if isinstance(sync, dict) else None
    return (
        SyncState.parse(sync.get("status") if isinstance(sync, dict) else None),
        HealthState.parse(health.get("status") if isinstance(health, dict) else None),
        str(revision) if revision else None,
    )


def _parse_replicas(data: dict | None) -> int | None:
    """Return ``spec.replicas`` of the first deployment in a list response."""
    if not data:
        return None
    items = data.get("items")
    if isinstance(items, list):
        if not items:
            return None
        data = items[0]
    spec = data.get("spec") if isinstance(data, dict) else None
    if not isinstance(spec, dict):
        return None
    replicas = spec.get("replicas")
    try:
        return int(replicas)
    except (TypeError, ValueError):
        return None
