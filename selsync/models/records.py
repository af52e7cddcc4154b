"""Change and cleanup records.

A ``ChangeRecord`` is persisted as the message of the commit that applied it:
a human subject line followed by ``Selsync-*`` trailers. Cleanup can therefore
run in a later invocation by finding the marker commit in history.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


COMMIT_SUBJECT_PREFIX = "Demo: Scale"
TRAILER_PREFIX = "Selsync-"

_TRAILER_KEYS = {
    "resource_id": "Resource",
    "previous_value": "Previous-Value",
    "new_value": "New-Value",
    "published_artifact_id": "Artifact",
    "published_artifact_version": "Artifact-Version",
    "created_at_revision": "Base-Revision",
}

_TRAILER_RE = re.compile(rf"^{TRAILER_PREFIX}([A-Za-z-]+):\s*(.*)$", re.MULTILINE)


@dataclass
class ChangeRecord:
    """What one ChangeDriver run changed and published."""

    resource_id: str
    previous_value: int
    new_value: int
    published_artifact_id: str
    published_artifact_version: str
    created_at_revision: str  # Chart version the controller tracked before the change
    commit_sha: str = ""

    @property
    def subject(self) -> str:
        return (
            f"{COMMIT_SUBJECT_PREFIX} {self.resource_id} from {self.previous_value} "
            f"to {self.new_value} replicas (Helm workflow selective sync test)"
        )

    def to_commit_message(self) -> str:
        lines = [self.subject, ""]
        for attr, key in _TRAILER_KEYS.items():
            lines.append(f"{TRAILER_PREFIX}{key}: {getattr(self, attr)}")
        return "\n".join(lines) + "\n"

    @classmethod
    def from_commit_message(cls, message: str, commit_sha: str = "") -> "ChangeRecord | None":
        """Parse a record from a commit message, or return None if it is not a marker."""
        if not message.startswith(COMMIT_SUBJECT_PREFIX):
            return None
        trailers = {key: value.strip() for key, value in _TRAILER_RE.findall(message)}
        values = {}
        for attr, key in _TRAILER_KEYS.items():
            if key not in trailers:
                return None
            values[attr] = trailers[key]
        try:
            previous = int(values.pop("previous_value"))
            new = int(values.pop("new_value"))
        except ValueError:
            return None
        return cls(previous_value=previous, new_value=new, commit_sha=commit_sha, **values)


class RevertOutcome:
    SUCCESS = "success"
    ALREADY_REVERTED = "already-reverted"
    PUSH_FAILED = "push-failed"
    FAILED = "failed"
    DRY_RUN = "dry-run"


class ConvergenceOutcome:
    CONVERGED = "converged"
    TIMED_OUT = "timed-out-warning"
    SKIPPED = "skipped"


class RemoteOutcome:
    DELETED = "deleted"
    ALREADY_CLEAN = "already-clean"
    SKIPPED_WARNING = "skipped-warning"
    FAILED_WARNING = "failed-warning"
    DRY_RUN = "dry-run"
    SKIPPED = "skipped"


class LocalPackageOutcome:
    REMOVED = "removed"
    ABSENT = "absent"
    FAILED_WARNING = "failed-warning"
    DRY_RUN = "dry-run"
    SKIPPED = "skipped"


@dataclass
class CleanupReport:
    """Per-step outcome of a compensating rollback."""

    local_revert: str = RevertOutcome.FAILED
    convergence: str = ConvergenceOutcome.SKIPPED
    remote_cleanup: str = RemoteOutcome.SKIPPED
    local_package: str = LocalPackageOutcome.SKIPPED
    revert_sha: str = ""
    pushed: bool = False
    messages: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.local_revert in (
            RevertOutcome.SUCCESS,
            RevertOutcome.ALREADY_REVERTED,
            RevertOutcome.DRY_RUN,
        )

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def summary(self) -> str:
        lines = [
            f"Local revert:   {self.local_revert}",
            f"Re-convergence: {self.convergence}",
            f"Registry:       {self.remote_cleanup}",
            f"Local package:  {self.local_package}",
            f"Overall:        {'OK' if self.ok else 'FAILED'}",
        ]
        return "\n".join(lines)
