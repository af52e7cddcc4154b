"""Status models — typed controller status, watch targets and phase results."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class SyncState(Enum):
    """Sync state of a controller-managed resource."""

    SYNCED = "synced"
    PENDING = "pending"  # Controller knows the desired state differs (OutOfSync)
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> "SyncState":
        value = str(raw or "").strip().lower()
        if value == "synced":
            return cls.SYNCED
        if value in ("outofsync", "out_of_sync", "pending"):
            return cls.PENDING
        return cls.UNKNOWN


class HealthState(Enum):
    """Health state of a controller-managed resource."""

    HEALTHY = "healthy"
    PROGRESSING = "progressing"
    DEGRADED = "degraded"
    SUSPENDED = "suspended"
    MISSING = "missing"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: object) -> "HealthState":
        value = str(raw or "").strip().lower()
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


_SHA_RE = re.compile(r"^[0-9a-f]{7,40}$")


def revision_matches(observed: str | None, target: str | None) -> bool:
    """Return True when an observed revision is the target revision.

    Chart versions must match exactly. Git SHAs also match by prefix, since
    the controller reports full SHAs while operators usually pass short ones.
    """
    if not observed or not target:
        return False
    observed = observed.strip()
    target = target.strip()
    if observed == target:
        return True
    if _SHA_RE.match(observed.lower()) and _SHA_RE.match(target.lower()):
        return observed.lower().startswith(target.lower()) or target.lower().startswith(observed.lower())
    return False


@dataclass(frozen=True)
class Status:
    """One sample of a resource's status. Any field may be unknown."""

    sync_state: SyncState = SyncState.UNKNOWN
    health_state: HealthState = HealthState.UNKNOWN
    observed_revision: str | None = None
    observed_replica_count: int | None = None

    @classmethod
    def unknown(cls) -> "Status":
        return cls()

    @property
    def is_unknown(self) -> bool:
        return (
            self.sync_state is SyncState.UNKNOWN
            and self.health_state is HealthState.UNKNOWN
            and self.observed_revision is None
            and self.observed_replica_count is None
        )

    def describe(self) -> str:
        replicas = "?" if self.observed_replica_count is None else str(self.observed_replica_count)
        return (
            f"sync={self.sync_state.value} health={self.health_state.value} "
            f"revision={self.observed_revision or '?'} replicas={replicas}"
        )


@dataclass(frozen=True)
class WatchTarget:
    """The resource being watched and the values it should converge to."""

    resource_id: str
    namespace: str
    target_revision: str
    target_replica_count: int


class Phase(Enum):
    DETECTION = "detection"
    CONVERGENCE = "convergence"


@dataclass
class PhaseResult:
    """Outcome of one watch phase."""

    phase: Phase
    elapsed_seconds: float
    final_status: Status
    timed_out: bool
    cancelled: bool = False
    relaxed: bool = False  # Converged while health was still progressing
    samples: int = 0

    def summary(self) -> str:
        if self.cancelled:
            outcome = "CANCELLED"
        elif self.timed_out:
            outcome = "TIMED OUT"
        elif self.relaxed:
            outcome = "OK (health still settling)"
        else:
            outcome = "OK"
        return f"{self.phase.value}: {outcome} after {self.elapsed_seconds:.0f}s ({self.samples} samples)"


@dataclass
class WatchResult:
    """Both phase results of one monitoring run."""

    detection: PhaseResult
    convergence: PhaseResult | None = None
    history: list[Status] = field(default_factory=list)

    @property
    def fully_converged(self) -> bool:
        return (
            not self.detection.timed_out
            and self.convergence is not None
            and not self.convergence.timed_out
        )

    @property
    def cancelled(self) -> bool:
        return self.detection.cancelled or bool(self.convergence and self.convergence.cancelled)

    @property
    def failed_phase(self) -> Phase | None:
        if self.detection.timed_out:
            return Phase.DETECTION
        if self.convergence is None or self.convergence.timed_out:
            return Phase.CONVERGENCE
        return None

    @property
    def last_status(self) -> Status:
        if self.convergence is not None:
            return self.convergence.final_status
        return self.detection.final_status
