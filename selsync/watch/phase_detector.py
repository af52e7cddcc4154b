"""PhaseDetector — two-phase polling state machine.

Phase 1 (detection) waits for the controller to acknowledge a change: the
resource goes out of sync, or already reports the target revision. Phase 2
(convergence) waits until one sample shows synced + healthy + target replica
count + target revision.

Splitting the two lets an operator tell "the controller never saw my change"
(propagation or connectivity) apart from "it saw it but is slow to apply"
(workload readiness).

States::

    AWAITING_DETECTION -> AWAITING_CONVERGENCE -> CONVERGED
            |                       |
            +-------> TIMED_OUT <---+

Every run emits a ``PhaseResult`` for each phase it entered, including when
it is cancelled, so callers never block on a watch that has no answer.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from selsync.config import WatchConfig
from selsync.models.status import (
    HealthState,
    Phase,
    PhaseResult,
    Status,
    SyncState,
    WatchResult,
    WatchTarget,
    revision_matches,
)
from selsync.probe.status_probe import StatusProbe
from selsync.runtime.clock import CancellationToken, Clock

logger = logging.getLogger(__name__)

SampleCallback = Callable[[Phase, float, Status], None]


class DetectorState(Enum):
    AWAITING_DETECTION = "awaiting-detection"
    AWAITING_CONVERGENCE = "awaiting-convergence"
    CONVERGED = "converged"
    TIMED_OUT = "timed-out"


def is_detected(status: Status, target: WatchTarget) -> bool:
    """The controller has acknowledged the change."""
    return status.sync_state is SyncState.PENDING or revision_matches(
        status.observed_revision, target.target_revision
    )


def is_converged(status: Status, target: WatchTarget) -> bool:
    """Synced, healthy, and showing the target values in one sample."""
    return (
        status.sync_state is SyncState.SYNCED
        and status.health_state is HealthState.HEALTHY
        and status.observed_replica_count == target.target_replica_count
        and revision_matches(status.observed_revision, target.target_revision)
    )


def is_settling(status: Status, target: WatchTarget) -> bool:
    """Synced with target values, but the workload is still starting up."""
    return (
        status.sync_state is SyncState.SYNCED
        and status.health_state is HealthState.PROGRESSING
        and status.observed_replica_count == target.target_replica_count
        and revision_matches(status.observed_revision, target.target_revision)
    )


class PhaseDetector:
    """Watches one target through detection and convergence."""

    def __init__(
        self,
        probe: StatusProbe,
        clock: Clock | None = None,
        detection_timeout: float = 30.0,
        detection_interval: float = 1.0,
        convergence_timeout: float = 120.0,
        convergence_interval: float = 2.0,
        settle_window: float | None = 15.0,
        on_sample: SampleCallback | None = None,
    ):
        """Initialize the detector.

        Args:
            probe: Status source sampled on every tick.
            clock: Time source; a fake clock lets tests run without delays.
            detection_timeout: Deadline for phase 1, in seconds.
            detection_interval: Sampling interval during phase 1.
            convergence_timeout: Deadline for phase 2, in seconds.
            convergence_interval: Sampling interval during phase 2.
            settle_window: How long a synced-but-progressing resource must
                hold before convergence is declared anyway. None disables it.
            on_sample: Called with (phase, elapsed, status) after each sample.
        """
        self.probe = probe
        self.clock = clock or Clock()
        self.detection_timeout = detection_timeout
        self.detection_interval = detection_interval
        self.convergence_timeout = convergence_timeout
        self.convergence_interval = convergence_interval
        self.settle_window = settle_window
        self.on_sample = on_sample
        self.state = DetectorState.AWAITING_DETECTION

    @classmethod
    def from_config(
        cls,
        probe: StatusProbe,
        watch: WatchConfig,
        clock: Clock | None = None,
        on_sample: SampleCallback | None = None,
    ) -> "PhaseDetector":
        return cls(
            probe,
            clock=clock,
            detection_timeout=float(watch.detection_timeout),
            detection_interval=float(watch.detection_interval),
            convergence_timeout=float(watch.convergence_timeout),
            convergence_interval=float(watch.convergence_interval),
            settle_window=None if watch.settle_window is None else float(watch.settle_window),
            on_sample=on_sample,
        )

    def watch(self, target: WatchTarget, token: CancellationToken | None = None) -> WatchResult:
        """Run both phases against ``target`` and return their results."""
        history: list[Status] = []

        self.state = DetectorState.AWAITING_DETECTION
        logger.info(
            "Waiting for %s to detect revision %s (timeout %.0fs)",
            target.resource_id,
            target.target_revision,
            self.detection_timeout,
        )
        detection = self._run_phase(Phase.DETECTION, target, token, history)
        if detection.timed_out:
            self.state = DetectorState.TIMED_OUT
            if not detection.cancelled:
                logger.warning("Change not detected within %.0fs", self.detection_timeout)
            return WatchResult(detection=detection, history=history)
        logger.info("Change detected after %.0fs (%s)", detection.elapsed_seconds, detection.final_status.describe())

        self.state = DetectorState.AWAITING_CONVERGENCE
        logger.info(
            "Waiting for %s to converge to %d replicas (timeout %.0fs)",
            target.resource_id,
            target.target_replica_count,
            self.convergence_timeout,
        )
        convergence = self._run_phase(Phase.CONVERGENCE, target, token, history)
        if convergence.timed_out:
            self.state = DetectorState.TIMED_OUT
            if not convergence.cancelled:
                logger.warning("No convergence within %.0fs", self.convergence_timeout)
        else:
            self.state = DetectorState.CONVERGED
            if convergence.relaxed:
                logger.info("Synced after %.0fs; health may still be settling", convergence.elapsed_seconds)
            else:
                logger.info("Converged after %.0fs (synced, healthy, scaled)", convergence.elapsed_seconds)
        return WatchResult(detection=detection, convergence=convergence, history=history)

    def _run_phase(
        self,
        phase: Phase,
        target: WatchTarget,
        token: CancellationToken | None,
        history: list[Status],
    ) -> PhaseResult:
        if phase is Phase.DETECTION:
            timeout, interval = self.detection_timeout, self.detection_interval
        else:
            timeout, interval = self.convergence_timeout, self.convergence_interval

        start = self.clock.now()
        last = Status.unknown()
        samples = 0
        settling_since: float | None = None

        def result(timed_out: bool, cancelled: bool = False, relaxed: bool = False) -> PhaseResult:
            return PhaseResult(
                phase=phase,
                elapsed_seconds=self.clock.now() - start,
                final_status=last,
                timed_out=timed_out,
                cancelled=cancelled,
                relaxed=relaxed,
                samples=samples,
            )

        try:
            while True:
                if token is not None and token.cancelled:
                    return result(timed_out=True, cancelled=True)

                last = self.probe.fetch(target.resource_id)
                samples += 1
                history.append(last)
                now = self.clock.now()
                elapsed = now - start
                if self.on_sample is not None:
                    self.on_sample(phase, elapsed, last)

                if phase is Phase.DETECTION:
                    if is_detected(last, target):
                        return result(timed_out=False)
                else:
                    if is_converged(last, target):
                        return result(timed_out=False)
                    if self.settle_window is not None and is_settling(last, target):
                        if settling_since is None:
                            settling_since = now
                        if now - settling_since >= self.settle_window:
                            return result(timed_out=False, relaxed=True)
                    else:
                        settling_since = None

                if elapsed >= timeout:
                    return result(timed_out=True)

                if self.clock.sleep(min(interval, timeout - elapsed), token):
                    return result(timed_out=True, cancelled=True)
        except KeyboardInterrupt:
            logger.warning("Watch interrupted during %s", phase.value)
            if token is not None:
                token.cancel()
            return result(timed_out=True, cancelled=True)
