"""Retrying executor — bounded retries with exponential backoff.

Failures are classified before any retry decision:

- transient-lock: retried up to ``max_attempts`` with the delay doubling
  from ``initial_delay``
- transient-other: surfaced immediately unless the caller opts in
- terminal, or anything the classifier cannot place: surfaced immediately

Total time spent sleeping is bounded by ``initial_delay * (2**max_attempts - 1)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from selsync.errors import FailureKind, SelsyncError
from selsync.runtime.clock import CancellationToken, Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], "FailureKind | None"]


def default_classifier(exc: BaseException) -> FailureKind | None:
    """Classify by the selsync error taxonomy; everything else is terminal."""
    if isinstance(exc, SelsyncError):
        return exc.kind
    return FailureKind.TERMINAL


class _RetryCancelled(Exception):
    """Raised from the backoff sleep when the token is cancelled."""


@dataclass
class RetryState:
    """State captured before each backoff sleep."""

    attempt: int
    next_delay_seconds: float
    last_error: BaseException | None = None


@dataclass
class ExecutionResult(Generic[T]):
    """Outcome of a retried operation: a value or the final error."""

    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    kind: FailureKind | None = None  # Classification of ``error``
    history: list[RetryState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or re-raise the original error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class RetryingExecutor:
    """Runs side-effecting actions with classified, bounded retries."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 5.0,
        clock: Clock | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.clock = clock or Clock()

    @property
    def max_total_delay(self) -> float:
        return self.initial_delay * (2 ** self.max_attempts - 1)

    def execute(
        self,
        action: Callable[[], T],
        classify: Classifier = default_classifier,
        retry_transient_other: bool = False,
        description: str = "operation",
        token: CancellationToken | None = None,
    ) -> ExecutionResult[T]:
        """Run ``action`` until it succeeds, fails terminally, or the budget runs out.

        Args:
            action: Zero-argument callable performing the side effect.
            classify: Maps a raised exception to a ``FailureKind``. Returning
                      None, or raising, is treated as terminal.
            retry_transient_other: Also retry ``TRANSIENT_OTHER`` failures.
            description: Label used in log messages.
            token: Cancels pending backoff sleeps and stops further attempts.
        """
        retryable = {FailureKind.TRANSIENT_LOCK}
        if retry_transient_other:
            retryable.add(FailureKind.TRANSIENT_OTHER)

        history: list[RetryState] = []
        attempts = 0

        def kind_of(exc: BaseException) -> FailureKind:
            try:
                kind = classify(exc)
            except Exception:
                logger.debug("Failure classifier raised for %r; treating as terminal", exc)
                return FailureKind.TERMINAL
            return kind if isinstance(kind, FailureKind) else FailureKind.TERMINAL

        def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return action()

        def before_sleep(retry_state: Any) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            error = retry_state.outcome.exception()
            history.append(RetryState(retry_state.attempt_number, delay, error))
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.0fs",
                description,
                retry_state.attempt_number,
                self.max_attempts,
                error,
                delay,
            )

        def sleep(seconds: float) -> None:
            if self.clock.sleep(seconds, token):
                raise _RetryCancelled()

        stop = stop_after_attempt(self.max_attempts)
        if token is not None:
            stop = stop | (lambda retry_state: token.cancelled)

        retrying = Retrying(
            stop=stop,
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=2),
            retry=retry_if_exception(lambda exc: kind_of(exc) in retryable),
            before_sleep=before_sleep,
            sleep=sleep,
            reraise=True,
        )

        try:
            value = retrying(attempt)
        except _RetryCancelled:
            # No further attempt once the backoff sleep was interrupted
            error = history[-1].last_error
            logger.warning("%s cancelled after %d attempt(s)", description, attempts)
            return ExecutionResult(error=error, attempts=attempts, kind=kind_of(error), history=history)
        except Exception as exc:
            kind = kind_of(exc)
            if kind is FailureKind.TRANSIENT_LOCK and attempts >= self.max_attempts:
                logger.error("%s still locked after %d attempts", description, attempts)
            return ExecutionResult(error=exc, attempts=attempts, kind=kind, history=history)
        return ExecutionResult(value=value, attempts=attempts, history=history)
