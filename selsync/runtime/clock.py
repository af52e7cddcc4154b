"""Scheduled-tick primitives: a monotonic clock with cancellable sleeps.

Polling loops and backoff sleeps suspend through ``Clock.sleep`` so that an
operator interrupt can end them promptly and tests can substitute a clock
that advances instantly.
"""

from __future__ import annotations

import threading
import time


class CancellationToken:
    """Cooperative cancellation flag shared between a loop and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block for up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(seconds)


class Clock:
    """Wall-clock implementation backed by ``time.monotonic``."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, token: CancellationToken | None = None) -> bool:
        """Suspend for ``seconds``. Returns True if the token was cancelled."""
        if token is None:
            if seconds > 0:
                time.sleep(seconds)
            return False
        if seconds <= 0:
            return token.cancelled
        return token.wait(seconds)
