"""Error taxonomy for selsync.

Failures are split by how the caller should react to them:

- ``TransientLockError``: another process holds a shared resource (a git
  index lock, a locked VM). Back off and retry.
- ``TransientNetworkError``: a connection-level failure. Retried a bounded
  number of times where the caller opts in.
- ``TerminalError``: bad credentials, missing files, malformed manifests.
  Never retried.

A phase deadline expiring is not an error; it is reported through
``PhaseResult.timed_out``.
"""

from __future__ import annotations

from enum import Enum


LOCK_HINT = (
    "Another process is holding the resource. Identify and resolve the "
    "conflicting holder (a running git or vagrant process, or a stale lock "
    "file), then re-run."
)


class FailureKind(Enum):
    """How a failed operation should be treated by the retrying executor."""

    TRANSIENT_LOCK = "transient-lock"
    TRANSIENT_OTHER = "transient-other"
    TERMINAL = "terminal"


class SelsyncError(Exception):
    """Base class for all selsync errors."""

    kind = FailureKind.TERMINAL

    def __init__(self, message: str, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class TransientLockError(SelsyncError):
    """A shared resource is busy; retrying after a delay may succeed."""

    kind = FailureKind.TRANSIENT_LOCK

    def __init__(self, message: str, hint: str = LOCK_HINT):
        super().__init__(message, hint)


class TransientNetworkError(SelsyncError):
    """A network call failed in a way that may succeed on a later attempt."""

    kind = FailureKind.TRANSIENT_OTHER


class TerminalError(SelsyncError):
    """A failure that retrying cannot fix."""


class ConfigError(TerminalError):
    """Configuration file or values are invalid."""


class ManifestError(TerminalError):
    """A manifest is missing or does not contain the expected field."""


class RegistryError(TerminalError):
    """The artifact registry rejected a request."""


class PackagingError(TerminalError):
    """Linting or packaging a chart failed."""


class RecordStoreError(TerminalError):
    """A git operation on the record store failed."""


class ChangeError(TerminalError):
    """Applying a change failed; the run must be re-invoked by the operator.

    ``record`` is set when the change was committed locally but a later step
    (the push) failed, so the operator still knows exactly what was published.
    """

    def __init__(self, message: str, hint: str = "", record=None, cause: BaseException | None = None):
        super().__init__(message, hint)
        self.record = record
        self.cause = cause
