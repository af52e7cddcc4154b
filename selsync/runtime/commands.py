"""Subprocess execution and failure classification for external CLIs.

Commands never raise on a non-zero exit; callers inspect ``CommandResult``
or convert it with ``error_for_result`` so the retrying executor can decide
whether the failure is worth another attempt.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

from selsync.errors import (
    FailureKind,
    SelsyncError,
    TerminalError,
    TransientLockError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

# Exit codes used when the process could not produce one itself
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124

_LOCK_MARKERS = (
    "locked",
    "index.lock",
    "another git process",
    "resource busy",
    "resource temporarily unavailable",
)

# Checked before the network markers: a rejected login also says
# "could not read from remote repository"
_AUTH_MARKERS = (
    "permission denied",
    "authentication failed",
    "error: 401",
    "error: 403",
)

_NETWORK_MARKERS = (
    "could not resolve host",
    "connection refused",
    "connection reset",
    "connection timed out",
    "timed out",
    "unable to access",
    "network is unreachable",
    "could not read from remote repository",
)


@dataclass
class CommandResult:
    """Result of running one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def display(self) -> str:
        return shlex.join(self.argv)


def classify_output(text: str) -> FailureKind | None:
    """Classify failure output as lock, other transient, auth (terminal) or unrecognised (None)."""
    lowered = text.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return FailureKind.TERMINAL
    if any(marker in lowered for marker in _LOCK_MARKERS):
        return FailureKind.TRANSIENT_LOCK
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return FailureKind.TRANSIENT_OTHER
    return None


def error_for_result(result: CommandResult, context: str = "") -> SelsyncError:
    """Build the exception matching a failed command's output."""
    detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
    message = f"{context or result.display} failed: {detail[:500]}"
    kind = classify_output(result.output)
    if result.returncode == EXIT_TIMEOUT:
        kind = FailureKind.TRANSIENT_OTHER
    if kind is FailureKind.TRANSIENT_LOCK:
        return TransientLockError(message)
    if kind is FailureKind.TRANSIENT_OTHER:
        return TransientNetworkError(message)
    return TerminalError(message)


@dataclass
class CommandRunner:
    """Runs commands locally or through a remote shell prefix.

    With a prefix such as ``["vagrant-ssh"]`` the command is joined into a
    single shell string and passed as the prefix's last argument.
    """

    prefix: list[str] = field(default_factory=list)
    timeout_seconds: float | None = None

    def run(self, argv: list[str], cwd: str | Path | None = None) -> CommandResult:
        full = list(self.prefix) + [shlex.join(argv)] if self.prefix else list(argv)
        start = time.monotonic()
        logger.debug("Running: %s", shlex.join(full))
        try:
            proc = subprocess.run(
                full,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            return CommandResult(
                argv=full,
                returncode=EXIT_NOT_FOUND,
                stderr=f"command not found: {e.filename or full[0]}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=full,
                returncode=EXIT_TIMEOUT,
                stderr=f"timed out after {self.timeout_seconds}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        return CommandResult(
            argv=full,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def check(self, argv: list[str], cwd: str | Path | None = None, context: str = "") -> CommandResult:
        """Run a command and raise the classified error if it fails."""
        result = self.run(argv, cwd=cwd)
        if not result.ok:
            raise error_for_result(result, context)
        return result
