"""Semantic version bumps for chart versions."""

from __future__ import annotations

import re

BUMP_KINDS = ("patch", "minor", "major")

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:[-+].*)?$")


def parse_version(version: str) -> tuple[int, int, int]:
    match = _VERSION_RE.match(version.strip().strip('"').strip("'"))
    if not match:
        raise ValueError(f"Not a semantic version: {version!r}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def bump_version(version: str, kind: str = "patch") -> str:
    """Bump ``version`` by ``kind``.

    ``major`` resets minor and patch to 0, ``minor`` resets patch to 0.
    Pre-release and build suffixes are dropped.

    >>> bump_version("0.1.0")
    '0.1.1'
    >>> bump_version("1.4.2", "major")
    '2.0.0'
    """
    major, minor, patch = parse_version(version)
    if kind == "major":
        return f"{major + 1}.0.0"
    if kind == "minor":
        return f"{major}.{minor + 1}.0"
    if kind == "patch":
        return f"{major}.{minor}.{patch + 1}"
    raise ValueError(f"Unknown bump kind {kind!r}; expected one of {', '.join(BUMP_KINDS)}")
