"""Parameter store — read and write single fields in chart manifests.

Helm templates are not valid YAML until rendered, so fields are edited in
place line by line. Only the value changes: indentation, quoting style,
comments and the rest of the file are left exactly as they were.
"""

from __future__ import annotations

import re
from pathlib import Path

from selsync.errors import ManifestError


def _field_re(key: str, top_level: bool) -> re.Pattern[str]:
    indent = "" if top_level else r"[ \t]*"
    return re.compile(
        rf"^(?P<prefix>{indent}{re.escape(key)}:[ \t]*)"
        rf"(?P<quote>[\"']?)(?P<value>[^\"'#\n]*?)(?P=quote)"
        rf"(?P<suffix>[ \t]*(?:#.*)?)$",
        re.MULTILINE,
    )


class ManifestParameterStore:
    """Format-preserving access to ``key: value`` fields in manifest files."""

    def read_field(self, path: str | Path, key: str, top_level: bool = False) -> str | None:
        """Return the first value of ``key`` in ``path``, or None if absent.

        Raises:
            ManifestError: If the file does not exist.
        """
        text = self._read(path)
        match = _field_re(key, top_level).search(text)
        if not match:
            return None
        value = match.group("value").strip()
        return value or None

    def read_int(self, path: str | Path, key: str, default: int) -> int:
        """Read a numeric field, keeping only its digits; ``default`` when empty."""
        value = self.read_field(path, key)
        digits = re.sub(r"\D", "", value or "")
        return int(digits) if digits else default

    def write_field(self, path: str | Path, key: str, value: object, top_level: bool = False) -> str:
        """Set the first ``key`` in ``path`` to ``value``; return the previous value.

        Raises:
            ManifestError: If the file or the field does not exist.
        """
        text = self._read(path)
        pattern = _field_re(key, top_level)
        match = pattern.search(text)
        if not match:
            raise ManifestError(f"Field '{key}' not found in {path}")
        previous = match.group("value").strip()
        replacement = f"{match.group('prefix')}{match.group('quote')}{value}{match.group('quote')}{match.group('suffix')}"
        updated = text[: match.start()] + replacement + text[match.end():]
        Path(path).write_text(updated, encoding="utf-8")
        return previous

    @staticmethod
    def _read(path: str | Path) -> str:
        p = Path(path)
        if not p.is_file():
            raise ManifestError(f"Manifest not found: {p}")
        return p.read_text(encoding="utf-8")
