"""Chart packaging — turn a chart directory into a versioned ``.tgz``.

Two packagers share one interface: ``HelmPackager`` shells out to the helm
CLI (lint, then package), ``TarballPackager`` builds the same archive layout
in-process for hosts without helm.
"""

from __future__ import annotations

import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from selsync.errors import FailureKind, PackagingError
from selsync.runtime.commands import CommandRunner
from selsync.runtime.retry import RetryingExecutor

logger = logging.getLogger(__name__)


@dataclass
class PackagedChart:
    """A built chart archive."""

    name: str
    version: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


class Packager(Protocol):
    def package(self, chart_dir: Path, destination: Path) -> PackagedChart: ...


def read_chart_metadata(chart_dir: str | Path) -> tuple[str, str]:
    """Return ``(name, version)`` from a chart's Chart.yaml.

    Raises:
        PackagingError: If Chart.yaml is missing, malformed, or incomplete.
    """
    chart_file = Path(chart_dir) / "Chart.yaml"
    if not chart_file.is_file():
        raise PackagingError(f"Chart.yaml not found in {chart_dir}")
    try:
        with open(chart_file) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise PackagingError(f"Malformed Chart.yaml in {chart_dir}: {e}")
    name = str(data.get("name") or "").strip()
    version = str(data.get("version") or "").strip()
    if not name or not version:
        raise PackagingError(f"Chart.yaml in {chart_dir} must declare name and version")
    return name, version


def verify_chart(chart_dir: str | Path) -> tuple[str, str]:
    """Check the chart layout and return its metadata."""
    chart_dir = Path(chart_dir)
    name, version = read_chart_metadata(chart_dir)
    templates = chart_dir / "templates"
    if not templates.is_dir():
        raise PackagingError(f"templates/ directory not found in {chart_dir}")
    if not any(templates.iterdir()):
        logger.warning("templates/ directory is empty in %s", chart_dir)
    return name, version


class HelmPackager:
    """Lints and packages charts with the helm CLI.

    Each helm call goes through the retrying executor, so a helm run that
    hits a locked VM or cache directory backs off instead of failing.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        helm: str = "helm",
        executor: RetryingExecutor | None = None,
    ):
        self.runner = runner or CommandRunner()
        self.helm = helm
        self.executor = executor or RetryingExecutor()

    def package(self, chart_dir: Path, destination: Path) -> PackagedChart:
        name, version = verify_chart(chart_dir)
        destination.mkdir(parents=True, exist_ok=True)

        self._helm(["lint", str(chart_dir)], f"Helm chart validation failed for {name}")
        self._helm(
            ["package", str(chart_dir), "--destination", str(destination)],
            f"Failed to package {name}",
        )

        path = destination / f"{name}-{version}.tgz"
        if not path.is_file():
            raise PackagingError(f"Package file not found: {path}")
        logger.info("Packaged %s %s", name, version)
        return PackagedChart(name=name, version=version, path=path)

    def _helm(self, args: list[str], failure: str) -> None:
        argv = [self.helm, *args]
        result = self.executor.execute(
            lambda: self.runner.check(argv, context=f"helm {args[0]}"),
            description=f"helm {args[0]}",
        )
        if result.ok:
            return
        if result.kind is FailureKind.TERMINAL:
            raise PackagingError(f"{failure}: {result.error}")
        result.unwrap()


class TarballPackager:
    """Builds a helm-compatible chart archive without the helm binary."""

    EXCLUDE = {".git", ".helmignore", "__pycache__"}

    def package(self, chart_dir: Path, destination: Path) -> PackagedChart:
        name, version = verify_chart(chart_dir)
        destination.mkdir(parents=True, exist_ok=True)
        path = destination / f"{name}-{version}.tgz"

        with tarfile.open(path, "w:gz") as archive:
            for item in sorted(Path(chart_dir).rglob("*")):
                rel = item.relative_to(chart_dir)
                if any(part in self.EXCLUDE for part in rel.parts) or not item.is_file():
                    continue
                archive.add(item, arcname=f"{name}/{rel.as_posix()}")

        logger.info("Packaged %s %s", name, version)
        return PackagedChart(name=name, version=version, path=path)


def make_packager(
    kind: str,
    runner: CommandRunner | None = None,
    executor: RetryingExecutor | None = None,
) -> Packager:
    if kind == "helm":
        return HelmPackager(runner, executor=executor)
    if kind == "tarball":
        return TarballPackager()
    raise PackagingError(f"Unknown packager: {kind}")
