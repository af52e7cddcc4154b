"""Tests for chart packaging."""

import tarfile
import tempfile
from pathlib import Path

import pytest

from selsync.change.packaging import HelmPackager, TarballPackager, make_packager, read_chart_metadata
from selsync.errors import PackagingError, TransientLockError
from selsync.runtime.commands import CommandResult, CommandRunner
from selsync.runtime.retry import RetryingExecutor

from conftest import FakeClock, write_chart


class RecordingRunner(CommandRunner):
    """Pretends to be helm; fails the ``fail_on`` subcommand ``failures`` times."""

    def __init__(self, fail_on=None, failures=1, stderr="[ERROR] Chart.yaml: version is required"):
        super().__init__()
        self.calls = []
        self.fail_on = fail_on
        self.failures = failures
        self.stderr = stderr

    def run(self, argv, cwd=None):
        self.calls.append(argv)
        if self.fail_on and argv[1] == self.fail_on and self.failures:
            self.failures -= 1
            return CommandResult(argv=argv, returncode=1, stderr=self.stderr)
        if argv[1] == "package":
            chart_dir = Path(argv[2])
            name, version = read_chart_metadata(chart_dir)
            destination = Path(argv[4])
            (destination / f"{name}-{version}.tgz").write_bytes(b"chart")
        return CommandResult(argv=argv, returncode=0, stdout="ok")


def test_tarball_packager_layout():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_chart(root, "dev-api-app")
        chart = TarballPackager().package(root / "environments" / "dev-api-app", root / "helm-packages")

        assert chart.name == "dev-api-app"
        assert chart.version == "0.1.0"
        assert chart.filename == "dev-api-app-0.1.0.tgz"
        with tarfile.open(chart.path) as archive:
            names = archive.getnames()
        assert "dev-api-app/Chart.yaml" in names
        assert "dev-api-app/templates/deployment.yaml" in names


def test_helm_packager_lints_then_packages():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_chart(root, "dev-api-app")
        runner = RecordingRunner()
        chart = HelmPackager(runner, executor=RetryingExecutor(clock=FakeClock())).package(root / "environments" / "dev-api-app", root / "out")

        assert [call[1] for call in runner.calls] == ["lint", "package"]
        assert chart.path == root / "out" / "dev-api-app-0.1.0.tgz"


def test_helm_lint_failure_stops_packaging():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_chart(root, "dev-api-app")
        runner = RecordingRunner(fail_on="lint")
        with pytest.raises(PackagingError, match="validation failed"):
            HelmPackager(runner, executor=RetryingExecutor(clock=FakeClock())).package(root / "environments" / "dev-api-app", root / "out")
        assert len(runner.calls) == 1


def test_chart_without_version_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        chart = Path(tmpdir) / "broken"
        (chart / "templates").mkdir(parents=True)
        (chart / "Chart.yaml").write_text("apiVersion: v2\nname: broken\n")
        with pytest.raises(PackagingError):
            TarballPackager().package(chart, Path(tmpdir) / "out")


def test_unknown_packager():
    with pytest.raises(PackagingError):
        make_packager("docker")


def test_helm_retries_while_locked():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_chart(root, "dev-api-app")
        clock = FakeClock()
        runner = RecordingRunner(fail_on="package", failures=1, stderr="error: VM is locked by another process")
        chart = HelmPackager(runner, executor=RetryingExecutor(clock=clock)).package(
            root / "environments" / "dev-api-app", root / "out"
        )

        assert chart.version == "0.1.0"
        assert [call[1] for call in runner.calls] == ["lint", "package", "package"]
        assert clock.sleeps == [5.0]


def test_helm_lock_that_never_clears():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write_chart(root, "dev-api-app")
        runner = RecordingRunner(fail_on="lint", failures=10, stderr="error: VM is locked by another process")
        with pytest.raises(TransientLockError):
            HelmPackager(runner, executor=RetryingExecutor(clock=FakeClock())).package(
                root / "environments" / "dev-api-app", root / "out"
            )
        assert len(runner.calls) == 3
