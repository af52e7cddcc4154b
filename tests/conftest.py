"""Shared fixtures: a fake clock, a simulated Argo CD, a GitOps repo and a fake Nexus."""

import re
from dataclasses import dataclass
from pathlib import Path

import httpx
import pytest
from git import GitCommandError, Repo

from selsync.change.driver import ChangeDriver
from selsync.change.packaging import TarballPackager
from selsync.change.record_store import GitRecordStore
from selsync.cleanup.compensating import CompensatingCleanup
from selsync.config import DemoConfig, RegistryConfig, RepoConfig, RetryConfig, SelsyncConfig, WatchConfig
from selsync.models.status import HealthState, Status, SyncState
from selsync.probe.status_probe import StatusProbe
from selsync.registry.nexus import NexusRegistry
from selsync.runtime.retry import RetryingExecutor
from selsync.watch.phase_detector import PhaseDetector


# ── Clock ────────────────────────────────────────────────────────────


class FakeClock:
    """Advances instantly on sleep; records every sleep it was asked for."""

    def __init__(self, start: float = 0.0):
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    def sleep(self, seconds, token=None) -> bool:
        if token is not None and token.cancelled:
            return True
        self.sleeps.append(seconds)
        self.time += max(seconds, 0)
        return bool(token is not None and token.cancelled)


# ── Argo CD simulator ────────────────────────────────────────────────


_REPLICAS_RE = re.compile(r"^\s*replicas:\s*[\"']?(\d+)", re.MULTILINE)
_REVISION_RE = re.compile(r"^\s*targetRevision:\s*[\"']?([^\"'\s#]+)", re.MULTILINE)


@dataclass
class _Live:
    revision: str
    replicas: int
    synced_at: float
    first_seen: float | None = None


class FakeController:
    """Argo CD stand-in that follows what has been pushed to the bare remote.

    A pushed change is invisible for ``detect_delay`` seconds, then shows as
    OutOfSync for ``sync_delay`` seconds, then is applied and reports
    Progressing for ``health_delay`` seconds before turning Healthy.
    """

    def __init__(self, remote: Path, clock: FakeClock, detect_delay=2.0, sync_delay=4.0, health_delay=4.0):
        self.remote = Repo(remote)
        self.clock = clock
        self.detect_delay = detect_delay
        self.sync_delay = sync_delay
        self.health_delay = health_delay
        self.down = False
        self.ignored: set[str] = set()  # apps whose changes are never noticed
        self.health_override: dict[str, HealthState] = {}
        self.live: dict[str, _Live] = {}
        self.calls = 0

    def desired(self, app: str) -> tuple[str, int]:
        env = "dev" if "dev" in app else "production"
        deployment = self.remote.git.show(f"main:environments/{app}/templates/deployment.yaml")
        application = self.remote.git.show(f"main:app-of-apps/applications/{env}/templates/{app}.yaml")
        replicas = _REPLICAS_RE.search(deployment)
        revision = _REVISION_RE.search(application)
        return revision.group(1), int(replicas.group(1)) if replicas else 1

    def get_status(self, app: str) -> Status:
        self.calls += 1
        if self.down:
            raise ConnectionError("cluster unreachable")
        now = self.clock.now()
        revision, replicas = self.desired(app)
        live = self.live.get(app)
        if live is None:
            live = self.live[app] = _Live(revision, replicas, synced_at=float("-inf"))

        sync = SyncState.SYNCED
        if (revision, replicas) != (live.revision, live.replicas) and app not in self.ignored:
            if live.first_seen is None:
                live.first_seen = now
            waited = now - live.first_seen
            if waited >= self.detect_delay + self.sync_delay:
                live.revision, live.replicas = revision, replicas
                live.synced_at = now
                live.first_seen = None
            elif waited >= self.detect_delay:
                sync = SyncState.PENDING

        if app in self.health_override:
            health = self.health_override[app]
        elif now - live.synced_at < self.health_delay:
            health = HealthState.PROGRESSING
        else:
            health = HealthState.HEALTHY
        return Status(
            sync_state=sync,
            health_state=health,
            observed_revision=live.revision,
            observed_replica_count=live.replicas,
        )


# ── Nexus stand-in ───────────────────────────────────────────────────


_PACKAGE_RE = re.compile(r"^(?P<name>.+)-(?P<version>\d+\.\d+\.\d+)\.tgz$")


class FakeNexus:
    """In-memory hosted Helm repository served through ``httpx.MockTransport``."""

    def __init__(self, repository: str = "helm-hosted"):
        self.repository = repository
        self.components: dict[str, tuple[str, str]] = {}
        self.uploads: list[str] = []
        self.down = False
        self.fail_uploads = 0  # answer this many uploads with 503
        self.upload_status = None  # force a status for every upload
        self.fail_deletes = False
        self._next_id = 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def add(self, name: str, version: str) -> str:
        component_id = f"comp-{self._next_id}"
        self._next_id += 1
        self.components[component_id] = (name, version)
        return component_id

    def has(self, name: str, version: str) -> bool:
        return (name, version) in self.components.values()

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path

        if request.method == "GET" and path == "/service/rest/v1/repositories":
            return httpx.Response(200, json=[{"name": self.repository, "format": "helm"}])

        if request.method == "PUT" and path.startswith(f"/repository/{self.repository}/"):
            filename = path.rsplit("/", 1)[1]
            self.uploads.append(filename)
            if self.upload_status is not None:
                return httpx.Response(self.upload_status)
            if self.fail_uploads:
                self.fail_uploads -= 1
                return httpx.Response(503)
            match = _PACKAGE_RE.match(filename)
            if not match:
                return httpx.Response(400, text="bad chart file name")
            self.add(match.group("name"), match.group("version"))
            return httpx.Response(200)

        if request.method == "GET" and path == "/service/rest/v1/search":
            name = request.url.params.get("name")
            version = request.url.params.get("version")
            items = [
                {"id": cid, "name": n, "version": v, "repository": self.repository}
                for cid, (n, v) in self.components.items()
                if n == name and (version is None or v == version)
            ]
            return httpx.Response(200, json={"items": items, "continuationToken": None})

        if request.method == "DELETE" and path.startswith("/service/rest/v1/components/"):
            if self.fail_deletes:
                return httpx.Response(500)
            component_id = path.rsplit("/", 1)[1]
            if self.components.pop(component_id, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)

        return httpx.Response(404)


# ── GitOps repository ────────────────────────────────────────────────


CHART_YAML = """apiVersion: v2
name: {app}
description: Demo application {app}
type: application
version: 0.1.0
appVersion: "1.0.0"
"""

DEPLOYMENT_YAML = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: {app}
  namespace: {app}
spec:
  replicas: 1  # scaled by the demo
  selector:
    matchLabels:
      app: {app}
  template:
    metadata:
      labels:
        app: {app}
    spec:
      containers:
        - name: web
          image: "nginx:1.25"
"""

APPLICATION_YAML = """apiVersion: argoproj.io/v1alpha1
kind: Application
metadata:
  name: {app}
  namespace: argocd
spec:
  project: default
  source:
    repoURL: http://nexus.local:8081/repository/helm-hosted/
    chart: {app}
    targetRevision: 0.1.0
  destination:
    server: https://kubernetes.default.svc
    namespace: {app}
"""

APPS = ("dev-api-app", "dev-demo-app")


def write_chart(root: Path, app: str) -> None:
    chart = root / "environments" / app
    (chart / "templates").mkdir(parents=True, exist_ok=True)
    (chart / "Chart.yaml").write_text(CHART_YAML.format(app=app))
    (chart / "templates" / "deployment.yaml").write_text(DEPLOYMENT_YAML.format(app=app))
    application = root / "app-of-apps" / "applications" / "dev" / "templates" / f"{app}.yaml"
    application.parent.mkdir(parents=True, exist_ok=True)
    application.write_text(APPLICATION_YAML.format(app=app))


@dataclass
class GitopsRepo:
    root: Path
    remote: Path

    @property
    def repo(self) -> Repo:
        return Repo(self.root)

    def remote_log(self) -> list[str]:
        return Repo(self.remote).git.log("main", "--format=%s").splitlines()

    def remote_show(self, path: str) -> str:
        return Repo(self.remote).git.show(f"main:{path}")


@pytest.fixture
def gitops_repo(tmp_path) -> GitopsRepo:
    """A work clone with two charts and a bare ``origin`` it has pushed to."""
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True)

    root = tmp_path / "work"
    root.mkdir()
    repo = Repo.init(root)
    with repo.config_writer() as writer:
        writer.set_value("user", "email", "tests@example.com")
        writer.set_value("user", "name", "Selsync Tests")
        writer.set_value("commit", "gpgsign", "false")

    for app in APPS:
        write_chart(root, app)
    (root / ".gitignore").write_text("helm-packages/\n")
    repo.git.add("-A")
    repo.git.commit("-m", "Initial charts")
    repo.git.checkout("-B", "main")
    repo.create_remote("origin", str(remote))
    repo.git.push("-u", "origin", "main")
    try:
        Repo(remote).git.symbolic_ref("HEAD", "refs/heads/main")
    except GitCommandError:
        pass
    return GitopsRepo(root=root, remote=remote)


# ── Wired stack ──────────────────────────────────────────────────────


@dataclass
class Stack:
    config: SelsyncConfig
    clock: FakeClock
    controller: FakeController
    nexus: FakeNexus
    probe: StatusProbe
    executor: RetryingExecutor
    record_store: GitRecordStore
    registry: NexusRegistry
    detector: PhaseDetector
    driver: ChangeDriver
    cleanup: CompensatingCleanup
    gitops: GitopsRepo


def make_config(root: Path) -> SelsyncConfig:
    return SelsyncConfig(
        repo=RepoConfig(root=str(root)),
        registry=RegistryConfig(url="http://nexus.test"),
        watch=WatchConfig(),
        retry=RetryConfig(max_attempts=3, initial_delay=5.0),
        demo=DemoConfig(packager="tarball"),
    )


@pytest.fixture
def stack(gitops_repo):
    clock = FakeClock()
    config = make_config(gitops_repo.root)
    nexus = FakeNexus()
    controller = FakeController(gitops_repo.remote, clock)
    probe = StatusProbe(controller)
    executor = RetryingExecutor(max_attempts=3, initial_delay=5.0, clock=clock)
    record_store = GitRecordStore(gitops_repo.root, executor=executor)
    registry = NexusRegistry(config.registry, transport=nexus.transport)
    detector = PhaseDetector.from_config(probe, config.watch, clock=clock)
    driver = ChangeDriver(
        config,
        record_store=record_store,
        packager=TarballPackager(),
        registry=registry,
        executor=executor,
    )
    cleanup = CompensatingCleanup(config, record_store=record_store, registry=registry, detector=detector)
    yield Stack(
        config=config,
        clock=clock,
        controller=controller,
        nexus=nexus,
        probe=probe,
        executor=executor,
        record_store=record_store,
        registry=registry,
        detector=detector,
        driver=driver,
        cleanup=cleanup,
        gitops=gitops_repo,
    )
    registry.close()
