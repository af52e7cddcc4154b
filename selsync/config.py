"""Configuration — explicit settings passed to every component constructor.

Values are resolved in three layers: dataclass defaults, then an optional YAML
file, then a small set of environment overrides. Nothing is read from the
environment at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from selsync.errors import ConfigError


DEFAULT_CONFIG_FILE = "selsync.yaml"


@dataclass
class RepoConfig:
    """Layout of the GitOps source repository."""

    root: str = "."
    charts_dir: str = "environments"
    packages_dir: str = "helm-packages"
    applications_dir: str = "app-of-apps/applications"
    remote: str = "origin"
    git_email: str = "argocd-demo@example.com"
    git_name: str = "ArgoCD Demo Script"

    @property
    def root_path(self) -> Path:
        return Path(self.root).resolve()

    def chart_dir(self, app: str) -> Path:
        return self.root_path / self.charts_dir / app

    def chart_file(self, app: str) -> Path:
        return self.chart_dir(app) / "Chart.yaml"

    def deployment_file(self, app: str) -> Path:
        return self.chart_dir(app) / "templates" / "deployment.yaml"

    def package_file(self, app: str, version: str) -> Path:
        return self.root_path / self.packages_dir / f"{app}-{version}.tgz"

    def application_file(self, app: str) -> Path:
        """Return the Argo CD Application manifest for ``app``.

        The environment is derived from the app name the same way the
        app-of-apps layout names its directories.
        """
        if "dev" in app:
            env = "dev"
        elif "production" in app:
            env = "production"
        else:
            raise ConfigError(f"Cannot determine environment for app: {app}")
        return self.root_path / self.applications_dir / env / "templates" / f"{app}.yaml"


@dataclass
class RegistryConfig:
    """Nexus repository connection."""

    url: str = "http://localhost:8081"
    repository: str = "helm-hosted"
    username: str = "admin"
    password: str = "admin123"
    timeout_seconds: float = 30.0


@dataclass
class ClusterConfig:
    """How to reach the cluster and the Argo CD control plane."""

    kubectl: str = "kubectl"
    argocd_namespace: str = "argocd"
    remote_shell: list[str] = field(default_factory=list)
    command_timeout_seconds: float = 20.0


@dataclass
class WatchConfig:
    """Polling cadence and deadlines for both watch phases."""

    detection_timeout: float = 30.0
    detection_interval: float = 1.0
    convergence_timeout: float = 120.0
    convergence_interval: float = 2.0
    settle_window: float | None = 15.0
    push_grace_seconds: float = 3.0


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 5.0


@dataclass
class DemoConfig:
    """Which resources the demo changes and which it uses as the control."""

    changed_app: str = "dev-api-app"
    control_app: str = "dev-demo-app"
    bump_kind: str = "patch"
    packager: str = "helm"


@dataclass
class SelsyncConfig:
    repo: RepoConfig = field(default_factory=RepoConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    demo: DemoConfig = field(default_factory=DemoConfig)


# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "NEXUS_URL": ("registry", "url"),
    "NEXUS_USERNAME": ("registry", "username"),
    "ADMIN_PASSWORD": ("registry", "password"),
    "NEXUS_REPOSITORY": ("registry", "repository"),
    "SELSYNC_REPO_ROOT": ("repo", "root"),
    "SELSYNC_REMOTE_SHELL": ("cluster", "remote_shell"),
}


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> SelsyncConfig:
    """Build a ``SelsyncConfig`` from defaults, a YAML file and the environment.

    Args:
        path: YAML file to read. When *None*, ``selsync.yaml`` in the current
              directory is used if it exists.
        env: Environment mapping for overrides. Defaults to ``os.environ``.

    Raises:
        ConfigError: If the file cannot be parsed or holds unknown keys.
    """
    config = SelsyncConfig()
    env = os.environ if env is None else env

    if path is None and Path(DEFAULT_CONFIG_FILE).exists():
        path = DEFAULT_CONFIG_FILE

    if path is not None:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        _apply_mapping(config, data, prefix="")

    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        target = getattr(config, section)
        if key == "remote_shell":
            setattr(target, key, value.split())
        else:
            setattr(target, key, value)

    _validate(config)
    return config


def _apply_mapping(obj: Any, data: dict, prefix: str) -> None:
    known = {f.name: f for f in fields(obj)}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in known:
            raise ConfigError(f"Unknown config key: {prefix}{key}")
        current = getattr(obj, name)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ConfigError(f"Config section {prefix}{key} must be a mapping")
            _apply_mapping(current, value, prefix=f"{prefix}{key}.")
        else:
            setattr(obj, name, value)


def _validate(config: SelsyncConfig) -> None:
    if config.demo.bump_kind not in ("patch", "minor", "major"):
        raise ConfigError(f"demo.bump_kind must be patch, minor or major, got {config.demo.bump_kind!r}")
    if config.demo.packager not in ("helm", "tarball"):
        raise ConfigError(f"demo.packager must be helm or tarball, got {config.demo.packager!r}")
    config.retry.max_attempts = _number(config.retry, "retry", "max_attempts", int)
    config.retry.initial_delay = _number(config.retry, "retry", "initial_delay", float)
    if config.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be at least 1")
    for name in ("detection_timeout", "detection_interval", "convergence_timeout", "convergence_interval"):
        value = _number(config.watch, "watch", name, float)
        if value <= 0:
            raise ConfigError(f"watch.{name} must be positive")
        setattr(config.watch, name, value)
    config.watch.push_grace_seconds = _number(config.watch, "watch", "push_grace_seconds", float)
    if config.watch.settle_window is not None:
        config.watch.settle_window = _number(config.watch, "watch", "settle_window", float)
    config.registry.timeout_seconds = _number(config.registry, "registry", "timeout_seconds", float)
    config.cluster.command_timeout_seconds = _number(config.cluster, "cluster", "command_timeout_seconds", float)
    if isinstance(config.cluster.remote_shell, str):
        config.cluster.remote_shell = config.cluster.remote_shell.split()


def _number(section: Any, prefix: str, name: str, kind: type) -> Any:
    value = getattr(section, name)
    if isinstance(value, bool):
        raise ConfigError(f"{prefix}.{name} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{prefix}.{name} must be a number, got {value!r}")
