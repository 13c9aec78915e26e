"""Configuration helpers for launching the worker process."""

from __future__ import annotations

import os
import sys
import tomllib
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

__all__ = [
    "ConfigError",
    "WorkerSettings",
    "config_path",
    "default_executable",
    "load_worker_settings",
]

_CONFIG_FILENAME = "config.toml"
_DEFAULT_WORKER_MODULE = "variable_inspector"
_ENV_HOME = "WORKER_BRIDGE_HOME"
_ENV_PYTHON = "WORKER_BRIDGE_PYTHON"
_ENV_WORKSPACE = "WORKER_BRIDGE_WORKSPACE"
_ENV_CAPTURE = "WORKER_BRIDGE_CAPTURE"

_FALSE_VALUES = {"0", "false", "False", "no"}


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


def default_executable() -> str:
    return "python" if sys.platform == "win32" else "python3"


def _default_extension_path() -> Path:
    return _config_dir() / "worker"


@dataclass(slots=True)
class WorkerSettings:
    """Resolved settings the supervisor needs to start a worker."""

    executable: str | None = None
    search_paths: list[str] = field(default_factory=list)
    working_directory: Path | None = None
    capture_mode: bool = False
    extension_path: Path = field(default_factory=_default_extension_path)
    worker_module: str = _DEFAULT_WORKER_MODULE
    worker_script: Path | None = None
    scan_workspace: bool = False
    error_markers: Sequence[str] = ()

    @property
    def resolved_executable(self) -> str:
        return self.executable or default_executable()

    def worker_argv(self) -> list[str]:
        """Return the argv used to spawn the worker."""

        argv = [self.resolved_executable, "-u"]
        if self.worker_script is not None:
            argv.append(str(self.worker_script))
        else:
            argv.extend(["-m", self.worker_module])
        return argv

    def merged(
        self,
        *,
        executable: str | None = None,
        working_directory: Path | None = None,
        capture_mode: bool | None = None,
    ) -> WorkerSettings:
        """Return a copy that applies CLI/env overrides."""

        return replace(
            self,
            executable=executable or self.executable,
            working_directory=(
                Path(working_directory).resolve()
                if working_directory is not None
                else self.working_directory
            ),
            capture_mode=self.capture_mode if capture_mode is None else capture_mode,
        )

    @classmethod
    def from_mapping(cls, data: dict[str, Any], *, base_dir: Path | None = None) -> WorkerSettings:
        worker = data.get("worker", {})
        paths = data.get("paths", {})
        settings = cls()
        workspace = paths.get("workspace")
        if workspace:
            workspace_path = Path(workspace).expanduser()
            if base_dir is not None and not workspace_path.is_absolute():
                workspace_path = base_dir / workspace_path
            settings.working_directory = workspace_path.resolve()
        extra = paths.get("extra", [])
        if not isinstance(extra, list) or not all(isinstance(item, str) for item in extra):
            raise ConfigError("paths.extra must be a list of strings")
        settings.search_paths = list(extra)
        if "extension" in paths:
            settings.extension_path = Path(paths["extension"]).expanduser()
        settings.executable = worker.get("python") or None
        settings.worker_module = str(worker.get("module", _DEFAULT_WORKER_MODULE))
        if worker.get("script"):
            settings.worker_script = Path(worker["script"]).expanduser()
        settings.capture_mode = bool(worker.get("capture_main_locals", False))
        settings.scan_workspace = bool(paths.get("scan_workspace", False))
        settings.error_markers = tuple(str(m) for m in worker.get("error_markers", ()))
        return settings

    @classmethod
    def from_toml(cls, path: Path) -> WorkerSettings:
        path = Path(path)
        try:
            data = tomllib.loads(path.read_text("utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc
        return cls.from_mapping(data, base_dir=path.parent)


def _config_dir() -> Path:
    custom = os.environ.get(_ENV_HOME)
    return Path(custom) if custom else Path.home() / ".worker-bridge"


def config_path() -> Path:
    """Return the path to the persisted bridge configuration."""

    return _config_dir() / _CONFIG_FILENAME


def load_worker_settings(path: Path | None = None) -> WorkerSettings:
    """Load settings from disk + environment overrides."""

    source = Path(path) if path is not None else config_path()
    if source.exists():
        settings = WorkerSettings.from_toml(source)
    elif path is not None:
        raise ConfigError(f"Configuration file {source} does not exist")
    else:
        settings = WorkerSettings()

    env_python = os.environ.get(_ENV_PYTHON)
    env_workspace = os.environ.get(_ENV_WORKSPACE)
    env_capture = os.environ.get(_ENV_CAPTURE)
    capture: bool | None = None
    if env_capture is not None:
        capture = env_capture not in _FALSE_VALUES

    return settings.merged(
        executable=env_python,
        working_directory=Path(env_workspace) if env_workspace else None,
        capture_mode=capture,
    )
