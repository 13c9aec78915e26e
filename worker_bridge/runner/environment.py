"""Resolve the search path and spawn environment for worker processes."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from worker_bridge.config import WorkerSettings

__all__ = [
    "EnvironmentResolver",
    "EnvironmentSpec",
    "SEARCH_PATH_VARIABLE",
    "join_search_paths",
    "resolve_search_paths",
    "scan_workspace",
]

SEARCH_PATH_VARIABLE = "PYTHONPATH"

_SCAN_MAX_DEPTH = 5
_SCAN_SKIP = frozenset({"node_modules", "venv"})

logger = logging.getLogger("worker_bridge.runner.environment")


@dataclass(frozen=True, slots=True)
class EnvironmentSpec:
    """Environment computed for one worker process instance."""

    search_paths: tuple[str, ...]
    working_directory: Path | None
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def search_path(self) -> str:
        return join_search_paths(self.search_paths)


def resolve_search_paths(
    executable_hint: str | None,
    extra_paths: Sequence[str],
    workspace_root: str | os.PathLike[str] | None,
    extension_path: str | os.PathLike[str],
    inherited: str | None,
) -> list[str]:
    """Return the ordered search-path entries for a worker.

    Relative ``extra_paths`` are joined against ``workspace_root`` when one is
    given and left untouched otherwise. Resolution is textual: nothing is
    deduplicated or checked for existence.
    """

    logger.debug("environment.resolve", extra={"executable": executable_hint})
    resolved: list[str] = []
    for entry in extra_paths:
        if os.path.isabs(entry) or workspace_root is None:
            resolved.append(entry)
        else:
            resolved.append(os.path.normpath(os.path.join(os.fspath(workspace_root), entry)))
    resolved.append(os.fspath(extension_path))
    if inherited:
        resolved.append(inherited)
    return resolved


def join_search_paths(entries: Sequence[str]) -> str:
    return os.pathsep.join(entries)


def scan_workspace(root: Path, *, max_depth: int = _SCAN_MAX_DEPTH) -> Iterator[str]:
    """Yield workspace subdirectories worth importing from, parents first."""

    def _walk(directory: Path, depth: int) -> Iterator[str]:
        if depth > max_depth:
            return
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            logger.warning(
                "environment.scan_failed",
                extra={"path": str(directory), "error": str(exc)},
            )
            return
        for entry in entries:
            name = entry.name
            if name.startswith((".", "__")) or name in _SCAN_SKIP:
                continue
            if entry.is_dir():
                yield str(entry)
                yield from _walk(entry, depth + 1)

    yield from _walk(Path(root), 0)


class EnvironmentResolver:
    """Build :class:`EnvironmentSpec` values from worker settings."""

    def __init__(self, base_env: Mapping[str, str] | None = None) -> None:
        self.base_env = dict(os.environ if base_env is None else base_env)

    def resolve(self, settings: WorkerSettings) -> EnvironmentSpec:
        workspace = settings.working_directory
        extra_paths = list(settings.search_paths)
        if settings.scan_workspace and workspace is not None:
            extra_paths.extend(scan_workspace(workspace))
        entries = resolve_search_paths(
            settings.resolved_executable,
            extra_paths,
            workspace,
            settings.extension_path,
            self.base_env.get(SEARCH_PATH_VARIABLE),
        )
        for index, entry in enumerate(entries):
            logger.debug("environment.entry", extra={"index": index, "path": entry})
        return EnvironmentSpec(
            search_paths=tuple(entries),
            working_directory=workspace,
            env=self._build_env(entries),
        )

    def _build_env(self, entries: Sequence[str]) -> dict[str, str]:
        env: dict[str, str] = dict(self.base_env)
        env[SEARCH_PATH_VARIABLE] = join_search_paths(entries)
        env.setdefault("PYTHONUNBUFFERED", "1")
        env.pop("PYTHONHOME", None)
        return env
