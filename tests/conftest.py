"""Shared pytest fixtures."""

from __future__ import annotations

import sys
import textwrap
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from worker_bridge.config import WorkerSettings
from worker_bridge.runner import Diagnostic, DiagnosticHub

ECHO_WORKER = """
import json
import sys

for raw in sys.stdin:
    command = json.loads(raw)
    kind = command.get("command")
    if kind == "crash":
        sys.exit(3)
    if kind == "stderr":
        sys.stderr.write(command["text"])
        sys.stderr.flush()
        continue
    sys.stdout.write(json.dumps({"ok": True, "echo": command}) + "\\n")
    sys.stdout.flush()
"""


@pytest.fixture()
def write_worker(tmp_path: Path) -> Callable[[str], Path]:
    counter = iter(range(1000))

    def _write(source: str) -> Path:
        path = tmp_path / f"worker_{next(counter)}.py"
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def make_settings(
    tmp_path: Path, write_worker: Callable[[str], Path]
) -> Callable[..., WorkerSettings]:
    def _make(source: str = ECHO_WORKER, **overrides: object) -> WorkerSettings:
        settings = WorkerSettings(
            executable=sys.executable,
            worker_script=write_worker(source),
            extension_path=tmp_path / "ext",
        )
        for key, value in overrides.items():
            setattr(settings, key, value)
        return settings

    return _make


@pytest.fixture()
def hub() -> DiagnosticHub:
    return DiagnosticHub()


@pytest.fixture()
def diagnostics(hub: DiagnosticHub) -> list[Diagnostic]:
    events: list[Diagnostic] = []
    hub.add_listener(events.append)
    return events


@pytest.fixture()
def wait_until() -> Callable[..., None]:
    def _wait(predicate: Callable[[], object], timeout: float = 10.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                pytest.fail("condition not met before timeout")
            time.sleep(0.01)

    return _wait
