from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from worker_bridge.cli.main import CLIState, app
from worker_bridge.config import WorkerSettings

SILENT_WORKER = """
import sys

for _ in sys.stdin:
    pass
"""


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def state(make_settings: Callable[..., WorkerSettings]) -> CLIState:
    return CLIState(settings=make_settings(), timeout=10)


def test_variables_prints_first_response(runner: CliRunner, state: CLIState) -> None:
    result = runner.invoke(app, ["variables"], obj=state)
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {"ok": True, "echo": {"command": "get_variables"}}


def test_run_code_uses_capture_setting(
    runner: CliRunner, make_settings: Callable[..., WorkerSettings]
) -> None:
    state = CLIState(settings=make_settings(capture_mode=True), timeout=10)
    result = runner.invoke(app, ["run-code", "x = 41 + 1"], obj=state)
    assert result.exit_code == 0, result.output
    echo = json.loads(result.stdout)["echo"]
    assert echo == {"command": "run_code", "code": "x = 41 + 1", "capture_main_locals": True}


def test_update_parses_json_values(runner: CliRunner, state: CLIState) -> None:
    result = runner.invoke(app, ["update", "items", "[1, 2]", "--type", "list"], obj=state)
    assert result.exit_code == 0, result.output
    echo = json.loads(result.stdout)["echo"]
    assert echo == {"command": "update_variable", "name": "items", "type": "list", "value": [1, 2]}


def test_save_sends_absolute_path(runner: CliRunner, state: CLIState, tmp_path: Path) -> None:
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(app, ["save", "state.pkl"], obj=state)
        expected = str(Path("state.pkl").resolve())
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["echo"]["file"] == expected


def test_spawn_failure_exits_non_zero(
    runner: CliRunner, make_settings: Callable[..., WorkerSettings]
) -> None:
    state = CLIState(settings=make_settings(executable="/definitely/not/a/real/binary"))
    result = runner.invoke(app, ["clear"], obj=state)
    assert result.exit_code == 1
    assert "Worker process could not be started." in result.output


def test_timeout_without_response(
    runner: CliRunner, make_settings: Callable[..., WorkerSettings]
) -> None:
    state = CLIState(settings=make_settings(SILENT_WORKER), timeout=0.3)
    result = runner.invoke(app, ["variables"], obj=state)
    assert result.exit_code == 1
    assert "Timed out waiting for a worker response." in result.output


def test_config_command_reports_resolved_settings(
    runner: CliRunner, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("WORKER_BRIDGE_HOME", str(tmp_path))
    monkeypatch.delenv("WORKER_BRIDGE_PYTHON", raising=False)
    monkeypatch.delenv("WORKER_BRIDGE_CAPTURE", raising=False)
    monkeypatch.delenv("WORKER_BRIDGE_WORKSPACE", raising=False)
    result = runner.invoke(
        app,
        ["--python", "/usr/bin/python3", "--workspace", str(tmp_path), "--capture", "config"],
    )
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["executable"] == "/usr/bin/python3"
    assert data["capture_mode"] is True
    assert data["working_directory"] == str(tmp_path.resolve())
    assert data["argv"] == ["/usr/bin/python3", "-u", "-m", "variable_inspector"]


def test_missing_config_file_is_reported(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "nope.toml"), "config"])
    assert result.exit_code == 1
    assert "does not exist" in result.output
