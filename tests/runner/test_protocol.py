from __future__ import annotations

import json

import pytest

from worker_bridge.runner import (
    ClearNamespace,
    GetDetails,
    GetVariables,
    LoadSession,
    ProtocolDecodeError,
    RunCode,
    RunFile,
    SaveSession,
    UpdateVariable,
    decode_line,
    encode_command,
)


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        (
            RunFile(file="/ws/main.py", capture_main_locals=True),
            {"command": "run_file", "file": "/ws/main.py", "capture_main_locals": True},
        ),
        (
            RunCode(code="x = 1"),
            {"command": "run_code", "code": "x = 1", "capture_main_locals": False},
        ),
        (GetVariables(), {"command": "get_variables"}),
        (GetDetails(name="df"), {"command": "get_details", "name": "df"}),
        (
            GetDetails(name="df", path="columns.0"),
            {"command": "get_details", "name": "df", "path": "columns.0"},
        ),
        (
            UpdateVariable(name="x", type="int", value=3),
            {"command": "update_variable", "name": "x", "type": "int", "value": 3},
        ),
        (ClearNamespace(), {"command": "clear_namespace"}),
        (SaveSession(file="s.pkl"), {"command": "save_session", "file": "s.pkl"}),
        (LoadSession(file="s.pkl"), {"command": "load_session", "file": "s.pkl"}),
    ],
)
def test_command_wire_shapes(command, expected) -> None:
    encoded = encode_command(command)
    assert encoded.endswith(b"\n")
    assert encoded.count(b"\n") == 1
    assert json.loads(encoded) == expected


def test_embedded_newlines_stay_on_one_line() -> None:
    encoded = encode_command(RunCode(code="a = 1\nb = 2\n"))
    assert encoded.count(b"\n") == 1
    assert json.loads(encoded)["code"] == "a = 1\nb = 2\n"


def test_plain_mapping_is_accepted() -> None:
    assert encode_command({"command": "get_variables"}) == b'{"command":"get_variables"}\n'


def test_commands_are_immutable() -> None:
    command = RunFile(file="a.py")
    with pytest.raises(AttributeError):
        command.file = "b.py"  # type: ignore[misc]


def test_decode_line_returns_opaque_value() -> None:
    assert decode_line('{"variables": [{"name": "x"}]}') == {"variables": [{"name": "x"}]}
    assert decode_line("[1, 2]") == [1, 2]


def test_decode_line_rejects_malformed_json() -> None:
    with pytest.raises(ProtocolDecodeError) as excinfo:
        decode_line("NOT-JSON")
    assert excinfo.value.line == "NOT-JSON"
    assert isinstance(excinfo.value, ValueError)
