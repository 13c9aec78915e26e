"""Commands and codec for the newline-delimited JSON worker protocol."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "ClearNamespace",
    "Command",
    "GetDetails",
    "GetVariables",
    "LoadSession",
    "ProtocolDecodeError",
    "RunCode",
    "RunFile",
    "SaveSession",
    "UpdateVariable",
    "decode_line",
    "encode_command",
]


class ProtocolDecodeError(ValueError):
    """Raised when a worker line is not valid JSON."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"Malformed worker line ({reason}): {line[:200]!r}")
        self.line = line
        self.reason = reason


@dataclass(frozen=True, slots=True)
class Command:
    """Base class for outbound worker commands."""

    kind: ClassVar[str] = ""

    def to_payload(self) -> dict[str, Any]:
        return {"command": self.kind}


@dataclass(frozen=True, slots=True)
class RunFile(Command):
    kind: ClassVar[str] = "run_file"

    file: str
    capture_main_locals: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "command": self.kind,
            "file": self.file,
            "capture_main_locals": self.capture_main_locals,
        }


@dataclass(frozen=True, slots=True)
class RunCode(Command):
    kind: ClassVar[str] = "run_code"

    code: str
    capture_main_locals: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "command": self.kind,
            "code": self.code,
            "capture_main_locals": self.capture_main_locals,
        }


@dataclass(frozen=True, slots=True)
class GetVariables(Command):
    kind: ClassVar[str] = "get_variables"


@dataclass(frozen=True, slots=True)
class GetDetails(Command):
    kind: ClassVar[str] = "get_details"

    name: str
    path: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"command": self.kind, "name": self.name}
        if self.path is not None:
            payload["path"] = self.path
        return payload


@dataclass(frozen=True, slots=True)
class UpdateVariable(Command):
    kind: ClassVar[str] = "update_variable"

    name: str
    type: str
    value: Any

    def to_payload(self) -> dict[str, Any]:
        return {
            "command": self.kind,
            "name": self.name,
            "type": self.type,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class ClearNamespace(Command):
    kind: ClassVar[str] = "clear_namespace"


@dataclass(frozen=True, slots=True)
class SaveSession(Command):
    kind: ClassVar[str] = "save_session"

    file: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": self.kind, "file": self.file}


@dataclass(frozen=True, slots=True)
class LoadSession(Command):
    kind: ClassVar[str] = "load_session"

    file: str

    def to_payload(self) -> dict[str, Any]:
        return {"command": self.kind, "file": self.file}


def encode_command(command: Command | dict[str, Any]) -> bytes:
    """Serialize a command to a single newline-terminated UTF-8 line."""

    payload = command.to_payload() if isinstance(command, Command) else dict(command)
    # json.dumps escapes embedded newlines, so the output is always one line.
    text = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def decode_line(line: str) -> Any:
    """Decode one framed line into a response value."""

    try:
        return json.loads(line)
    except json.JSONDecodeError as exc:
        raise ProtocolDecodeError(line, exc.msg) from exc
