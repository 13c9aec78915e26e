"""Worker supervisor, environment resolver, framing and protocol helpers."""

from .diagnostics import (
    Diagnostic,
    DiagnosticHub,
    DiagnosticKind,
    DiagnosticLevel,
    SeverityRule,
    StderrClassifier,
)
from .environment import EnvironmentResolver, EnvironmentSpec, resolve_search_paths
from .framing import LineFramer
from .protocol import (
    ClearNamespace,
    Command,
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
from .supervisor import MessageCallback, SessionState, WorkerSupervisor

__all__ = [
    "ClearNamespace",
    "Command",
    "Diagnostic",
    "DiagnosticHub",
    "DiagnosticKind",
    "DiagnosticLevel",
    "EnvironmentResolver",
    "EnvironmentSpec",
    "GetDetails",
    "GetVariables",
    "LineFramer",
    "LoadSession",
    "MessageCallback",
    "ProtocolDecodeError",
    "RunCode",
    "RunFile",
    "SaveSession",
    "SessionState",
    "SeverityRule",
    "StderrClassifier",
    "UpdateVariable",
    "WorkerSupervisor",
    "decode_line",
    "encode_command",
    "resolve_search_paths",
]
