"""Command surface for a single worker session."""

from __future__ import annotations

from typing import Any

from worker_bridge.config import WorkerSettings
from worker_bridge.runner import (
    ClearNamespace,
    DiagnosticHub,
    GetDetails,
    GetVariables,
    LoadSession,
    MessageCallback,
    RunCode,
    RunFile,
    SaveSession,
    UpdateVariable,
    WorkerSupervisor,
)

__all__ = ["WorkerSession"]


class WorkerSession:
    """Named worker commands built on :meth:`WorkerSupervisor.send`.

    Every command returns the supervisor's delivery result unchanged. The
    worker has no request identifiers, so responses arrive at the callback
    in the order the commands were sent; sending a second command before
    the first one is answered is left to the worker to handle.
    """

    def __init__(
        self,
        settings: WorkerSettings,
        *,
        supervisor: WorkerSupervisor | None = None,
        diagnostics: DiagnosticHub | None = None,
    ) -> None:
        self.settings = settings
        self.supervisor = supervisor or WorkerSupervisor(settings, diagnostics=diagnostics)

    def __enter__(self) -> WorkerSession:  # noqa: D401 - context manager
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()

    @property
    def diagnostics(self) -> DiagnosticHub:
        return self.supervisor.diagnostics

    def start(self, callback: MessageCallback) -> bool:
        return self.supervisor.start(callback)

    def is_running(self) -> bool:
        return self.supervisor.is_running

    def dispose(self) -> None:
        self.supervisor.dispose()

    def run_file(self, path: str, capture_main_locals: bool | None = None) -> bool:
        command = RunFile(file=str(path), capture_main_locals=self._capture(capture_main_locals))
        return self.supervisor.send(command)

    def run_code(self, code: str, capture_main_locals: bool | None = None) -> bool:
        command = RunCode(code=code, capture_main_locals=self._capture(capture_main_locals))
        return self.supervisor.send(command)

    def get_variables(self) -> bool:
        return self.supervisor.send(GetVariables())

    def get_details(self, name: str, path: str | None = None) -> bool:
        return self.supervisor.send(GetDetails(name=name, path=path))

    def update_variable(self, name: str, type: str, value: Any) -> bool:  # noqa: A002
        return self.supervisor.send(UpdateVariable(name=name, type=type, value=value))

    def clear_namespace(self) -> bool:
        return self.supervisor.send(ClearNamespace())

    def save_session(self, path: str) -> bool:
        return self.supervisor.send(SaveSession(file=str(path)))

    def load_session(self, path: str) -> bool:
        return self.supervisor.send(LoadSession(file=str(path)))

    def _capture(self, override: bool | None) -> bool:
        return self.settings.capture_mode if override is None else override
