"""Diagnostic events and stderr classification for worker sessions."""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import Lock

__all__ = [
    "DEFAULT_RULES",
    "Diagnostic",
    "DiagnosticHub",
    "DiagnosticKind",
    "DiagnosticLevel",
    "SeverityRule",
    "StderrClassifier",
]

logger = logging.getLogger("worker_bridge.runner")


class DiagnosticLevel(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUPPRESSED = "suppressed"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    DiagnosticLevel.INFO: logging.INFO,
    DiagnosticLevel.WARNING: logging.WARNING,
    DiagnosticLevel.ERROR: logging.ERROR,
    DiagnosticLevel.SUPPRESSED: logging.DEBUG,
}


class DiagnosticKind(str, enum.Enum):
    WORKER_SELECTED = "worker-selected"
    SPAWN_FAILURE = "spawn-failure"
    RUNTIME_FAULT = "runtime-fault"
    SUPPRESSED = "suppressed"
    DECODE_FAILURE = "decode-failure"
    DELIVERY_FAILURE = "delivery-failure"
    ABNORMAL_EXIT = "abnormal-exit"


@dataclass(slots=True)
class Diagnostic:
    """A status or error event reported to the host."""

    kind: DiagnosticKind
    level: DiagnosticLevel
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def user_visible(self) -> bool:
        return self.level is not DiagnosticLevel.SUPPRESSED


@dataclass(frozen=True, slots=True)
class SeverityRule:
    """Map stderr text matching ``pattern`` to a diagnostic level."""

    pattern: re.Pattern[str]
    level: DiagnosticLevel

    @classmethod
    def marker(cls, text: str, level: DiagnosticLevel = DiagnosticLevel.ERROR) -> SeverityRule:
        return cls(pattern=re.compile(re.escape(text)), level=level)

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


DEFAULT_RULES: tuple[SeverityRule, ...] = (
    SeverityRule.marker("ModuleNotFoundError"),
    SeverityRule.marker("ImportError"),
    SeverityRule.marker("SyntaxError"),
    SeverityRule.marker("IndentationError"),
)


class StderrClassifier:
    """Classify worker stderr text with an ordered rule list; first match wins."""

    def __init__(
        self,
        rules: Sequence[SeverityRule] = DEFAULT_RULES,
        *,
        default: DiagnosticLevel = DiagnosticLevel.SUPPRESSED,
    ) -> None:
        self.rules = tuple(rules)
        self.default = default

    @classmethod
    def with_markers(cls, markers: Iterable[str]) -> StderrClassifier:
        extra = [SeverityRule.marker(text) for text in markers]
        return cls([*DEFAULT_RULES, *extra])

    def classify(self, text: str) -> DiagnosticLevel:
        for rule in self.rules:
            if rule.matches(text):
                return rule.level
        return self.default


class DiagnosticHub:
    """Log diagnostics and fan them out to host listeners."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.logger = log or logger
        self._listeners: list[Callable[[Diagnostic], None]] = []
        self._lock = Lock()

    def add_listener(self, callback: Callable[[Diagnostic], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def _remove() -> None:
            with self._lock:
                try:
                    self._listeners.remove(callback)
                except ValueError:  # pragma: no cover - already removed
                    pass

        return _remove

    def emit(self, kind: DiagnosticKind, level: DiagnosticLevel, message: str) -> Diagnostic:
        diagnostic = Diagnostic(kind=kind, level=level, message=message)
        self.logger.log(
            level.log_level,
            message,
            extra={"diagnostic_kind": kind.value, "user_visible": diagnostic.user_visible},
        )
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(diagnostic)
            except Exception:
                self.logger.exception("diagnostics.listener_failed")
        return diagnostic
