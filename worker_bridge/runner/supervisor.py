"""Worker supervisor owning the lifecycle of the long-lived worker process."""

from __future__ import annotations

import enum
import logging
import subprocess
import threading
import time
from collections.abc import Callable
from queue import Queue
from typing import IO, Any

from worker_bridge.config import WorkerSettings
from worker_bridge.runner.diagnostics import (
    DiagnosticHub,
    DiagnosticKind,
    DiagnosticLevel,
    StderrClassifier,
)
from worker_bridge.runner.environment import EnvironmentResolver
from worker_bridge.runner.framing import LineFramer
from worker_bridge.runner.protocol import (
    Command,
    ProtocolDecodeError,
    decode_line,
    encode_command,
)

__all__ = [
    "MessageCallback",
    "SessionState",
    "WorkerSupervisor",
]

logger = logging.getLogger("worker_bridge.runner.supervisor")

_CHUNK_SIZE = 65536
_SENTINEL = object()

MessageCallback = Callable[[Any], None]
ChunkHandler = Callable[["subprocess.Popen[bytes]", bytes], None]


class SessionState(str, enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


class WorkerSupervisor:
    """Spawn the worker, pump its streams and deliver decoded responses.

    Stream watchers run on daemon threads. Every handler and public method
    runs under one re-entrant lock, so they never interleave and a message
    callback may call :meth:`send` or :meth:`dispose` directly. No pipe I/O
    happens under that lock: outbound lines go through a queue to a writer
    thread, so :meth:`send` never blocks on a full worker input pipe.
    """

    #: Seconds the exit watcher lets the readers drain after the worker died.
    drain_timeout = 5.0

    def __init__(
        self,
        settings: WorkerSettings,
        *,
        resolver: EnvironmentResolver | None = None,
        diagnostics: DiagnosticHub | None = None,
        classifier: StderrClassifier | None = None,
        spawner: Callable[..., subprocess.Popen[bytes]] = subprocess.Popen,
    ) -> None:
        self.settings = settings
        self.resolver = resolver or EnvironmentResolver()
        self.diagnostics = diagnostics or DiagnosticHub()
        self.classifier = classifier or StderrClassifier.with_markers(settings.error_markers)
        self._spawner = spawner
        self._framer = LineFramer()
        self._callback: MessageCallback | None = None
        self._process: subprocess.Popen[bytes] | None = None
        self._outbox: Queue[bytes | object] | None = None
        self._input_broken = False
        self._state = SessionState.IDLE
        self._watchers: list[threading.Thread] = []
        self._lock = threading.RLock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def pid(self) -> int | None:
        process = self._process
        return process.pid if process is not None else None

    @property
    def pending_output(self) -> int:
        """Bytes received from the worker that do not form a full line yet."""

        return self._framer.pending

    # ------------------------------------------------------------------ lifecycle
    def start(self, callback: MessageCallback) -> bool:
        """Bind ``callback`` and spawn the worker unless one is running or starting."""

        with self._lock:
            self._callback = callback
            if self._state is not SessionState.IDLE:
                logger.debug(
                    "supervisor.already_started",
                    extra={"pid": self.pid, "state": self._state.value},
                )
                return True
            self._state = SessionState.STARTING
            environment = self.resolver.resolve(self.settings)
            argv = self.settings.worker_argv()
            self.diagnostics.emit(
                DiagnosticKind.WORKER_SELECTED,
                DiagnosticLevel.INFO,
                f"Using Python at {argv[0]}",
            )
            cwd = environment.working_directory
            try:
                process = self._spawner(
                    argv,
                    cwd=str(cwd) if cwd is not None else None,
                    env=dict(environment.env),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as exc:
                self._state = SessionState.IDLE
                self.diagnostics.emit(
                    DiagnosticKind.SPAWN_FAILURE,
                    DiagnosticLevel.ERROR,
                    f"Failed to start worker process: {exc}",
                )
                return False
            self._process = process
            self._outbox = Queue()
            self._input_broken = False
            self._framer.reset()
            self._state = SessionState.RUNNING
            self._watchers = self._attach_watchers(process, self._outbox)
            logger.info("supervisor.started", extra={"pid": process.pid, "argv": argv})
            return True

    def send(self, command: Command | dict[str, Any]) -> bool:
        """Queue one command line for the worker; ``False`` means not delivered.

        A write that fails later is reported as a user-visible
        ``DELIVERY_FAILURE`` and every following call returns ``False``.
        """

        with self._lock:
            outbox = self._outbox
            if self._state is not SessionState.RUNNING or outbox is None:
                self.diagnostics.emit(
                    DiagnosticKind.DELIVERY_FAILURE,
                    DiagnosticLevel.SUPPRESSED,
                    "Worker is not running; command was not sent",
                )
                return False
            if self._input_broken:
                self.diagnostics.emit(
                    DiagnosticKind.DELIVERY_FAILURE,
                    DiagnosticLevel.ERROR,
                    "Worker input is closed; restart the session.",
                )
                return False
            try:
                data = encode_command(command)
            except (TypeError, ValueError) as exc:
                self.diagnostics.emit(
                    DiagnosticKind.DELIVERY_FAILURE,
                    DiagnosticLevel.ERROR,
                    f"Failed to communicate with worker: {exc}",
                )
                return False
            outbox.put(data)
            return True

    def dispose(self) -> None:
        """Kill the worker if one exists; safe to call repeatedly."""

        with self._lock:
            process = self._process
            outbox = self._outbox
            self._process = None
            self._outbox = None
            self._state = SessionState.IDLE
            self._framer.reset()
            if outbox is not None:
                outbox.put(_SENTINEL)
            if process is None:
                return
            try:
                process.kill()
            except OSError as exc:  # pragma: no cover - process already reaped
                logger.debug("supervisor.kill_failed", extra={"error": str(exc)})
            logger.info("supervisor.disposed", extra={"pid": process.pid})

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current watchers finish; ``True`` if they all did.

        Must not be called from a message callback.
        """

        with self._lock:
            watchers = list(self._watchers)
        deadline = None if timeout is None else time.monotonic() + timeout
        for watcher in watchers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            watcher.join(remaining)
        return not any(watcher.is_alive() for watcher in watchers)

    # ------------------------------------------------------------------ watchers
    def _attach_watchers(
        self,
        process: subprocess.Popen[bytes],
        outbox: Queue[bytes | object],
    ) -> list[threading.Thread]:
        writer = threading.Thread(
            target=self._write_loop,
            args=(process, outbox),
            name=f"worker-{process.pid}-stdin",
            daemon=True,
        )
        readers = [
            threading.Thread(
                target=self._pump,
                args=(process, process.stdout, self._handle_stdout),
                name=f"worker-{process.pid}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(process, process.stderr, self._handle_stderr),
                name=f"worker-{process.pid}-stderr",
                daemon=True,
            ),
        ]
        for thread in (writer, *readers):
            thread.start()
        exit_watcher = threading.Thread(
            target=self._watch_exit,
            args=(process, outbox, readers),
            name=f"worker-{process.pid}-exit",
            daemon=True,
        )
        exit_watcher.start()
        return [writer, *readers, exit_watcher]

    def _write_loop(self, process: subprocess.Popen[bytes], outbox: Queue[bytes | object]) -> None:
        try:
            while True:
                item = outbox.get()
                if item is _SENTINEL:
                    return
                pipe = process.stdin
                try:
                    if pipe is None:  # pragma: no cover - always piped
                        raise OSError("worker input is not piped")
                    pipe.write(item)  # type: ignore[arg-type]
                    pipe.flush()
                except (OSError, ValueError) as exc:
                    self._report_write_failure(process, exc)
                    return
        finally:
            _close_quietly(process.stdin)

    def _report_write_failure(self, process: subprocess.Popen[bytes], exc: Exception) -> None:
        with self._lock:
            if process is not self._process:
                logger.debug("supervisor.stale_write_failed", extra={"error": str(exc)})
                return
            self._input_broken = True
            self.diagnostics.emit(
                DiagnosticKind.DELIVERY_FAILURE,
                DiagnosticLevel.ERROR,
                f"Failed to communicate with worker: {exc}",
            )

    def _pump(
        self,
        process: subprocess.Popen[bytes],
        pipe: IO[bytes] | None,
        handler: ChunkHandler,
    ) -> None:
        if pipe is None:
            return
        with pipe:
            while True:
                try:
                    chunk = pipe.read1(_CHUNK_SIZE)  # type: ignore[attr-defined]
                except (OSError, ValueError) as exc:
                    logger.debug("supervisor.pipe_closed", extra={"error": str(exc)})
                    return
                if not chunk:
                    return
                handler(process, chunk)

    def _handle_stdout(self, process: subprocess.Popen[bytes], chunk: bytes) -> None:
        with self._lock:
            if process is not self._process:
                return
            for line in self._framer.feed(chunk):
                try:
                    message = decode_line(line)
                except ProtocolDecodeError as exc:
                    self.diagnostics.emit(
                        DiagnosticKind.DECODE_FAILURE,
                        DiagnosticLevel.SUPPRESSED,
                        str(exc),
                    )
                    continue
                self._deliver(message)

    def _handle_stderr(self, process: subprocess.Popen[bytes], chunk: bytes) -> None:
        text = chunk.decode("utf-8", errors="replace")
        with self._lock:
            if process is not self._process:
                return
            level = self.classifier.classify(text)
            if level is DiagnosticLevel.SUPPRESSED:
                self.diagnostics.emit(DiagnosticKind.SUPPRESSED, level, text.rstrip())
            else:
                self.diagnostics.emit(
                    DiagnosticKind.RUNTIME_FAULT,
                    level,
                    f"Worker error: {text.strip()}",
                )

    def _watch_exit(
        self,
        process: subprocess.Popen[bytes],
        outbox: Queue[bytes | object],
        readers: list[threading.Thread],
    ) -> None:
        returncode = process.wait()
        outbox.put(_SENTINEL)
        # A grandchild may still hold the pipes open; do not wait for it.
        deadline = time.monotonic() + self.drain_timeout
        for reader in readers:
            reader.join(max(0.0, deadline - time.monotonic()))
        with self._lock:
            if process is not self._process:
                # Disposed, or replaced by a newer worker.
                return
            self._process = None
            self._outbox = None
            self._state = SessionState.IDLE
            self._framer.reset()
            # Negative codes mean the worker was killed by a signal.
            if returncode is not None and returncode > 0:
                self.diagnostics.emit(
                    DiagnosticKind.ABNORMAL_EXIT,
                    DiagnosticLevel.WARNING,
                    f"Worker exited unexpectedly with code {returncode}. Restart the session.",
                )
            else:
                logger.info(
                    "supervisor.exited",
                    extra={"pid": process.pid, "returncode": returncode},
                )

    def _deliver(self, message: Any) -> None:
        callback = self._callback
        if callback is None:  # pragma: no cover - start always binds one
            logger.debug("supervisor.no_callback")
            return
        try:
            callback(message)
        except Exception:
            logger.exception("supervisor.callback_failed")


def _close_quietly(stream: IO[bytes] | None) -> None:
    if stream is None:
        return
    try:
        stream.close()
    except (OSError, ValueError) as exc:  # pragma: no cover - broken pipe on close
        logger.debug("supervisor.close_failed", extra={"error": str(exc)})
