"""Click-based CLI that drives one worker session per invocation."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import click

from worker_bridge.config import ConfigError, WorkerSettings, load_worker_settings
from worker_bridge.runner import Diagnostic, DiagnosticHub
from worker_bridge.session import WorkerSession

_DEFAULT_TIMEOUT = 30.0


@dataclass
class CLIState:
    settings: WorkerSettings
    timeout: float = _DEFAULT_TIMEOUT
    session_factory: Callable[[WorkerSettings, DiagnosticHub], WorkerSession] | None = None

    def open_session(self, diagnostics: DiagnosticHub) -> WorkerSession:
        if self.session_factory is not None:
            return self.session_factory(self.settings, diagnostics)
        return WorkerSession(self.settings, diagnostics=diagnostics)


def _echo_diagnostic(diagnostic: Diagnostic) -> None:
    if diagnostic.user_visible:
        click.echo(f"[{diagnostic.level.value}] {diagnostic.message}", err=True)


def _dispatch(state: CLIState, action: Callable[[WorkerSession], bool]) -> None:
    """Start a worker, send one command and print the first response."""

    responses: list[Any] = []
    received = threading.Event()

    def _on_message(message: Any) -> None:
        responses.append(message)
        received.set()

    diagnostics = DiagnosticHub()
    diagnostics.add_listener(_echo_diagnostic)
    with state.open_session(diagnostics) as session:
        if not session.start(_on_message):
            raise click.ClickException("Worker process could not be started.")
        if not action(session):
            raise click.ClickException("Command was not delivered to the worker.")
        deadline = time.monotonic() + state.timeout
        while not received.wait(0.05):
            if not session.is_running() and not received.is_set():
                raise click.ClickException("Worker exited before responding.")
            if time.monotonic() >= deadline:
                raise click.ClickException("Timed out waiting for a worker response.")
    click.echo(json.dumps(responses[0], indent=2))


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Read settings from this TOML file instead of ~/.worker-bridge/config.toml.",
)
@click.option("--python", "executable", help="Interpreter used to launch the worker.")
@click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    help="Workspace root used as working directory and for relative search paths.",
)
@click.option(
    "--capture/--no-capture",
    default=None,
    help="Ask the worker to capture locals of __main__ after running code.",
)
@click.option(
    "--timeout",
    type=float,
    default=_DEFAULT_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the worker's response.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log supervisor activity to stderr.")
@click.pass_context
def app(
    ctx: click.Context,
    config_file: Path | None,
    executable: str | None,
    workspace: Path | None,
    capture: bool | None,
    timeout: float,
    verbose: bool,
) -> None:
    """Send commands to a variable inspector worker over stdio."""

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    if ctx.obj is not None:
        # Pre-seeded state (used by embedding hosts and tests).
        return
    try:
        settings = load_worker_settings(config_file)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    settings = settings.merged(
        executable=executable,
        working_directory=workspace,
        capture_mode=capture,
    )
    ctx.obj = CLIState(settings=settings, timeout=timeout)


@app.command("run-file")
@click.argument("file", type=click.Path(path_type=Path, dir_okay=False))
@click.pass_obj
def run_file(state: CLIState, file: Path) -> None:
    """Execute a script inside the worker namespace."""

    _dispatch(state, lambda session: session.run_file(str(file.resolve())))


@app.command("run-code")
@click.argument("code")
@click.pass_obj
def run_code(state: CLIState, code: str) -> None:
    """Execute a snippet of code inside the worker namespace."""

    _dispatch(state, lambda session: session.run_code(code))


@app.command()
@click.pass_obj
def variables(state: CLIState) -> None:
    """List the variables currently defined in the worker."""

    _dispatch(state, lambda session: session.get_variables())


@app.command()
@click.argument("name")
@click.option("--path", "attribute_path", help="Nested path inside the variable.")
@click.pass_obj
def details(state: CLIState, name: str, attribute_path: str | None) -> None:
    """Show details about one variable."""

    _dispatch(state, lambda session: session.get_details(name, attribute_path))


@app.command()
@click.argument("name")
@click.argument("value")
@click.option("--type", "type_name", default="str", show_default=True, help="Declared type.")
@click.pass_obj
def update(state: CLIState, name: str, value: str, type_name: str) -> None:
    """Assign a new value to a variable. VALUE is parsed as JSON when possible."""

    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    _dispatch(state, lambda session: session.update_variable(name, type_name, parsed))


@app.command()
@click.pass_obj
def clear(state: CLIState) -> None:
    """Remove every user variable from the worker namespace."""

    _dispatch(state, lambda session: session.clear_namespace())


@app.command()
@click.argument("file", type=click.Path(path_type=Path, dir_okay=False))
@click.pass_obj
def save(state: CLIState, file: Path) -> None:
    """Persist the worker namespace to FILE."""

    _dispatch(state, lambda session: session.save_session(str(file.resolve())))


@app.command()
@click.argument("file", type=click.Path(path_type=Path, dir_okay=False, exists=True))
@click.pass_obj
def load(state: CLIState, file: Path) -> None:
    """Restore a namespace previously saved to FILE."""

    _dispatch(state, lambda session: session.load_session(str(file.resolve())))


@app.command("config")
@click.pass_obj
def show_config(state: CLIState) -> None:
    """Print the resolved worker settings."""

    data = asdict(state.settings)
    data["argv"] = state.settings.worker_argv()
    click.echo(json.dumps(data, indent=2, default=str))


def main() -> None:  # pragma: no cover - console script
    app()
