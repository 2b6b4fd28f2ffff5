"""Command line interface for provisioning a server."""

from __future__ import annotations

import logging
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from .config import ServerConfig, load_config
from .contracts import Phase, RunRequest, StepContext
from .errors import (
    AlreadyRunningError,
    ExitCode,
    PersistenceError,
    ServerInitError,
    StepFailure,
    ValidationError,
)
from .execute import WorkflowExecutor, resolve_request
from .locking import WorkflowLock
from .logs import configure_logging
from .persistence import Checkpoint, get_checkpoint_store
from .preflight import HostProbe, PreflightValidator, SystemProbe
from .registry import Workflow
from .reporting import ResumeReporter
from .steps import build_workflow

logger = logging.getLogger(__name__)


def _steps_listing(workflow: Workflow) -> str:
    lines = [
        f"{pos:>2}  {step.id:<20} {step.name}"
        + ("  (finalize)" if step.phase is Phase.FINALIZE else "")
        for pos, step in enumerate(workflow, start=1)
    ]
    return "Steps:\n\n" + "\n\n".join(lines)


app = typer.Typer(help="Resumable Ubuntu server initialization")


def get_probe() -> HostProbe:
    return SystemProbe()


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Provision this server. Runs the workflow when no command is given."""
    if ctx.invoked_subcommand is None:
        _run(continue_from=None, restart=False, config_path=None, non_interactive=False)


@app.command("run", epilog=_steps_listing(build_workflow()))
def run(
    continue_from: Optional[str] = typer.Option(
        None,
        "--continue",
        "-c",
        metavar="STEP",
        help="Continue from STEP (step id or number)",
    ),
    restart: bool = typer.Option(
        False, "--restart", help="Start from the beginning, ignore previous progress"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Configuration file (default: server-init.yaml)"
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Resume previous progress without asking",
    ),
) -> None:
    """
    Run the provisioning workflow.

    Without options, a previous incomplete run is resumed from the step
    after the last completed one (after asking, when run from a terminal).

    Example:
        sudo server-init run
        sudo server-init run --continue ssh-config
        sudo server-init run --restart
    """
    _run(continue_from, restart, config_path, non_interactive)


@app.command("steps")
def steps() -> None:
    """List the workflow steps in execution order."""
    for pos, step in enumerate(build_workflow(), start=1):
        typer.echo(f"{pos:>2}  {step.id:<20} {step.phase.name.lower():<9} {step.name}")


@app.command("status")
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
) -> None:
    """Show saved progress and the command that resumes it."""
    config = _load(config_path)
    workflow = build_workflow()
    try:
        checkpoint = get_checkpoint_store(config=config).load()
        if checkpoint is None:
            typer.echo("No saved progress.")
            return
        step = workflow.get(checkpoint.step_id)
    except (PersistenceError, ValidationError) as exc:
        _fail(exc)
    reporter = ResumeReporter(config_path=config_path)
    typer.echo(
        f"Last finished step: {checkpoint.position or workflow.position(step.id)}/{len(workflow)} "
        f"{step.id} ({step.name}) - {checkpoint.outcome.value} at {checkpoint.updated_at:%Y-%m-%d %H:%M:%S}"
    )
    if checkpoint.skipped:
        typer.echo(f"Skipped: {', '.join(checkpoint.skipped)}")
    command = reporter.resume_command(workflow, checkpoint)
    if command:
        typer.echo(f"Resume with: {command}")


@app.command("validate")
def validate(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
) -> None:
    """Run the preflight checks only."""
    config = _load(config_path)
    try:
        warnings = PreflightValidator(get_probe()).validate(config)
    except ValidationError as exc:
        _fail(exc)
    for warning in warnings:
        typer.secho(f"[WARN] {warning}", fg=typer.colors.YELLOW)
    typer.secho("Preflight checks passed", fg=typer.colors.GREEN)


def _run(
    continue_from: Optional[str],
    restart: bool,
    config_path: Optional[Path],
    non_interactive: bool,
) -> None:
    workflow = build_workflow()
    config = _load(config_path)

    try:
        log_path = configure_logging(config.state.progress_log)
        for warning in PreflightValidator(get_probe()).validate(config):
            typer.secho(f"[WARN] {warning}", fg=typer.colors.YELLOW)
        store = get_checkpoint_store(config=config)
        checkpoint = store.load()
        if checkpoint is not None and not (restart or continue_from):
            request = _ask_how_to_proceed(
                workflow, checkpoint, interactive=not non_interactive and sys.stdin.isatty()
            )
        else:
            request = resolve_request(workflow, checkpoint, continue_from, restart)
    except ServerInitError as exc:
        _fail(exc)

    executor = WorkflowExecutor(
        workflow,
        store,
        WorkflowLock(config.state.lock_path),
        StepContext(config=config, logger=logging.getLogger("serverinit.steps")),
        ResumeReporter(log_path=log_path, config_path=config_path),
    )
    logger.info(
        f"Starting server initialization: user={config.new_user}, ssh_port={config.ssh_port}"
    )
    try:
        with _sigterm_as_interrupt():
            result = executor.run(request)
    except StepFailure as exc:
        report = executor.last_report
        for line in report.lines() if report else [str(exc)]:
            typer.secho(line, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=exc.exit_code)
    except KeyboardInterrupt:
        typer.secho("Interrupted.", fg=typer.colors.RED, err=True)
        command = executor.reporter.resume_command(workflow, store.load())
        if command:
            typer.echo(f"To resume, run: {command}", err=True)
        raise typer.Exit(code=ExitCode.INTERRUPTED)
    except (AlreadyRunningError, PersistenceError, ValidationError) as exc:
        _fail(exc)

    if result.skipped:
        typer.echo(f"Skipped (not needed): {', '.join(result.skipped)}")
    typer.secho("Server initialization completed successfully!", fg=typer.colors.GREEN)
    _print_summary(config, log_path)


def _ask_how_to_proceed(
    workflow: Workflow, checkpoint: Checkpoint, interactive: bool
) -> RunRequest:
    resumed = resolve_request(workflow, checkpoint)
    step = workflow.get(checkpoint.step_id)
    logger.warning(
        f"Previous incomplete run detected. Last completed step: "
        f"{workflow.position(step.id)} ({step.name})"
    )
    if not interactive:
        logger.info(f"Non-interactive mode: continuing with {resumed.from_step or 'restart'}")
        return resumed
    typer.echo("Previous incomplete run detected.")
    typer.echo(f"  1) Continue from {resumed.from_step or 'the beginning'}")
    typer.echo("  2) Start over from beginning")
    typer.echo("  3) Exit")
    choice = typer.prompt("Choose [1-3]", default="1")
    if choice == "1":
        return resumed
    if choice == "2":
        return RunRequest.restart()
    raise typer.Exit(code=ExitCode.OK)


@contextmanager
def _sigterm_as_interrupt() -> Iterator[None]:
    def _handler(signum, frame):
        raise KeyboardInterrupt(f"signal {signum}")

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def _load(config_path: Optional[Path]) -> ServerConfig:
    try:
        return load_config(config_path)
    except ValidationError as exc:
        _fail(exc)


def _fail(exc: ServerInitError) -> None:
    typer.secho(f"[ERROR] {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=exc.exit_code)


def _print_summary(config: ServerConfig, log_path: Path) -> None:
    typer.echo(
        f"""
Next steps:
  1. Test SSH before logging out: ssh -p {config.ssh_port} {config.new_user}@<server-ip>
  2. Keep your current session open until SSH is confirmed working.
  3. Reboot to apply kernel and mount changes: sudo reboot

Log file: {log_path}"""
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
