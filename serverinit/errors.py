"""Error taxonomy and process exit codes for serverinit."""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .contracts import Step


class ExitCode(IntEnum):
    """Exit codes returned by the ``server-init`` command."""

    OK = 0
    INVALID = 1
    STEP_FAILED = 3
    PERSISTENCE = 4
    ALREADY_RUNNING = 75
    INTERRUPTED = 130


class ServerInitError(Exception):
    """Base class for all engine errors."""

    exit_code: ExitCode = ExitCode.INVALID


class ValidationError(ServerInitError):
    """Bad input or environment. Nothing has been changed on the host."""

    exit_code = ExitCode.INVALID

    def __init__(self, message: str, problems: Optional[list[str]] = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class DuplicateStepError(ValidationError):
    """A step identifier was registered twice."""


class AlreadyRunningError(ServerInitError):
    """Another workflow process holds the lock."""

    exit_code = ExitCode.ALREADY_RUNNING


class PersistenceError(ServerInitError):
    """Checkpoint or lock state could not be read or written."""

    exit_code = ExitCode.PERSISTENCE


class CommandError(ServerInitError):
    """An external command exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, output: str = "") -> None:
        self.command = list(args)
        self.returncode = returncode
        self.output = output
        message = f"Command {' '.join(self.command)!r} exited with {returncode}"
        tail = output.strip().splitlines()[-1:] if output else []
        if tail:
            message += f": {tail[0]}"
        super().__init__(message)


class StepFailure(ServerInitError):
    """A step's action failed; the workflow halted before the next step."""

    exit_code = ExitCode.STEP_FAILED

    def __init__(self, step: "Step", position: int, total: int, cause: str) -> None:
        self.step = step
        self.position = position
        self.total = total
        self.cause = cause
        super().__init__(
            f"Step {position}/{total} '{step.id}' ({step.name}) failed: {cause}"
        )
