"""Core contracts of the step orchestration engine."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .commands import CommandRunner

if TYPE_CHECKING:
    from .config import ServerConfig

_STEP_ID_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


class Phase(int, Enum):
    """Ordering phase of a step. ``FINALIZE`` always runs after ``NORMAL``."""

    NORMAL = 0
    FINALIZE = 1


class StepOutcome(str, Enum):
    """Terminal outcome of a single step invocation."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepContext:
    """Everything a step action is handed when it is invoked."""

    config: "ServerConfig"
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("serverinit.steps")
    )
    runner: CommandRunner = field(default_factory=CommandRunner)
    root: Path = Path("/")

    def path(self, absolute: str) -> Path:
        """Map an absolute host path below ``root``."""
        return self.root / absolute.lstrip("/")


StepAction = Callable[[StepContext], Optional[StepOutcome]]


class Step(BaseModel):
    """A named unit of provisioning work.

    The action must be safe to invoke again when its target state already
    exists: a resumed run re-executes the step that failed last time.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    action: StepAction
    phase: Phase = Phase.NORMAL
    priority: int = 0
    description: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _check_id(cls, v: str) -> str:
        if not _STEP_ID_RE.match(v):
            raise ValueError(
                "step id must start with a lowercase letter and contain only "
                "lowercase letters, digits, '-' or '_'"
            )
        return v

    def invoke(self, context: StepContext) -> StepOutcome:
        """Run the action and normalise its return value."""
        outcome = self.action(context)
        if outcome is None:
            return StepOutcome.COMPLETED
        return StepOutcome(outcome)


class RunMode(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"
    RESTART = "restart"


class RunRequest(BaseModel):
    """Operator's chosen execution mode."""

    model_config = ConfigDict(frozen=True)

    mode: RunMode = RunMode.FRESH
    from_step: Optional[str] = None

    @model_validator(mode="after")
    def _check_from_step(self) -> "RunRequest":
        if self.mode is RunMode.RESUME and not self.from_step:
            raise ValueError("resume requires from_step")
        if self.mode is not RunMode.RESUME and self.from_step:
            raise ValueError(f"from_step is only valid for resume, not {self.mode.value}")
        return self

    @classmethod
    def fresh(cls) -> "RunRequest":
        return cls(mode=RunMode.FRESH)

    @classmethod
    def resume(cls, step_id: str) -> "RunRequest":
        return cls(mode=RunMode.RESUME, from_step=step_id)

    @classmethod
    def restart(cls) -> "RunRequest":
        return cls(mode=RunMode.RESTART)


class ExecutionState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ALREADY_RUNNING = "already_running"


class RunResult(BaseModel):
    """Summary of a finished ``WorkflowExecutor.run`` call."""

    state: ExecutionState
    executed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
