"""Turn failures into exact resumption instructions."""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from .contracts import Step
from .errors import StepFailure
from .persistence import Checkpoint
from .registry import Workflow

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM = "server-init"


class FailureReport(BaseModel):
    """Operator-facing description of a halted run."""

    step_id: str
    step_name: str
    position: int
    total: int
    cause: str
    resume_command: Optional[str] = None
    restart_command: str
    log_path: Optional[str] = None

    def lines(self) -> List[str]:
        lines = [
            f"Step {self.position}/{self.total} '{self.step_id}' ({self.step_name}) failed: {self.cause}",
        ]
        if self.log_path:
            lines.append(f"Check the log file: {self.log_path}")
        if self.resume_command:
            lines += [
                f"To resume from step {self.position} ({self.step_id}), run:",
                f"  {self.resume_command}",
            ]
        lines += ["To start over from the beginning, run:", f"  {self.restart_command}"]
        return lines


class ResumeReporter:
    """Builds resume commands from a checkpoint.

    The command depends only on the workflow and the checkpoint, so it can
    be reproduced later (``server-init status``) without the failing run.
    """

    def __init__(
        self,
        program: str = DEFAULT_PROGRAM,
        log_path: Optional[Path] = None,
        use_sudo: bool = True,
        config_path: Optional[Path] = None,
    ) -> None:
        self.program = program
        self.log_path = log_path
        self.use_sudo = use_sudo
        self.config_path = config_path

    def _command(self, *args: str) -> str:
        parts = ["sudo"] if self.use_sudo else []
        parts += [self.program, "run"]
        if self.config_path is not None:
            parts += ["--config", str(self.config_path)]
        parts += args
        return shlex.join(parts)

    def resume_target(
        self, workflow: Workflow, checkpoint: Optional[Checkpoint]
    ) -> Optional[Step]:
        """First step a resumed run executes; ``None`` when nothing is left."""
        return workflow.after(checkpoint.step_id if checkpoint else None)

    def resume_command(
        self, workflow: Workflow, checkpoint: Optional[Checkpoint]
    ) -> Optional[str]:
        target = self.resume_target(workflow, checkpoint)
        if target is None:
            return None
        return self._command("--continue", target.id)

    def restart_command(self) -> str:
        return self._command("--restart")

    def report(
        self,
        failure: StepFailure,
        workflow: Workflow,
        checkpoint: Optional[Checkpoint],
    ) -> FailureReport:
        """Log the failure and how to recover from it."""
        report = FailureReport(
            step_id=failure.step.id,
            step_name=failure.step.name,
            position=failure.position,
            total=failure.total,
            cause=failure.cause,
            resume_command=self.resume_command(workflow, checkpoint),
            restart_command=self.restart_command(),
            log_path=str(self.log_path) if self.log_path else None,
        )
        for line in report.lines():
            logger.error(line)
        return report

    def report_interrupted(
        self, step: Step, workflow: Workflow, checkpoint: Optional[Checkpoint]
    ) -> Optional[str]:
        command = self.resume_command(workflow, checkpoint)
        logger.warning(
            f"Interrupted during step {workflow.position(step.id)}/{len(workflow)} '{step.id}'"
        )
        if command:
            logger.warning(f"To resume, run: {command}")
        return command
