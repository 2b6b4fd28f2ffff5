"""Step execution engine for serverinit workflows."""

from __future__ import annotations

import logging
from typing import List, Optional

from .contracts import (
    ExecutionState,
    RunMode,
    RunRequest,
    RunResult,
    Step,
    StepContext,
    StepOutcome,
)
from .errors import AlreadyRunningError, StepFailure, ValidationError
from .locking import WorkflowLock
from .persistence import Checkpoint, CheckpointStore
from .registry import Workflow
from .reporting import FailureReport, ResumeReporter

logger = logging.getLogger(__name__)


def resolve_request(
    workflow: Workflow,
    checkpoint: Optional[Checkpoint],
    continue_from: Optional[str] = None,
    restart: bool = False,
) -> RunRequest:
    """Build the run request for the operator's flags and current checkpoint.

    ``continue_from`` accepts a step id or a 1-based position. Without flags
    a checkpoint means resuming from the step after it.
    """
    if restart and continue_from:
        raise ValidationError("--continue and --restart are mutually exclusive")
    if restart:
        return RunRequest.restart()
    if continue_from:
        return RunRequest.resume(workflow.resolve(continue_from).id)
    if checkpoint is None:
        return RunRequest.fresh()
    target = workflow.after(checkpoint.step_id)
    if target is None:
        # every step finished but the run died before clearing the checkpoint
        return RunRequest.restart()
    return RunRequest.resume(target.id)


class WorkflowExecutor:
    """Runs workflow steps strictly in order, one at a time.

    A step's checkpoint is written before the next step starts. On failure
    the checkpoint stays at the last finished step so a resume retries the
    failing one.
    """

    def __init__(
        self,
        workflow: Workflow,
        store: CheckpointStore,
        lock: WorkflowLock,
        context: StepContext,
        reporter: Optional[ResumeReporter] = None,
    ) -> None:
        self.workflow = workflow
        self._store = store
        self._lock = lock
        self._context = context
        self.reporter = reporter or ResumeReporter()
        self.state = ExecutionState.NOT_STARTED
        self.current: Optional[Step] = None
        self.last_report: Optional[FailureReport] = None

    def run(self, request: RunRequest) -> RunResult:
        """Execute the workflow according to ``request``.

        Raises:
            AlreadyRunningError: Another run holds the lock.
            StepFailure: A step failed; nothing after it was run.
            PersistenceError: The checkpoint could not be read or written.
            ValidationError: ``request`` names a step not in the workflow.
        """
        self.state = ExecutionState.NOT_STARTED
        self.current = None
        self.last_report = None
        try:
            handle = self._lock.acquire()
        except AlreadyRunningError:
            self.state = ExecutionState.ALREADY_RUNNING
            raise

        with handle:
            start = self._start_index(request)
            previous = self._store.load() if request.mode is RunMode.RESUME else None
            earlier = set(self.workflow.ids[:start])
            skipped: List[str] = (
                [s for s in previous.skipped if s in earlier] if previous else []
            )
            if request.mode is RunMode.RESUME:
                self._anchor_checkpoint(start, previous, skipped)
            executed: List[str] = []
            logger.info(
                f"Starting workflow ({request.mode.value}) at step {start + 1}/{len(self.workflow)}"
            )
            for index in range(start, len(self.workflow)):
                step = self.workflow[index]
                outcome = self._run_step(step, index + 1)
                if outcome is StepOutcome.SKIPPED:
                    skipped.append(step.id)
                else:
                    executed.append(step.id)
                self._store.save(
                    Checkpoint(
                        step_id=step.id,
                        outcome=outcome,
                        position=index + 1,
                        skipped=skipped,
                    )
                )
                logger.info(
                    f"Step {index + 1}/{len(self.workflow)} {step.id}: {outcome.value}"
                )
            self._store.clear()
            self.current = None
            self.state = ExecutionState.COMPLETED
            logger.info("Workflow completed successfully")
            return RunResult(state=self.state, executed=executed, skipped=skipped)

    def _start_index(self, request: RunRequest) -> int:
        if request.mode is RunMode.RESTART:
            self._store.clear()
            logger.info("Starting from beginning (restart mode)")
            return 0
        if request.mode is RunMode.RESUME:
            index = self.workflow.index(request.from_step)
            logger.info(f"Continuing from step {index + 1}: {request.from_step}")
            return index
        return 0

    def _anchor_checkpoint(
        self, start: int, previous: Optional[Checkpoint], skipped: List[str]
    ) -> None:
        """Point the checkpoint just before ``start``.

        An operator-chosen start may differ from the saved one; the resume
        command derived from the checkpoint must target this run's steps.
        """
        if start == 0:
            if previous is not None:
                self._store.clear()
            return
        anchor = self.workflow[start - 1]
        if previous is not None and previous.step_id == anchor.id:
            return
        logger.info(f"Checkpoint moved to step {start}/{len(self.workflow)} {anchor.id}")
        self._store.save(Checkpoint(step_id=anchor.id, position=start, skipped=skipped))

    def _run_step(self, step: Step, position: int) -> StepOutcome:
        total = len(self.workflow)
        self.current = step
        self.state = ExecutionState.RUNNING
        logger.info(f"Step {position}/{total} {step.id}: started ({step.name})")
        try:
            outcome = step.invoke(self._context)
        except KeyboardInterrupt:
            self.reporter.report_interrupted(step, self.workflow, self._store.load())
            raise
        except Exception as exc:
            logger.debug(f"Step {step.id} raised", exc_info=True)
            self._fail(step, position, f"{type(exc).__name__}: {exc}", exc)
        if outcome is StepOutcome.FAILED:
            self._fail(step, position, "action reported failure", None)
        return outcome

    def _fail(
        self, step: Step, position: int, cause: str, exc: Optional[BaseException]
    ) -> None:
        self.state = ExecutionState.FAILED
        failure = StepFailure(step, position, len(self.workflow), cause)
        self.last_report = self.reporter.report(
            failure, self.workflow, self._store.load()
        )
        raise failure from exc
