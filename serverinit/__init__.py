"""serverinit: Resumable, checkpointed server provisioning."""

from .contracts import Phase, RunRequest, Step, StepContext, StepOutcome
from .execute import WorkflowExecutor, resolve_request
from .locking import WorkflowLock
from .persistence import Checkpoint, get_checkpoint_store
from .preflight import PreflightValidator
from .registry import StepRegistry, Workflow
from .reporting import ResumeReporter

__version__ = "0.1.0"
__all__ = [
    "Checkpoint",
    "Phase",
    "PreflightValidator",
    "ResumeReporter",
    "RunRequest",
    "Step",
    "StepContext",
    "StepOutcome",
    "StepRegistry",
    "Workflow",
    "WorkflowExecutor",
    "WorkflowLock",
    "get_checkpoint_store",
    "resolve_request",
]
