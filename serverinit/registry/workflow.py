"""Declaring steps and computing the order they run in."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from ..contracts import Phase, Step, StepAction
from ..errors import DuplicateStepError, ValidationError

logger = logging.getLogger(__name__)


class Workflow:
    """Fully ordered, immutable sequence of steps."""

    def __init__(self, steps: Iterable[Step] = ()) -> None:
        self._steps: Tuple[Step, ...] = tuple(steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __getitem__(self, index: int) -> Step:
        return self._steps[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Workflow):
            return NotImplemented
        return len(self) == len(other) and all(
            a is b or a == b for a, b in zip(self._steps, other._steps)
        )

    def __repr__(self) -> str:
        return f"Workflow({self.ids!r})"

    @property
    def steps(self) -> Tuple[Step, ...]:
        return self._steps

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self._steps]

    def index(self, step_id: str) -> int:
        """Return the 0-based index of ``step_id``."""
        for i, step in enumerate(self._steps):
            if step.id == step_id:
                return i
        raise ValidationError(f"Unknown step: {step_id!r}")

    def position(self, step_id: str) -> int:
        """Return the 1-based position of ``step_id``."""
        return self.index(step_id) + 1

    def get(self, step_id: str) -> Step:
        return self._steps[self.index(step_id)]

    def resolve(self, ref: str | int) -> Step:
        """Look up a step by id or by 1-based position."""
        if isinstance(ref, int) or str(ref).isdigit():
            pos = int(ref)
            if not 1 <= pos <= len(self._steps):
                raise ValidationError(
                    f"Invalid step number {pos}. Must be between 1 and {len(self._steps)}."
                )
            return self._steps[pos - 1]
        return self.get(str(ref))

    def after(self, step_id: Optional[str]) -> Optional[Step]:
        """Return the step following ``step_id``, the first one for ``None``."""
        if step_id is None:
            return self._steps[0] if self._steps else None
        i = self.index(step_id) + 1
        return self._steps[i] if i < len(self._steps) else None


class StepRegistry:
    """Collects step definitions before the workflow is ordered.

    Order is derived from ``(phase, priority, declaration order)`` so
    ``FINALIZE`` steps stay last however many ``NORMAL`` steps are added.
    """

    def __init__(self) -> None:
        self._steps: Dict[str, Step] = {}

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._steps

    def register(self, step: Step) -> Step:
        """Add ``step``. A duplicate id raises ``DuplicateStepError``."""
        if step.id in self._steps:
            raise DuplicateStepError(f"Step {step.id!r} is already registered")
        self._steps[step.id] = step
        logger.debug(
            f"Registered step {step.id} (phase={step.phase.name}, priority={step.priority})"
        )
        return step

    def step(
        self,
        step_id: str,
        name: str,
        *,
        phase: Phase = Phase.NORMAL,
        priority: int = 0,
        description: Optional[str] = None,
    ) -> Callable[[StepAction], StepAction]:
        """Decorator form of ``register``.

        The first docstring line of the action is used as the description
        when none is given.
        """

        def decorator(action: StepAction) -> StepAction:
            doc = (action.__doc__ or "").strip().split("\n")[0]
            self.register(
                Step(
                    id=step_id,
                    name=name,
                    action=action,
                    phase=phase,
                    priority=priority,
                    description=description or doc or None,
                )
            )
            return action

        return decorator

    def compute_order(self) -> Workflow:
        # dicts keep insertion order, which is the declaration order tie-breaker
        declared = list(self._steps.values())
        ordered = sorted(
            enumerate(declared),
            key=lambda item: (item[1].phase.value, item[1].priority, item[0]),
        )
        return Workflow(step for _, step in ordered)
