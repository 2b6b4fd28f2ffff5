"""Data models for persisted workflow progress."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from ..contracts import StepOutcome


class Checkpoint(BaseModel):
    """Record of the most recently finished step."""

    step_id: str
    outcome: StepOutcome = StepOutcome.COMPLETED
    position: Optional[int] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    skipped: List[str] = Field(default_factory=list)
