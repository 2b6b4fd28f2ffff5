"""In-memory implementation of the checkpoint store."""

from __future__ import annotations

from typing import List, Optional

from .models import Checkpoint
from .repository import CheckpointStore


class InMemoryCheckpointStore(CheckpointStore):
    """Keep the checkpoint in local memory.

    Useful for tests. Data is not persisted across process restarts.
    """

    def __init__(self, checkpoint: Optional[Checkpoint] = None) -> None:
        self._checkpoint = checkpoint
        self.history: List[Checkpoint] = []

    def load(self) -> Optional[Checkpoint]:
        return self._checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        self._checkpoint = checkpoint
        self.history.append(checkpoint)

    def clear(self) -> None:
        self._checkpoint = None
