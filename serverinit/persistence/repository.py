"""Store abstraction for checkpoint persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import Checkpoint


class CheckpointStore(Protocol):
    """Protocol for checkpoint persistence backends."""

    def load(self) -> Optional[Checkpoint]:
        """Return the last checkpoint, or ``None`` when no step has finished."""

    def save(self, checkpoint: Checkpoint) -> None:
        """Durably replace the stored checkpoint."""

    def clear(self) -> None:
        """Remove the stored checkpoint. Clearing an empty store is a no-op."""
