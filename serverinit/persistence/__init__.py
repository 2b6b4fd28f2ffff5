"""Persistence layer for workflow checkpoints."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config import ServerConfig, StateConfig
from .file import FileCheckpointStore
from .inmemory import InMemoryCheckpointStore
from .models import Checkpoint
from .repository import CheckpointStore


def get_checkpoint_store(
    path: Optional[str | Path] = None, config: Optional[ServerConfig] = None
) -> CheckpointStore:
    """Factory function to obtain the checkpoint store.

    An explicit ``path`` wins, then ``state.checkpoint_path`` of ``config``,
    then the default location.
    """

    if path is None:
        state = config.state if config is not None else StateConfig()
        path = state.checkpoint_path
    return FileCheckpointStore(path)


__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "get_checkpoint_store",
]
