"""JSON file implementation of the checkpoint store."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import pydantic

from ..errors import PersistenceError
from .models import Checkpoint
from .repository import CheckpointStore

logger = logging.getLogger(__name__)


class FileCheckpointStore(CheckpointStore):
    """Persist the checkpoint as a JSON document.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so a reader (or a process restarted after a
    crash) sees either the previous checkpoint or the new one.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[Checkpoint]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"Cannot read checkpoint {self.path}: {exc}") from exc
        try:
            return Checkpoint.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            raise PersistenceError(
                f"Checkpoint {self.path} is malformed; remove it or run with --restart"
            ) from exc

    def save(self, checkpoint: Checkpoint) -> None:
        data = checkpoint.model_dump_json(indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}-", suffix=".tmp"
            )
        except OSError as exc:
            raise PersistenceError(f"Cannot write checkpoint {self.path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.path)
        except OSError as exc:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise PersistenceError(f"Cannot write checkpoint {self.path}: {exc}") from exc
        self._sync_directory()
        logger.debug(f"Checkpoint saved: {checkpoint.step_id} ({checkpoint.outcome.value})")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise PersistenceError(f"Cannot remove checkpoint {self.path}: {exc}") from exc
        logger.debug(f"Checkpoint cleared: {self.path}")

    def _sync_directory(self) -> None:
        # the rename itself is durable only once the directory entry is flushed
        try:
            dir_fd = os.open(self.path.parent, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(dir_fd)
        except OSError:
            pass
        finally:
            os.close(dir_fd)
