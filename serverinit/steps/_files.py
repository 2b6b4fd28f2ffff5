"""Idempotent file helpers for step actions."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def backup_file(path: Path) -> Optional[Path]:
    """Copy ``path`` to ``<path>.backup-YYYYmmdd-HHMMSS`` if it exists."""
    if not path.is_file():
        return None
    backup = path.with_name(f"{path.name}.backup-{datetime.now():%Y%m%d-%H%M%S}")
    shutil.copy2(path, backup)
    logger.info(f"Backed up {path} to {backup}")
    return backup


def write_file(path: Path, content: str, mode: int = 0o644, backup: bool = True) -> bool:
    """Write ``content`` unless the file already holds it.

    Returns ``True`` when the file changed.
    """
    if path.is_file() and path.read_text() == content:
        path.chmod(mode)
        return False
    if backup:
        backup_file(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(mode)
    logger.info(f"Wrote {path}")
    return True


def append_line_once(path: Path, line: str) -> bool:
    """Append ``line`` unless an identical line is already present."""
    existing = path.read_text().splitlines() if path.is_file() else []
    if line in existing:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
        if existing and not path.read_text().endswith("\n"):
            f.write("\n")
        f.write(line + "\n")
    return True
