"""Progress log setup."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .errors import PersistenceError

FALLBACK_PROGRESS_LOG = Path("/tmp/server-init-progress.log")
LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)

_handler: Optional[logging.Handler] = None


def configure_logging(progress_log: Path, level: int = logging.INFO) -> Path:
    """Attach the append-only progress log to the ``serverinit`` logger.

    Falls back to ``/tmp`` when ``progress_log`` is not writable and
    returns the path actually used. Calling it again replaces the handler.

    Raises:
        PersistenceError: Neither location is writable.
    """
    global _handler

    path = _open_log_path(progress_log)
    package_logger = logging.getLogger("serverinit")
    if _handler is not None:
        package_logger.removeHandler(_handler)
        _handler.close()

    _handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    _handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    package_logger.addHandler(_handler)
    package_logger.setLevel(level)
    return path


def _open_log_path(path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(mode=0o640, exist_ok=True)
        return path
    except OSError:
        logger.warning(f"Cannot write to {path}, using {FALLBACK_PROGRESS_LOG}")
    try:
        FALLBACK_PROGRESS_LOG.touch(mode=0o640, exist_ok=True)
    except OSError as exc:
        raise PersistenceError(
            f"Cannot write progress log {path} or {FALLBACK_PROGRESS_LOG}: {exc}"
        ) from exc
    return FALLBACK_PROGRESS_LOG
