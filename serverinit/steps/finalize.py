"""Steps that always run last."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable, Tuple

from ..contracts import StepContext

BACKUP_MAX_AGE_DAYS = 30

# (path, mode for the path itself, mode for files below it)
PERMISSIONS: Tuple[Tuple[str, int, int | None], ...] = (
    ("/root", 0o700, None),
    ("/etc/passwd", 0o644, None),
    ("/etc/group", 0o644, None),
    ("/etc/shadow", 0o600, None),
    ("/etc/gshadow", 0o600, None),
    ("/etc/hosts", 0o644, None),
    ("/etc/hostname", 0o644, None),
    ("/etc/fstab", 0o644, None),
    ("/etc/sudoers", 0o440, None),
    ("/etc/sudoers.d", 0o750, 0o440),
    ("/etc/ssh/sshd_config", 0o644, None),
    ("/etc/ssh/sshd_config.d", 0o755, 0o600),
    ("/etc/ufw", 0o755, 0o644),
    ("/etc/audit", 0o750, 0o640),
    ("/etc/sysctl.d", 0o755, 0o644),
    ("/etc/docker", 0o755, 0o644),
    ("/var/log/auth.log", 0o640, None),
    ("/var/log/syslog", 0o640, None),
    ("/var/log/kern.log", 0o640, None),
)


def _files_below(directory: Path) -> Iterable[Path]:
    return (p for p in directory.rglob("*") if p.is_file() and not p.is_symlink())


def file_permissions(ctx: StepContext) -> None:
    """Tighten modes on system configuration and logs."""
    for absolute, mode, file_mode in PERMISSIONS:
        path = ctx.path(absolute)
        if not path.exists():
            continue
        path.chmod(mode)
        if file_mode is not None and path.is_dir():
            for child in _files_below(path):
                child.chmod(file_mode)
    ssh_dir = ctx.path("/etc/ssh")
    if ssh_dir.is_dir():
        for key in ssh_dir.glob("ssh_host_*_key"):
            key.chmod(0o600)
        for pub in ssh_dir.glob("*.pub"):
            pub.chmod(0o644)
    ctx.logger.info("File permissions secured.")


def cleanup(ctx: StepContext) -> None:
    """Remove stale backups and temporary files, clean the apt cache."""
    cutoff = time.time() - BACKUP_MAX_AGE_DAYS * 86400
    etc = ctx.path("/etc")
    if etc.is_dir():
        for backup in etc.rglob("*.backup-*"):
            if backup.is_file() and backup.stat().st_mtime < cutoff:
                backup.unlink()
                ctx.logger.info(f"Removed old backup {backup}")
    ctx.runner.run(["apt-get", "clean"])
    ctx.runner.run(["apt-get", "autoclean"])
    ctx.logger.info("Cleanup completed.")
