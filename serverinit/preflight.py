"""Checks that must pass before anything touches the host."""

from __future__ import annotations

import logging
import os
import socket
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import (
    DEFAULT_MAIL_HOSTNAME,
    PLACEHOLDER_SSH_KEY,
    PLACEHOLDER_USER,
    ServerConfig,
)
from .errors import ValidationError

logger = logging.getLogger(__name__)


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse ``/etc/os-release`` style ``KEY=value`` lines."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key] = value.strip().strip("'\"")
    return values


class HostProbe:
    """Read-only facts about the host the workflow runs on."""

    def euid(self) -> int:
        raise NotImplementedError

    def os_release(self) -> Optional[Dict[str, str]]:
        raise NotImplementedError

    def network_reachable(self, targets: Sequence[str], timeout: float) -> bool:
        raise NotImplementedError


class SystemProbe(HostProbe):
    def __init__(self, os_release_path: Path = Path("/etc/os-release")) -> None:
        self._os_release_path = os_release_path

    def euid(self) -> int:
        return os.geteuid()

    def os_release(self) -> Optional[Dict[str, str]]:
        try:
            return parse_os_release(self._os_release_path.read_text())
        except OSError:
            return None

    def network_reachable(self, targets: Sequence[str], timeout: float) -> bool:
        for target in targets:
            host, _, port = target.rpartition(":")
            host = host.strip("[]")
            try:
                with socket.create_connection((host, int(port)), timeout=timeout):
                    return True
            except (OSError, ValueError):
                logger.debug(f"Network probe {target} failed")
        return False


class PreflightValidator:
    """Gate run before the lock is taken and before any step executes.

    ``validate`` only reads from the probe, so the same configuration and
    host always give the same verdict.
    """

    def __init__(self, probe: Optional[HostProbe] = None) -> None:
        self._probe = probe or SystemProbe()

    def validate(self, config: ServerConfig) -> List[str]:
        """Raise ``ValidationError`` listing every failed check.

        Returns:
            Non-fatal warnings.
        """
        problems: List[str] = []
        warnings: List[str] = []

        if config.new_user == PLACEHOLDER_USER or config.ssh_public_key == PLACEHOLDER_SSH_KEY:
            problems.append(
                "new_user and ssh_public_key must be customised before running"
            )
        if config.mail_hostname == DEFAULT_MAIL_HOSTNAME:
            warnings.append(
                f"mail_hostname is still set to default ({DEFAULT_MAIL_HOSTNAME})"
            )

        checks = config.preflight
        if checks.require_root and self._probe.euid() != 0:
            problems.append("must be run as root or with sudo")

        release = self._probe.os_release()
        if release is None:
            problems.append("cannot detect OS: /etc/os-release not found")
        else:
            os_id = release.get("ID", "")
            if os_id not in checks.allowed_os:
                problems.append(
                    f"unsupported OS {os_id!r}, expected one of {', '.join(checks.allowed_os)}"
                )
            elif (
                os_id == "ubuntu"
                and checks.expected_version
                and not release.get("VERSION_ID", "").startswith(checks.expected_version)
            ):
                warnings.append(
                    f"designed for Ubuntu {checks.expected_version}x, found {release.get('VERSION_ID')}"
                )
            else:
                logger.info(f"Detected: {release.get('PRETTY_NAME', os_id)}")

        if checks.check_network and not self._probe.network_reachable(
            checks.network_targets, checks.network_timeout
        ):
            problems.append("no network connectivity detected (IPv4 or IPv6)")

        for warning in warnings:
            logger.warning(f"Preflight: {warning}")
        if problems:
            logger.error(f"Preflight failed: {'; '.join(problems)}")
            raise ValidationError("Preflight checks failed:", problems)
        logger.info("Preflight checks passed")
        return warnings
