"""Built-in Ubuntu server hardening workflow."""

from __future__ import annotations

from ..contracts import Phase
from ..registry import StepRegistry, Workflow
from . import finalize, security, system


def build_registry() -> StepRegistry:
    """Declare the default steps.

    New steps go anywhere in the NORMAL section; the FINALIZE steps stay
    last on their own.
    """
    registry = StepRegistry()
    registry.step("system-updates", "System Updates")(system.system_updates)
    registry.step("create-user", "Create New User")(system.create_user)
    registry.step("ssh-config", "SSH Configuration")(system.ssh_config)
    registry.step("ufw-firewall", "UFW Firewall")(security.ufw_firewall)
    registry.step("docker-install", "Docker + ufw-docker")(security.docker_install)
    registry.step("auditd", "Auditd")(security.auditd)
    registry.step("docker-security", "Docker Runtime Security")(security.docker_security)
    registry.step("shared-memory", "Secure Shared Memory")(security.shared_memory)
    registry.step("persistent-logging", "Persistent Logging")(security.persistent_logging)
    registry.step("kernel-hardening", "Kernel Hardening")(security.kernel_hardening)
    registry.step(
        "file-permissions", "File Permissions", phase=Phase.FINALIZE, priority=10
    )(finalize.file_permissions)
    registry.step("cleanup", "Cleanup", phase=Phase.FINALIZE, priority=20)(finalize.cleanup)
    return registry


def build_workflow() -> Workflow:
    return build_registry().compute_order()


__all__ = ["build_registry", "build_workflow"]
