"""Firewall, Docker, auditing and kernel hardening."""

from __future__ import annotations

import os
import tempfile
from typing import List

from ..contracts import StepContext, StepOutcome
from ._files import append_line_once, write_file
from .system import install_packages

AUDIT_RULES = """\
# Identity and authentication
-w /etc/passwd -p wa -k identity
-w /etc/group -p wa -k identity
-w /etc/shadow -p wa -k identity
-w /etc/gshadow -p wa -k identity
-w /etc/sudoers -p wa -k sudoers_changes
-w /etc/sudoers.d/ -p wa -k sudoers_changes
-w /etc/ssh/sshd_config -p wa -k sshd_config
-w /etc/ssh/sshd_config.d/ -p wa -k sshd_config

# System configuration
-w /etc/sysctl.conf -p wa -k sysctl_changes
-w /etc/sysctl.d/ -p wa -k sysctl_changes
-w /etc/hosts -p wa -k network_config
-w /etc/fstab -p wa -k filesystem_changes

# Kernel modules
-w /sbin/insmod -p x -k kernel_modules
-w /sbin/rmmod -p x -k kernel_modules
-w /sbin/modprobe -p x -k kernel_modules
-a always,exit -F arch=b64 -S init_module,delete_module -k kernel_modules

# Privilege escalation
-a always,exit -F arch=b64 -S setuid,setreuid,setresuid -F auid>=1000 -F auid!=-1 -k privilege_escalation
-w /usr/bin/sudo -p x -k sudo_execution
-w /usr/bin/su -p x -k su_execution
"""

DOCKER_AUDIT_RULES = """\
# Docker daemon monitoring
-w /usr/bin/docker -p wa -k docker
-w /var/lib/docker -p wa -k docker
-w /etc/docker -p wa -k docker
-w /lib/systemd/system/docker.service -p wa -k docker
-w /lib/systemd/system/docker.socket -p wa -k docker
-w /etc/docker/daemon.json -p wa -k docker
-w /usr/bin/dockerd -p wa -k docker

# Container runtime monitoring
-w /usr/bin/containerd -p wa -k docker
-w /usr/bin/runc -p wa -k docker
"""

JOURNALD_CONFIG = """\
[Journal]
Storage=persistent
Compress=yes
SystemMaxUse=500M
SystemMaxFileSize=100M
"""

SYSCTL_CONFIG = """\
# IPv4
net.ipv4.ip_forward = 1
net.ipv4.conf.all.send_redirects = 0
net.ipv4.conf.default.send_redirects = 0
net.ipv4.conf.all.accept_redirects = 0
net.ipv4.conf.default.accept_redirects = 0
net.ipv4.conf.all.secure_redirects = 0
net.ipv4.conf.default.secure_redirects = 0
net.ipv4.conf.all.rp_filter = 2
net.ipv4.conf.default.rp_filter = 2
net.ipv4.icmp_echo_ignore_broadcasts = 1
net.ipv4.tcp_syncookies = 1
net.ipv4.tcp_max_syn_backlog = 4096
net.ipv4.conf.all.log_martians = 1
net.ipv4.conf.default.log_martians = 1
net.ipv4.conf.all.accept_source_route = 0
net.ipv4.conf.default.accept_source_route = 0

# IPv6
net.ipv6.conf.all.forwarding = 1
net.ipv6.conf.all.accept_ra = 0
net.ipv6.conf.default.accept_ra = 0
net.ipv6.conf.all.accept_redirects = 0
net.ipv6.conf.default.accept_redirects = 0
net.ipv6.conf.all.accept_source_route = 0
net.ipv6.conf.default.accept_source_route = 0

# Kernel
kernel.kptr_restrict = 2
kernel.dmesg_restrict = 1
kernel.yama.ptrace_scope = 1
fs.suid_dumpable = 0
fs.protected_hardlinks = 1
fs.protected_symlinks = 1
"""

SHM_FSTAB_LINE = "tmpfs /run/shm tmpfs defaults,noexec,nosuid,nodev 0 0"

DOCKER_INSTALLER_URL = "https://get.docker.com"
UFW_DOCKER_URL = "https://github.com/chaifeng/ufw-docker/raw/master/ufw-docker"
UFW_DOCKER_PATH = "/usr/local/bin/ufw-docker"


def ufw_firewall(ctx: StepContext) -> None:
    """Deny incoming traffic except rate-limited SSH."""
    port = f"{ctx.config.ssh_port}/tcp"
    install_packages(ctx, "ufw")
    status = ctx.runner.run(["ufw", "status"], check=False).stdout or ""
    if "Status: active" in status:
        ctx.logger.warning("UFW is already active. Updating rules without full reset.")
    else:
        ctx.runner.run(["ufw", "--force", "reset"])
        ctx.runner.run(["ufw", "default", "deny", "incoming"])
        ctx.runner.run(["ufw", "default", "allow", "outgoing"])
    ctx.runner.run(["ufw", "allow", port])
    ctx.runner.run(["ufw", "limit", port, "comment", "ssh rate limited"])
    if "Status: active" not in status:
        ctx.runner.run(["ufw", "--force", "enable"])


def docker_installed(ctx: StepContext) -> bool:
    return ctx.runner.which("docker") is not None and ctx.runner.succeeds(
        ["systemctl", "is-active", "--quiet", "docker"]
    )


def reload_audit_rules(ctx: StepContext) -> None:
    if ctx.runner.which("augenrules") and ctx.runner.succeeds(["augenrules", "--load"]):
        ctx.logger.info("Audit rules reloaded")
        return
    ctx.logger.warning("Failed to load audit rules - restarting auditd")
    ctx.runner.run(["systemctl", "restart", "auditd"])


def auditd(ctx: StepContext) -> None:
    """Install auditd with identity, kernel and privilege rules."""
    install_packages(ctx, "auditd", "audispd-plugins")
    write_file(ctx.path("/etc/audit/rules.d/hardening.rules"), AUDIT_RULES, mode=0o640)
    ctx.runner.run(["systemctl", "enable", "auditd"])
    reload_audit_rules(ctx)
    ctx.runner.run(["systemctl", "is-active", "--quiet", "auditd"])


def docker_security(ctx: StepContext) -> StepOutcome:
    """Audit rules for the Docker daemon, when Docker is running."""
    if not docker_installed(ctx):
        ctx.logger.info("Docker is not installed. Skipping Docker runtime security.")
        return StepOutcome.SKIPPED
    write_file(ctx.path("/etc/audit/rules.d/docker.rules"), DOCKER_AUDIT_RULES, mode=0o640)
    if ctx.runner.which("augenrules"):
        reload_audit_rules(ctx)
    else:
        ctx.logger.warning("auditd is not installed; Docker audit rules will load later")
    return StepOutcome.COMPLETED


def shared_memory(ctx: StepContext) -> None:
    """Mount /run/shm with noexec, nosuid and nodev."""
    if append_line_once(ctx.path("/etc/fstab"), SHM_FSTAB_LINE):
        ctx.logger.info("Shared memory secured in /etc/fstab")
    else:
        ctx.logger.warning("Shared memory entry already exists in /etc/fstab")


def persistent_logging(ctx: StepContext) -> None:
    """Keep the systemd journal across reboots."""
    ctx.path("/var/log/journal").mkdir(parents=True, exist_ok=True)
    ctx.runner.run(["systemd-tmpfiles", "--create", "--prefix", "/var/log/journal"])
    if write_file(ctx.path("/etc/systemd/journald.conf.d/persistent.conf"), JOURNALD_CONFIG):
        ctx.runner.run(["systemctl", "restart", "systemd-journald"])


def kernel_hardening(ctx: StepContext) -> None:
    """Network and kernel sysctl settings, core dumps disabled."""
    write_file(ctx.path("/etc/security/limits.d/disable-coredumps.conf"), "* hard core 0\n")
    if write_file(ctx.path("/etc/sysctl.d/99-security.conf"), SYSCTL_CONFIG):
        ctx.runner.run(["sysctl", "--system"])


def docker_install(ctx: StepContext) -> StepOutcome:
    """Docker Engine and ufw-docker, when ``install_docker`` is set."""
    if not ctx.config.install_docker:
        ctx.logger.info("install_docker is off. Skipping Docker installation.")
        return StepOutcome.SKIPPED
    user = ctx.config.new_user
    if ctx.runner.which("docker"):
        ctx.logger.info("Docker Engine already installed.")
    else:
        _fetch_and_run(ctx, DOCKER_INSTALLER_URL, ["sh"])
        ctx.logger.info("Docker Engine installed successfully.")
    ctx.runner.run(["usermod", "-aG", "docker", user])
    ctx.logger.info(f"User '{user}' added to docker group.")

    ufw_docker = ctx.path(UFW_DOCKER_PATH)
    if not ufw_docker.is_file():
        _fetch_and_run(ctx, UFW_DOCKER_URL, ["install", "-m", "755"], str(ufw_docker))
    ctx.runner.run([str(ufw_docker), "install"])
    ctx.runner.run(["systemctl", "restart", "ufw"])
    ctx.logger.info(
        "ufw-docker installed. Publish ports with: sudo ufw-docker allow <container> <port>"
    )
    return StepOutcome.COMPLETED


def _fetch_and_run(ctx: StepContext, url: str, command: List[str], *extra: str) -> None:
    fd, download = tempfile.mkstemp(prefix="server-init-download.")
    os.close(fd)
    try:
        ctx.runner.run(["curl", "-fsSL", url, "-o", download])
        ctx.runner.run([*command, download, *extra])
    finally:
        os.unlink(download)
