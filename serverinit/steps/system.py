"""Package updates, the administrative user and SSH."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from ..contracts import StepContext
from ..errors import CommandError
from ._files import append_line_once, backup_file, write_file

APT = ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get"]

UNATTENDED_UPGRADES = """\
Unattended-Upgrade::Allowed-Origins {
    "${distro_id}:${distro_codename}";
    "${distro_id}:${distro_codename}-security";
    "${distro_id}ESMApps:${distro_codename}-apps-security";
    "${distro_id}ESM:${distro_codename}-infra-security";
};
Unattended-Upgrade::AutoFixInterruptedDpkg "true";
Unattended-Upgrade::MinimalSteps "true";
Unattended-Upgrade::Remove-Unused-Kernel-Packages "true";
Unattended-Upgrade::Remove-Unused-Dependencies "true";
Unattended-Upgrade::Automatic-Reboot "true";
Unattended-Upgrade::Automatic-Reboot-WithUsers "true";
Unattended-Upgrade::Automatic-Reboot-Time "20:00";
"""

SSHD_CONFIG = """\
# Custom SSH Security Configuration
Port {port}
PermitRootLogin no
PubkeyAuthentication yes
PasswordAuthentication no
PermitEmptyPasswords no
AuthenticationMethods publickey
KbdInteractiveAuthentication no
UsePAM yes
X11Forwarding no
PrintMotd no
AcceptEnv LANG LC_*
AllowUsers {user}
MaxAuthTries 3
ClientAliveInterval 300
ClientAliveCountMax 2
LoginGraceTime 60
Ciphers chacha20-poly1305@openssh.com,aes256-gcm@openssh.com,aes256-ctr
MACs hmac-sha2-512-etm@openssh.com,hmac-sha2-256-etm@openssh.com,hmac-sha2-512,hmac-sha2-256
KexAlgorithms curve25519-sha256,curve25519-sha256@libssh.org,diffie-hellman-group16-sha512,diffie-hellman-group18-sha512,diffie-hellman-group-exchange-sha256
"""


def install_packages(ctx: StepContext, *packages: str) -> None:
    ctx.runner.run([*APT, "install", "-y", *packages])


def system_updates(ctx: StepContext) -> None:
    """Upgrade packages and enable unattended security upgrades."""
    ctx.runner.run([*APT, "update"])
    ctx.runner.run([*APT, "full-upgrade", "-y"])
    install_packages(ctx, "unattended-upgrades", "apt-listchanges")
    write_file(ctx.path("/etc/apt/apt.conf.d/50unattended-upgrades"), UNATTENDED_UPGRADES)
    ctx.runner.run([*APT, "autoremove", "--purge", "-y"])


def create_user(ctx: StepContext) -> None:
    """Create the administrative user with sudo rights."""
    user = ctx.config.new_user
    if ctx.runner.succeeds(["id", user]):
        ctx.logger.warning(f"User '{user}' already exists. Skipping creation.")
    else:
        ctx.runner.run(["adduser", "--disabled-password", "--gecos", "", user])
        ctx.logger.info(f"User '{user}' created.")
    ctx.runner.run(["usermod", "-aG", "sudo", user])
    ctx.logger.info(f"User '{user}' is in the sudo group.")
    if not has_password(ctx, user):
        if ctx.config.user_password:
            ctx.runner.run(["chpasswd"], input=f"{user}:{ctx.config.user_password}\n")
            ctx.logger.info("Password set from configuration.")
        else:
            ctx.logger.warning(f"No password configured. Set it later with: passwd {user}")


def has_password(ctx: StepContext, user: str) -> bool:
    """``passwd -S`` reports ``P`` for a usable password, ``L``/``NP`` otherwise."""
    fields = (ctx.runner.run(["passwd", "-S", user], check=False).stdout or "").split()
    return len(fields) > 1 and fields[1] == "P"


def ssh_config(ctx: StepContext) -> None:
    """Key-only SSH on the configured port with restricted ciphers."""
    config = ctx.config
    ssh_dir = ctx.path(f"/home/{config.new_user}/.ssh")
    ssh_dir.mkdir(parents=True, exist_ok=True)
    authorized_keys = ssh_dir / "authorized_keys"
    append_line_once(authorized_keys, config.ssh_public_key)
    ctx.runner.run(["chown", "-R", f"{config.new_user}:{config.new_user}", str(ssh_dir)])
    ssh_dir.chmod(0o700)
    authorized_keys.chmod(0o600)

    target = ctx.path("/etc/ssh/sshd_config.d/99-custom.conf")
    content = SSHD_CONFIG.format(port=config.ssh_port, user=config.new_user)
    if target.is_file() and target.read_text() == content:
        ctx.logger.info("SSH configuration already up to date.")
        return

    ctx.path("/run/sshd").mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", prefix="sshd-custom.", delete=False) as tmp:
        tmp.write(content)
    candidate = Path(tmp.name)
    try:
        ctx.runner.run(["sshd", "-t", "-f", str(candidate)])
    except CommandError:
        candidate.unlink()
        ctx.logger.error("SSH configuration validation failed. Not applying changes.")
        raise
    backup_file(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(candidate), target)
    target.chmod(0o600)
    ctx.runner.run(["sshd", "-t"])
    ctx.runner.run(["systemctl", "restart", "ssh"])
    ctx.logger.info(f"SSH configuration updated. New port: {config.ssh_port}")
    ctx.logger.warning(
        f"Test SSH before logging out: ssh -p {config.ssh_port} {config.new_user}@<server-ip>"
    )
