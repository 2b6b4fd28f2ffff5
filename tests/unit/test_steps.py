"""Tests for the built-in hardening steps, run against a scratch root."""

import os
import time

import pytest

from conftest import RecordingRunner
from serverinit.contracts import Phase, StepOutcome
from serverinit.errors import CommandError
from serverinit.steps import build_workflow, finalize, security, system
from serverinit.steps._files import append_line_once, backup_file, write_file


def test_default_workflow_order():
    workflow = build_workflow()
    assert workflow.ids == [
        "system-updates",
        "create-user",
        "ssh-config",
        "ufw-firewall",
        "docker-install",
        "auditd",
        "docker-security",
        "shared-memory",
        "persistent-logging",
        "kernel-hardening",
        "file-permissions",
        "cleanup",
    ]
    assert [s.phase for s in workflow][-2:] == [Phase.FINALIZE, Phase.FINALIZE]
    assert all(s.description for s in workflow)


def test_system_updates_writes_unattended_config(context, runner):
    system.system_updates(context)
    assert runner.calls[0][-1] == "update"
    conf = context.path("/etc/apt/apt.conf.d/50unattended-upgrades")
    assert "Automatic-Reboot-Time" in conf.read_text()


def test_create_user_existing_user_keeps_sudo_and_password(context, runner):
    system.create_user(context)
    assert runner.commands == ["id admin", "usermod -aG sudo admin", "passwd -S admin"]


def test_create_user_sets_password(context, server_config):
    runner = RecordingRunner(failing={"id admin"})
    context.runner = runner
    server_config.user_password = "s3cret"

    system.create_user(context)
    assert "adduser --disabled-password --gecos  admin" in runner.commands
    assert "usermod -aG sudo admin" in runner.commands
    assert runner.inputs[-1] == "admin:s3cret\n"


def test_create_user_retry_completes_partial_setup(context, server_config):
    server_config.user_password = "s3cret"
    first = RecordingRunner(failing={"id admin", "usermod -aG sudo admin"})
    context.runner = first
    with pytest.raises(CommandError):
        system.create_user(context)
    assert "adduser --disabled-password --gecos  admin" in first.commands

    # user now exists, adduser must not run again but the rest must
    retry = RecordingRunner(outputs={"passwd -S admin": "admin L 01/01/2026 0 99999 7 -1\n"})
    context.runner = retry
    system.create_user(context)
    assert retry.commands == [
        "id admin",
        "usermod -aG sudo admin",
        "passwd -S admin",
        "chpasswd",
    ]


def test_create_user_keeps_existing_password(context, server_config):
    server_config.user_password = "s3cret"
    runner = RecordingRunner(outputs={"passwd -S admin": "admin P 01/01/2026 0 99999 7 -1\n"})
    context.runner = runner
    system.create_user(context)
    assert "chpasswd" not in runner.commands


def test_ssh_config_installs_key_and_config(context, runner):
    system.ssh_config(context)

    keys = context.path("/home/admin/.ssh/authorized_keys")
    assert keys.read_text().count("ssh-ed25519") == 1
    assert oct(keys.stat().st_mode & 0o777) == "0o600"
    target = context.path("/etc/ssh/sshd_config.d/99-custom.conf")
    text = target.read_text()
    assert "Port 2222" in text
    assert "AllowUsers admin" in text
    assert runner.commands[-1] == "systemctl restart ssh"

    # second invocation changes nothing
    runner.calls.clear()
    system.ssh_config(context)
    assert keys.read_text().count("ssh-ed25519") == 1
    assert "systemctl restart ssh" not in runner.commands


def test_ssh_config_rejected_candidate_leaves_config_alone(context):
    class RejectingRunner(RecordingRunner):
        def run(self, args, *, check=True, input=None):
            if list(args[:3]) == ["sshd", "-t", "-f"]:
                raise CommandError(list(args), 255, "bad option")
            return super().run(args, check=check, input=input)

    context.runner = RejectingRunner()
    with pytest.raises(CommandError):
        system.ssh_config(context)
    assert not context.path("/etc/ssh/sshd_config.d/99-custom.conf").exists()


def test_ufw_keeps_active_rules(context):
    runner = RecordingRunner(outputs={"ufw status": "Status: active\n"})
    context.runner = runner
    security.ufw_firewall(context)
    assert "ufw --force reset" not in runner.commands
    assert "ufw limit 2222/tcp comment ssh rate limited" in runner.commands


def test_ufw_enables_inactive_firewall(context, runner):
    security.ufw_firewall(context)
    assert runner.commands[-1] == "ufw --force enable"
    assert "ufw default deny incoming" in runner.commands


def test_docker_install_skipped_unless_enabled(context, runner):
    assert security.docker_install(context) is StepOutcome.SKIPPED
    assert runner.commands == []


def test_docker_install(context, server_config, runner):
    server_config.install_docker = True
    assert security.docker_install(context) is StepOutcome.COMPLETED
    commands = runner.commands
    assert commands[0].startswith("curl -fsSL https://get.docker.com -o ")
    assert commands[1].startswith("sh ")
    assert "usermod -aG docker admin" in commands
    ufw_docker = context.path("/usr/local/bin/ufw-docker")
    assert commands[-2:] == [f"{ufw_docker} install", "systemctl restart ufw"]


def test_docker_install_retry_reuses_installed_tools(context, server_config):
    server_config.install_docker = True
    ufw_docker = context.path("/usr/local/bin/ufw-docker")
    ufw_docker.parent.mkdir(parents=True)
    ufw_docker.write_text("#!/bin/sh\n")
    runner = RecordingRunner(programs={"docker"})
    context.runner = runner

    security.docker_install(context)
    assert not any(c.startswith("curl") for c in runner.commands)
    assert runner.commands == [
        "usermod -aG docker admin",
        f"{ufw_docker} install",
        "systemctl restart ufw",
    ]


def test_docker_security_skipped_without_docker(context, runner):
    assert security.docker_security(context) is StepOutcome.SKIPPED
    assert not context.path("/etc/audit/rules.d/docker.rules").exists()


def test_docker_security_with_docker(context):
    context.runner = RecordingRunner(programs={"docker", "augenrules"})
    assert security.docker_security(context) is StepOutcome.COMPLETED
    assert "/usr/bin/dockerd" in context.path("/etc/audit/rules.d/docker.rules").read_text()


def test_shared_memory_is_idempotent(context):
    fstab = context.path("/etc/fstab")
    fstab.parent.mkdir(parents=True)
    fstab.write_text("UUID=abc / ext4 defaults 0 1")

    security.shared_memory(context)
    security.shared_memory(context)
    lines = fstab.read_text().splitlines()
    assert lines == ["UUID=abc / ext4 defaults 0 1", security.SHM_FSTAB_LINE]


def test_kernel_hardening_reloads_only_on_change(context, runner):
    security.kernel_hardening(context)
    security.kernel_hardening(context)
    assert runner.commands.count("sysctl --system") == 1


def test_file_permissions(context):
    shadow = context.path("/etc/shadow")
    sudoers_d = context.path("/etc/sudoers.d")
    sudoers_d.mkdir(parents=True)
    shadow.write_text("root:*:1::::::\n")
    shadow.chmod(0o644)
    (sudoers_d / "admin").write_text("admin ALL=(ALL) ALL\n")

    finalize.file_permissions(context)
    assert shadow.stat().st_mode & 0o777 == 0o600
    assert sudoers_d.stat().st_mode & 0o777 == 0o750
    assert (sudoers_d / "admin").stat().st_mode & 0o777 == 0o440


def test_cleanup_removes_old_backups(context, runner):
    etc = context.path("/etc/ssh")
    etc.mkdir(parents=True)
    old = etc / "sshd_config.backup-20200101-000000"
    fresh = etc / "sshd_config.backup-20990101-000000"
    old.write_text("old")
    fresh.write_text("new")
    stale = time.time() - 40 * 86400
    os.utime(old, (stale, stale))

    finalize.cleanup(context)
    assert not old.exists()
    assert fresh.exists()
    assert runner.commands == ["apt-get clean", "apt-get autoclean"]


class TestFileHelpers:
    def test_write_file_backs_up_changed_content(self, tmp_path):
        path = tmp_path / "app.conf"
        assert write_file(path, "a=1\n")
        assert not write_file(path, "a=1\n")
        assert write_file(path, "a=2\n")
        backups = list(tmp_path.glob("app.conf.backup-*"))
        assert len(backups) == 1
        assert backups[0].read_text() == "a=1\n"

    def test_backup_missing_file(self, tmp_path):
        assert backup_file(tmp_path / "absent") is None

    def test_append_line_once(self, tmp_path):
        path = tmp_path / "list"
        assert append_line_once(path, "one")
        assert not append_line_once(path, "one")
        assert append_line_once(path, "two")
        assert path.read_text() == "one\ntwo\n"
