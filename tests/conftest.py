"""Shared fixtures: fake host, recording command runner and a small workflow."""

from __future__ import annotations

import subprocess
from typing import Dict, Iterable, List, Optional

import pytest

from serverinit.commands import CommandRunner
from serverinit.config import PreflightConfig, ServerConfig, StateConfig
from serverinit.contracts import Phase, Step, StepContext, StepOutcome
from serverinit.errors import CommandError
from serverinit.preflight import HostProbe
from serverinit.registry import StepRegistry

SSH_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAITestKey admin@example"
UBUNTU_24 = {"ID": "ubuntu", "VERSION_ID": "24.04", "PRETTY_NAME": "Ubuntu 24.04 LTS"}


class RecordingRunner(CommandRunner):
    """Command runner that records commands instead of running them."""

    def __init__(
        self,
        failing: Iterable[str] = (),
        outputs: Optional[Dict[str, str]] = None,
        programs: Iterable[str] = (),
    ) -> None:
        super().__init__()
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.failing = set(failing)
        self.outputs = outputs or {}
        self.programs = set(programs)

    def run(self, args, *, check=True, input=None):
        command = [str(a) for a in args]
        self.calls.append(command)
        self.inputs.append(input)
        joined = " ".join(command)
        returncode = 1 if joined in self.failing else 0
        result = subprocess.CompletedProcess(
            command, returncode, stdout=self.outputs.get(joined, "")
        )
        if check and returncode:
            raise CommandError(command, returncode, result.stdout)
        return result

    def which(self, program):
        return f"/usr/bin/{program}" if program in self.programs else None

    @property
    def commands(self) -> List[str]:
        return [" ".join(c) for c in self.calls]


class FakeProbe(HostProbe):
    def __init__(self, euid=0, release=UBUNTU_24, network=True) -> None:
        self._euid = euid
        self._release = release
        self._network = network

    def euid(self) -> int:
        return self._euid

    def os_release(self):
        return dict(self._release) if self._release is not None else None

    def network_reachable(self, targets, timeout) -> bool:
        return self._network


class ScenarioSteps:
    """``update``, ``create_user``, ``configure_net`` then finalize steps
    ``permissions`` and ``cleanup``. Every invocation is recorded."""

    NORMAL = ("update", "create_user", "configure_net")
    FINALIZE = ("permissions", "cleanup")

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.fail: set[str] = set()
        self.skip: set[str] = set()

    def _action(self, step_id: str):
        def action(ctx: StepContext):
            self.calls.append(step_id)
            if step_id in self.fail:
                raise RuntimeError(f"{step_id} broke")
            if step_id in self.skip:
                return StepOutcome.SKIPPED
            return None

        return action

    def registry(self) -> StepRegistry:
        registry = StepRegistry()
        # finalize steps declared first on purpose
        for priority, step_id in enumerate(self.FINALIZE):
            registry.register(
                Step(
                    id=step_id,
                    name=step_id.replace("_", " ").title(),
                    action=self._action(step_id),
                    phase=Phase.FINALIZE,
                    priority=priority,
                )
            )
        for step_id in self.NORMAL:
            registry.register(
                Step(
                    id=step_id,
                    name=step_id.replace("_", " ").title(),
                    action=self._action(step_id),
                )
            )
        return registry

    def workflow(self):
        return self.registry().compute_order()


@pytest.fixture
def state(tmp_path) -> StateConfig:
    return StateConfig(
        checkpoint_path=tmp_path / "state" / "checkpoint.json",
        lock_path=tmp_path / "state" / "server-init.lock",
        progress_log=tmp_path / "log" / "progress.log",
    )


@pytest.fixture
def server_config(state) -> ServerConfig:
    return ServerConfig(
        new_user="admin",
        ssh_port=2222,
        ssh_public_key=SSH_KEY,
        mail_hostname="mail.example.org",
        state=state,
        preflight=PreflightConfig(),
    )


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def scenario() -> ScenarioSteps:
    return ScenarioSteps()


@pytest.fixture
def context(server_config, runner, tmp_path) -> StepContext:
    root = tmp_path / "root"
    root.mkdir()
    return StepContext(config=server_config, runner=runner, root=root)
