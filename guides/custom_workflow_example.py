"""Example declaring a small workflow and running it with a local state dir.

Run it twice: the first run fails at ``configure_net``, the second (with
``--fixed``) resumes there instead of starting over.
"""

import sys
import tempfile
from pathlib import Path

from serverinit import (
    Phase,
    StepContext,
    StepRegistry,
    WorkflowExecutor,
    WorkflowLock,
    get_checkpoint_store,
    resolve_request,
)
from serverinit.config import ServerConfig
from serverinit.errors import StepFailure

STATE_DIR = Path(tempfile.gettempdir()) / "serverinit-example"

registry = StepRegistry()


@registry.step("update", "System Updates")
def update(ctx: StepContext):
    ctx.logger.info("updating packages")


@registry.step("create_user", "Create User")
def create_user(ctx: StepContext):
    ctx.logger.info(f"creating {ctx.config.new_user}")


@registry.step("permissions", "File Permissions", phase=Phase.FINALIZE, priority=1)
def permissions(ctx: StepContext):
    ctx.logger.info("fixing permissions")


@registry.step("cleanup", "Cleanup", phase=Phase.FINALIZE, priority=2)
def cleanup(ctx: StepContext):
    ctx.logger.info("cleaning up")


# declared after the finalize steps but still ordered before them
@registry.step("configure_net", "Configure Network")
def configure_net(ctx: StepContext):
    if "--fixed" not in sys.argv:
        raise RuntimeError("network interface not found")


def main():
    config = ServerConfig(
        new_user="admin",
        ssh_public_key="ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIExample admin@example",
    )
    workflow = registry.compute_order()
    store = get_checkpoint_store(STATE_DIR / "checkpoint.json")
    request = resolve_request(workflow, store.load())
    executor = WorkflowExecutor(
        workflow,
        store,
        WorkflowLock(STATE_DIR / "example.lock"),
        StepContext(config=config),
    )
    print(f"Order: {workflow.ids}")
    print(f"Request: {request}")
    try:
        result = executor.run(request)
    except StepFailure:
        for line in executor.last_report.lines():
            print(line)
        return
    print(f"Done: executed {result.executed}")


if __name__ == "__main__":
    if "--restart" in sys.argv:
        get_checkpoint_store(STATE_DIR / "checkpoint.json").clear()
    main()
