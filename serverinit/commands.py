"""Local command execution for step actions."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from typing import Mapping, Optional, Sequence

from .errors import CommandError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Run host commands synchronously and log each invocation.

    Steps never call ``subprocess`` directly so tests can substitute a
    recording runner.
    """

    def __init__(self, timeout: Optional[float] = 3600, env: Optional[Mapping[str, str]] = None):
        self._timeout = timeout
        self._env = dict(env) if env is not None else None

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run ``args`` and return the completed process.

        Raises:
            CommandError: When ``check`` is set and the command fails.
        """
        command = [str(a) for a in args]
        logger.info(f"Run: {shlex.join(command)}")
        result = subprocess.run(
            command,
            input=input,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=None if input is not None else subprocess.DEVNULL,
            text=True,
            timeout=self._timeout,
            env=self._env,
        )
        if check and result.returncode != 0:
            raise CommandError(command, result.returncode, result.stdout or "")
        return result

    def succeeds(self, args: Sequence[str]) -> bool:
        """Return ``True`` when ``args`` exits with status 0."""
        return self.run(args, check=False).returncode == 0

    def which(self, program: str) -> Optional[str]:
        return shutil.which(program)
