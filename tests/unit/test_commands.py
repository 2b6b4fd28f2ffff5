"""Tests for the command runner."""

import pytest

from serverinit.commands import CommandRunner
from serverinit.errors import CommandError


def test_run_captures_output():
    result = CommandRunner().run(["sh", "-c", "echo hello"])
    assert result.returncode == 0
    assert result.stdout == "hello\n"


def test_failure_raises_with_output():
    with pytest.raises(CommandError) as exc:
        CommandRunner().run(["sh", "-c", "echo boom >&2; exit 3"])
    assert exc.value.returncode == 3
    assert "boom" in str(exc.value)


def test_succeeds_and_input():
    runner = CommandRunner()
    assert runner.succeeds(["sh", "-c", "exit 0"])
    assert not runner.succeeds(["sh", "-c", "exit 1"])
    assert runner.run(["cat"], input="piped").stdout == "piped"
