"""Tests for progress log setup."""

import logging

import pytest

from serverinit import logs
from serverinit.errors import PersistenceError


def test_progress_log_format(tmp_path):
    path = logs.configure_logging(tmp_path / "log" / "progress.log")
    logging.getLogger("serverinit.execute").info("Step 1/2 update: started (Update)")
    line = path.read_text().splitlines()[-1]
    assert line.endswith("] INFO: Step 1/2 update: started (Update)")
    assert line.startswith("[20")


def test_falls_back_when_log_location_unwritable(tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    fallback = tmp_path / "fallback.log"
    monkeypatch.setattr(logs, "FALLBACK_PROGRESS_LOG", fallback)

    assert logs.configure_logging(blocker / "progress.log") == fallback
    assert fallback.exists()


def test_no_writable_location(tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    monkeypatch.setattr(logs, "FALLBACK_PROGRESS_LOG", blocker / "fallback.log")

    with pytest.raises(PersistenceError, match="Cannot write progress log"):
        logs.configure_logging(blocker / "progress.log")
