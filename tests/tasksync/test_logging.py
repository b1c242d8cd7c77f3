"""Tests for tasksync logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

import tasksync.logging as tasksync_logging
from tasksync.logging import get_logger, setup_logging


def test_get_logger_returns_children() -> None:
    assert get_logger().name == "tasksync"
    assert get_logger("guard").name == "tasksync.guard"


def test_setup_logging_writes_to_file_once(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(tasksync_logging, "_initialized", False)
    root = tasksync_logging.logger
    before = list(root.handlers)
    log_file = tmp_path / "tasksync.log"

    try:
        setup_logging("debug", log_file)
        setup_logging("error", tmp_path / "ignored.log")
        get_logger("guard").debug("checked %s", "/tmp/work")
        for handler in root.handlers:
            handler.flush()

        assert root.level == logging.DEBUG
        assert len(root.handlers) == len(before) + 1
        assert "DEBUG tasksync.guard: checked /tmp/work" in log_file.read_text(encoding="utf-8")
        assert not (tmp_path / "ignored.log").exists()
    finally:
        for handler in root.handlers[len(before):]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.NOTSET)
        root.propagate = True
