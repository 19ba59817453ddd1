"""Tests for file logging setup."""
import logging

import pytest

from dsmrlxc.core import logger as logger_module


@pytest.fixture
def fresh_file_logging(monkeypatch, tmp_path):
    """Allow setup_file_logging to run again and detach what it adds."""
    monkeypatch.setattr(logger_module, "_file_logging_configured", False)
    monkeypatch.setattr(logger_module, "FALLBACK_LOG_FILE", tmp_path / "fallback" / "dsmr-lxc.log")
    root = logging.getLogger("dsmrlxc")
    before = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def file_handlers():
    return [h for h in logging.getLogger("dsmrlxc").handlers if isinstance(h, logging.FileHandler)]


def test_logs_to_requested_file(fresh_file_logging, tmp_path):
    target = tmp_path / "logs" / "run.log"

    logger_module.setup_file_logging(log_file=str(target))

    assert any(h.baseFilename == str(target) for h in file_handlers())
    assert "logging initialized" in target.read_text()


def test_unwritable_log_file_falls_back(fresh_file_logging, tmp_path, monkeypatch):
    target = tmp_path / "locked" / "dsmr-lxc.log"
    target.parent.mkdir()
    real_handler = logging.FileHandler

    def guarded(path, *args, **kwargs):
        if str(path) == str(target):
            raise PermissionError(13, "Permission denied", str(path))
        return real_handler(path, *args, **kwargs)

    monkeypatch.setattr(logging, "FileHandler", guarded)

    logger_module.setup_file_logging(log_file=str(target))

    fallback = tmp_path / "fallback" / "dsmr-lxc.log"
    assert not target.exists()
    assert "logging initialized" in fallback.read_text()


def test_second_call_is_a_no_op(fresh_file_logging, tmp_path):
    logger_module.setup_file_logging(log_file=str(tmp_path / "first.log"))
    logger_module.setup_file_logging(log_file=str(tmp_path / "second.log"))

    assert not (tmp_path / "second.log").exists()
