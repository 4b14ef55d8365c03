"""Tests for process logging setup."""
import logging

import pytest

from logging_config import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


def test_setup_logging_sets_level():
    setup_logging(log_level="debug")
    assert logging.getLogger().level == logging.DEBUG


def test_unknown_level_falls_back_to_info():
    setup_logging(log_level="chatty")
    assert logging.getLogger().level == logging.INFO


def test_log_file_receives_records(tmp_path):
    log_file = tmp_path / "relay.log"
    setup_logging(log_level="INFO", log_file=str(log_file))

    get_logger("relay.test").info("room r1 created")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "relay.test - INFO - room r1 created" in log_file.read_text()
