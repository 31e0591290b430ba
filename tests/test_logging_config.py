"""Tests for logging configuration."""

import json
import logging

import pytest

from investment_tracker.config.logging_config import JsonFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_installs_single_handler(restore_root_logger, monkeypatch) -> None:
    monkeypatch.delenv("LOG_JSON", raising=False)
    configure_logging("debug")
    configure_logging("debug")
    assert len(restore_root_logger.handlers) == 1
    assert restore_root_logger.level == logging.DEBUG


def test_configure_logging_json_mode(restore_root_logger, monkeypatch) -> None:
    monkeypatch.setenv("LOG_JSON", "1")
    configure_logging()
    assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)


def test_json_formatter_single_line() -> None:
    record = logging.LogRecord("investment_tracker.test", logging.WARNING, __file__, 1, "price %s", (42,), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "investment_tracker.test"
    assert payload["message"] == "price 42"
