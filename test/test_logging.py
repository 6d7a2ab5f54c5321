"""Tests for structured logging setup."""

import json
import logging
from collections.abc import Iterator

import pytest

from callrecovery.shared.logging import StructuredFormatter, correlation_id_var, get_logger, setup_logging


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


def test_module_loggers_follow_configured_level(
    monkeypatch: pytest.MonkeyPatch, restore_root_logger: logging.Logger
) -> None:
    logger = get_logger("callrecovery.calls.dispatcher")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    setup_logging()

    assert restore_root_logger.level == logging.DEBUG
    assert logger.level == logging.NOTSET
    assert logger.isEnabledFor(logging.DEBUG)


def test_formatter_emits_extra_fields_and_correlation_id() -> None:
    record = logging.LogRecord("callrecovery.test", logging.INFO, __file__, 1, "Call job claimed", None, None)
    record.call_job_id = "job-1"
    token = correlation_id_var.set("cycle-abc")
    try:
        payload = json.loads(StructuredFormatter().format(record))
    finally:
        correlation_id_var.reset(token)

    assert payload["message"] == "Call job claimed"
    assert payload["level"] == "INFO"
    assert payload["call_job_id"] == "job-1"
    assert payload["correlation_id"] == "cycle-abc"
