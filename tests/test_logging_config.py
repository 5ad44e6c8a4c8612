"""Tests for root logger setup (economy_ledger/logging_config.py)."""

import json
import logging

import pytest

from economy_ledger.logging_config import JsonLogFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)


@pytest.mark.unit
def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord(
        "economy_ledger.ledger.wipe", logging.INFO, __file__, 1, "Wiped %s", ("alice",), None
    )

    entry = json.loads(JsonLogFormatter().format(record))

    assert entry["level"] == "INFO"
    assert entry["logger"] == "economy_ledger.ledger.wipe"
    assert entry["message"] == "Wiped alice"
    assert "exc_info" not in entry


@pytest.mark.unit
def test_configure_logging_installs_single_handler(restore_root_logger):
    configure_logging(level="debug", fmt="json")
    configure_logging(level="warning", fmt="json")

    root = restore_root_logger
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonLogFormatter)
    assert root.level == logging.WARNING


@pytest.mark.unit
def test_unknown_format_falls_back_to_detailed(restore_root_logger):
    configure_logging(level="nonsense", fmt="fancy")

    root = restore_root_logger
    assert root.level == logging.INFO
    assert "%(name)s" in root.handlers[0].formatter._fmt
