"""Tests for shared.logging."""
import json
import logging

from shared.logging import StructuredFormatter, setup_logging


def test_formatter_emits_extra_fields_as_json():
    record = logging.LogRecord("strategy.engine", logging.INFO, __file__, 1, "Executing strategy", None, None)
    record.strategy_id = "s1"
    record.probability = 0.6
    data = json.loads(StructuredFormatter().format(record))
    assert data["message"] == "Executing strategy"
    assert data["logger"] == "strategy.engine"
    assert data["strategy_id"] == "s1"
    assert data["probability"] == 0.6
    assert data["timestamp"].endswith("Z")


def test_setup_logging_routes_module_loggers_through_root():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logger = setup_logging("sentimentflow", "DEBUG")
        assert logger.name == "sentimentflow"
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
