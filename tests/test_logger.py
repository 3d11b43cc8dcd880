"""Unit tests for structured logging."""
import json
import logging
import sys

from knowledge_rag.logger import JSONFormatter, setup_logging


def make_record(message="Search finished", **extra):
    record = logging.LogRecord("knowledge_rag.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_core_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "knowledge_rag.test"
        assert data["message"] == "Search finished"
        assert data["timestamp"].endswith("Z")
        assert "exception" not in data

    def test_extra_fields_are_included(self):
        data = json.loads(JSONFormatter().format(make_record(error_code="SEARCH_TIMEOUT", took=12)))

        assert data["error_code"] == "SEARCH_TIMEOUT"
        assert data["took"] == 12
        assert "args" not in data

    def test_exception_is_formatted(self):
        try:
            raise ValueError("bad chunk")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad chunk" in data["exception"]


def test_setup_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("DEBUG")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
