"""
Tests for structured logging configuration and JSON formatter.
"""
import json
import logging
import sys
from unittest.mock import patch

from cbt.core.logging_config import JSONFormatter, request_id_context, setup_logging


def make_record(level=logging.INFO, msg="Test message", **extra):
    record = logging.LogRecord(
        name="cbt.core.session_engine",
        level=level,
        pathname="session_engine.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for the JSONFormatter class."""

    def test_basic_log_entry(self):
        """Test that basic log entry produces valid JSON with required fields."""
        log_entry = json.loads(JSONFormatter().format(make_record()))

        assert "timestamp" in log_entry
        assert log_entry["level"] == "INFO"
        assert log_entry["logger"] == "cbt.core.session_engine"
        assert log_entry["message"] == "Test message"
        assert "request_id" not in log_entry
        assert "source" not in log_entry

    def test_request_id_from_context(self):
        """Test that request_id is included when set in context."""
        token = request_id_context.set("test-request-123")
        try:
            log_entry = json.loads(JSONFormatter().format(make_record()))
        finally:
            request_id_context.reset(token)

        assert log_entry["request_id"] == "test-request-123"

    def test_structured_extras_are_copied(self):
        record = make_record(session_id="abc", status_code=409, unrelated="dropped")

        log_entry = json.loads(JSONFormatter().format(record))

        assert log_entry["session_id"] == "abc"
        assert log_entry["status_code"] == 409
        assert "unrelated" not in log_entry

    def test_errors_carry_source_location(self):
        log_entry = json.loads(
            JSONFormatter().format(make_record(level=logging.ERROR))
        )

        assert log_entry["source"] == "session_engine.py:10"

    def test_exception_is_formatted(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        log_entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in log_entry["exception"]


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_production_uses_json_formatter(self):
        with patch("cbt.core.logging_config.settings") as mock_settings:
            mock_settings.LOG_LEVEL = "WARNING"
            mock_settings.ENV = "production"
            mock_settings.DEBUG = False

            setup_logging()

        cbt_logger = logging.getLogger("cbt")
        assert cbt_logger.level == logging.WARNING
        assert cbt_logger.propagate is False
        assert isinstance(cbt_logger.handlers[0].formatter, JSONFormatter)

        setup_logging()

    def test_development_uses_plain_format(self):
        with patch("cbt.core.logging_config.settings") as mock_settings:
            mock_settings.LOG_LEVEL = "debug"
            mock_settings.ENV = "development"
            mock_settings.DEBUG = True

            setup_logging()

        cbt_logger = logging.getLogger("cbt")
        assert cbt_logger.level == logging.DEBUG
        assert not isinstance(cbt_logger.handlers[0].formatter, JSONFormatter)

        setup_logging()
