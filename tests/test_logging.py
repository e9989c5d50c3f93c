"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from mealledger.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_current_request_id,
    get_log_context,
    get_logger,
    get_logging_config,
    set_current_request_id,
    setup_logging,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        formatter = JSONFormatter()
        data = json.loads(formatter.format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Context fields are promoted to the top level."""
        formatter = JSONFormatter()
        record = make_record("Meal claimed")
        record.request_id = "req-123"
        record.school_id = "school-a"
        record.allocation_id = "alloc-1"
        record.student_id = "student-a"
        record.duration_ms = 12.5

        data = json.loads(formatter.format(record))

        assert data["request_id"] == "req-123"
        assert data["school_id"] == "school-a"
        assert data["allocation_id"] == "alloc-1"
        assert data["student_id"] == "student-a"
        assert data["duration_ms"] == 12.5
        assert "extra" not in data

    def test_none_context_fields_are_omitted(self):
        formatter = JSONFormatter()
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(formatter.format(record))

        assert "school_id" not in data
        assert "caller_id" not in data

    def test_json_format_with_extra_fields(self):
        formatter = JSONFormatter()
        record = make_record("Custom event")
        record.error_code = "quota_exhausted"
        record.distributed = 42

        data = json.loads(formatter.format(record))

        assert data["extra"]["error_code"] == "quota_exhausted"
        assert data["extra"]["distributed"] == 42

    def test_json_format_with_exception(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(formatter.format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text

    def test_json_format_unicode(self):
        formatter = JSONFormatter()
        data = json.loads(formatter.format(make_record("Makan siang: nasi ayam 🍚")))
        assert "nasi ayam 🍚" in data["message"]


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True

        for field in ("request_id", "caller_id", "caller_role", "school_id",
                      "allocation_id", "student_id", "path", "method",
                      "status_code", "duration_ms"):
            assert hasattr(record, field)

    def test_preserves_existing_values(self):
        record = make_record()
        record.school_id = "school-a"
        record.request_id = "explicit"

        ContextFilter().filter(record)

        assert record.school_id == "school-a"
        assert record.request_id == "explicit"

    def test_request_id_from_current_request(self):
        set_current_request_id("req-from-context")
        try:
            record = make_record()
            ContextFilter().filter(record)
            assert record.request_id == "req-from-context"
        finally:
            set_current_request_id(None)

        assert get_current_request_id() is None


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("mealledger.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"

            config = get_logging_config()

        assert "standard" in config["formatters"]
        assert "structured" in config["formatters"]
        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_structured_format(self):
        with patch("mealledger.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "structured"
            mock_settings.log_level = "DEBUG"

            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert "school_id" in config["formatters"]["structured"]["format"]

    def test_json_format(self):
        with patch("mealledger.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"

            config = get_logging_config()

        assert "json" in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["console"]["level"] == "WARNING"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]
        assert "mealledger" in config["loggers"]


class TestGetLogger:

    def test_get_logger_default_name(self):
        assert get_logger().name == "mealledger"

    def test_get_logger_custom_name(self):
        assert get_logger("custom.module").name == "custom.module"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(
            school_id="school-a",
            allocation_id="alloc-1",
            student_id="student-a",
        )

        assert context == {
            "school_id": "school-a",
            "allocation_id": "alloc-1",
            "student_id": "student-a",
        }

    def test_context_filters_none(self):
        context = get_log_context(school_id="school-a", student_id=None)

        assert "school_id" in context
        assert "student_id" not in context

    def test_context_with_extra(self):
        context = get_log_context(caller_id="gov-1", quantity=150)

        assert context["caller_id"] == "gov-1"
        assert context["quantity"] == 150


class TestIntegration:

    def test_json_logging_output(self, capsys):
        with patch("mealledger.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "INFO"

            setup_logging()
            logger = get_logger("mealledger.test")
            logger.info(
                "Integration test",
                extra=get_log_context(school_id="school-a", allocation_id="alloc-1"),
            )

        data = json.loads(capsys.readouterr().out.strip().splitlines()[-1])

        assert data["level"] == "INFO"
        assert data["logger"] == "mealledger.test"
        assert data["message"] == "Integration test"
        assert data["school_id"] == "school-a"
        assert data["allocation_id"] == "alloc-1"
