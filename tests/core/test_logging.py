"""Tests for structured logging."""

import json
import logging
import sys

import pytest

from sqldeploy.core.logging import (
    JSONFormatter,
    LogContext,
    LogContextFilter,
    TextFormatter,
    configure_logging,
)


def _record(msg="Test message", level=logging.INFO, name="test", exc_info=None):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    """configure_logging replaces root handlers; put them back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    """Tests for JSON log formatter."""

    def test_format_basic_message(self):
        """Basic message is formatted as JSON."""
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data

    def test_format_includes_location(self):
        """JSON includes file location."""
        record = _record(level=logging.ERROR)
        record.funcName = "deploy"

        data = json.loads(JSONFormatter().format(record))

        assert data["location"]["file"] == "test.py"
        assert data["location"]["line"] == 10
        assert data["location"]["function"] == "deploy"

    def test_format_with_exception(self):
        """JSON includes exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(_record(exc_info=exc_info)))

        assert "ValueError" in data["exception"]

    def test_format_with_extra_fields(self):
        """JSON includes extra fields such as run_id."""
        record = _record()
        record.run_id = "abc123"
        record.version = "0001-1.0.0"

        data = json.loads(JSONFormatter().format(record))

        assert data["run_id"] == "abc123"
        assert data["version"] == "0001-1.0.0"


class TestTextFormatter:
    """Tests for text formatter."""

    def test_format_readable(self):
        output = TextFormatter().format(_record(msg="Hello world", name="sqldeploy.cli"))

        assert "INFO" in output
        assert "sqldeploy.cli" in output
        assert "Hello world" in output


class TestLogContext:
    """Tests for run-scoped log fields."""

    def test_fields_applied_inside_context(self):
        record = _record()
        with LogContext(run_id="r1"):
            LogContextFilter().filter(record)
        assert record.run_id == "r1"

    def test_fields_removed_after_context(self):
        with LogContext(run_id="r1"):
            pass
        assert "run_id" not in LogContext.current()

    def test_nested_context_restores_outer_value(self):
        with LogContext(run_id="outer"):
            with LogContext(run_id="inner", version="0002-x"):
                assert LogContext.current() == {"run_id": "inner", "version": "0002-x"}
            assert LogContext.current() == {"run_id": "outer"}

    def test_explicit_record_attribute_wins(self):
        record = _record()
        record.run_id = "explicit"
        with LogContext(run_id="context"):
            LogContextFilter().filter(record)
        assert record.run_id == "explicit"


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_json_format(self, restore_root_logger):
        configure_logging(level="DEBUG", format_type="json")
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, JSONFormatter)

    def test_configure_text_format(self, restore_root_logger):
        configure_logging(level="INFO", format_type="text")
        handler = logging.getLogger().handlers[0]
        assert isinstance(handler.formatter, TextFormatter)

    def test_logs_go_to_stderr(self, restore_root_logger):
        configure_logging()
        assert logging.getLogger().handlers[0].stream is sys.stderr

    def test_configure_level(self, restore_root_logger):
        configure_logging(level="ERROR", format_type="text")
        assert logging.getLogger("test.level").getEffectiveLevel() == logging.ERROR

    def test_sqlalchemy_noise_reduced(self, restore_root_logger):
        configure_logging(level="DEBUG")
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
