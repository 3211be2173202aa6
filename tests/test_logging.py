"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

from scenegate.app.core.logging import (
    ContextFilter,
    JSONFormatter,
    get_log_context,
    get_logging_config,
    request_id_var,
)
from scenegate.app.services.admission import (
    AdmissionController,
    GlobalBucketStore,
    QuotaLimits,
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


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        record = make_record("Lock timeout")
        record.scope = "global"
        record.granularity = "minute"
        record.bucket_file = "/data/global_bucket_minute.json"

        data = json.loads(JSONFormatter().format(record))

        assert data["scope"] == "global"
        assert data["granularity"] == "minute"
        assert data["bucket_file"] == "/data/global_bucket_minute.json"
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        record = make_record("Custom event")
        record.custom_field = "custom_value"

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["custom_field"] == "custom_value"

    def test_json_format_with_exception(self):
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in ("request_id", "session_id", "scope", "granularity", "bucket_file"):
            assert hasattr(record, field)

    def test_preserves_existing_values(self):
        record = make_record()
        record.session_id = "abc"

        ContextFilter().filter(record)

        assert record.session_id == "abc"

    def test_request_id_from_context(self):
        token = request_id_var.set("req-123")
        try:
            record = make_record()
            ContextFilter().filter(record)
        finally:
            request_id_var.reset(token)

        assert record.request_id == "req-123"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("scenegate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            config = get_logging_config()

        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"

    def test_json_format(self):
        with patch("scenegate.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "json"
            mock_settings.log_level = "WARNING"
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["loggers"]["scenegate"]["level"] == "WARNING"


class TestGetLogContext:
    def test_filters_none(self):
        assert get_log_context(scope="user", granularity=None, reason_code="x") == {
            "scope": "user",
            "reason_code": "x",
        }


class TestBucketStateLogging:
    """The controller logs user bucket levels at DEBUG."""

    def test_logs_after_consumption(self, tmp_path):
        logger = logging.getLogger("scenegate.app.services.admission.controller")
        handler = ListHandler()
        logger.addHandler(handler)
        old_level = logger.level
        logger.setLevel(logging.DEBUG)
        try:
            controller = AdmissionController(
                GlobalBucketStore(tmp_path),
                lambda: QuotaLimits(10, 40, 500, 50000),
                clock=lambda: 1_760_000_000,
            )
            controller.consume({}, session_id="sess-1")
        finally:
            logger.removeHandler(handler)
            logger.setLevel(old_level)

        messages = [r.getMessage() for r in handler.records if r.levelno == logging.DEBUG]
        assert any(
            m.startswith("After consumption") and "tokens=9/10" in m and "tokens=39/40" in m
            for m in messages
        )
        assert handler.records[-1].session_id == "sess-1"
