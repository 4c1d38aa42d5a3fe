"""Tests for logging configuration, formatters and context."""

import contextvars
import json
import logging

import pytest

from property_matcher.logging import ComponentLoggerAdapter, get_logger
from property_matcher.logging.config import (
    ContextualFilter,
    JSONFormatter,
    KeyValueFormatter,
    configure_logging,
)
from property_matcher.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


def _record(msg="Test message", **extra):
    record = logging.getLogger("test").makeRecord(
        "test", logging.INFO, "test.py", 1, msg, (), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_push_and_pop(self):
        token = push_log_context(run_id="r1")
        assert get_log_context() == {"run_id": "r1"}
        pop_log_context(token)
        assert get_log_context() == {}

    def test_nested_scopes_merge_and_restore(self):
        with log_context(run_id="r1"):
            with log_context(profile_id="p1"):
                assert get_log_context() == {"run_id": "r1", "profile_id": "p1"}
            assert get_log_context() == {"run_id": "r1"}
        assert get_log_context() == {}

    def test_context_restored_on_exception(self):
        with pytest.raises(RuntimeError):
            with log_context(run_id="r1"):
                raise RuntimeError("boom")
        assert get_log_context() == {}

    def test_copied_context_visible_in_other_thread_run(self):
        with log_context(run_id="r1"):
            ctx = contextvars.copy_context()
        assert ctx.run(get_log_context) == {"run_id": "r1"}


class TestContextualFilter:
    def test_stamps_service_environment_and_context(self):
        record = _record()
        with log_context(run_id="r1", profile_id="p1"):
            ContextualFilter(environment="test").filter(record)
        assert record.service == "property-matcher"
        assert record.environment == "test"
        assert record.run_id == "r1"
        assert record.profile_id == "p1"

    def test_explicit_extra_wins(self):
        record = _record(profile_id="explicit")
        with log_context(profile_id="from-context"):
            ContextualFilter().filter(record)
        assert record.profile_id == "explicit"


class TestFormatters:
    def test_json_formatter_fields(self):
        record = _record(event="pipeline.run.started", evaluated=3)
        log_obj = json.loads(JSONFormatter().format(record))
        assert log_obj["level"] == "INFO"
        assert log_obj["message"] == "Test message"
        assert log_obj["event"] == "pipeline.run.started"
        assert log_obj["evaluated"] == 3
        assert log_obj["timestamp"].endswith("Z")

    def test_json_formatter_stringifies_unknown_types(self):
        record = _record(payload=object())
        log_obj = json.loads(JSONFormatter().format(record))
        assert isinstance(log_obj["payload"], str)

    def test_key_value_formatter(self):
        formatter = KeyValueFormatter("%(levelname)s %(message)s")
        record = _record(event="dispatch.alert.created", reason="two words", ok=True, gone=None)
        output = formatter.format(record)
        assert output.startswith("INFO Test message")
        assert "event=dispatch.alert.created" in output
        assert 'reason="two words"' in output
        assert "ok=true" in output
        assert "gone=null" in output

    def test_key_value_formatter_hides_service_fields(self):
        formatter = KeyValueFormatter("%(message)s")
        record = _record(service="property-matcher", environment="local")
        assert formatter.format(record) == "Test message"


class TestConfigureLogging:
    def teardown_method(self):
        logging.getLogger().handlers.clear()

    def test_json_handler_installed(self):
        configure_logging(level="DEBUG", format_type="json", environment="test")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

    def test_key_value_handler_installed(self):
        configure_logging(level="info", format_type="key-value")
        assert isinstance(logging.getLogger().handlers[0].formatter, KeyValueFormatter)

    def test_apscheduler_quieted(self):
        configure_logging(level="INFO")
        assert logging.getLogger("apscheduler").level == logging.WARNING

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            configure_logging(level="LOUD")

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid log format"):
            configure_logging(format_type="xml")


class TestGetLogger:
    def test_component_adapter(self):
        logger = get_logger("property_matcher.test", component="dispatch")
        assert isinstance(logger, ComponentLoggerAdapter)
        msg, kwargs = logger.process("hello", {"extra": {"event": "x"}})
        assert kwargs["extra"] == {"component": "dispatch", "event": "x"}

    def test_per_call_extra_overrides_component(self):
        logger = get_logger("property_matcher.test", component="dispatch")
        _, kwargs = logger.process("hello", {"extra": {"component": "logging"}})
        assert kwargs["extra"]["component"] == "logging"

    def test_plain_logger_without_component(self):
        assert isinstance(get_logger("property_matcher.test"), logging.Logger)
