"""
Unit tests for the logging subsystem: context propagation, JSON output and
queue setup.
"""

import json
import logging

import pytest

from soma.core.logging.logger import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    get_log_context,
    get_logging_health,
    setup_logging,
    shutdown_logging,
)


def make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.makeLogRecord({"name": "soma.modules.balance.service", "msg": msg, "levelname": "INFO"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    """Test ContextVar-scoped log fields."""

    def test_fields_visible_inside_and_cleared_after(self):
        with LogContext(user_id="1", operation="deduct"):
            context = get_log_context()
            assert context["user_id"] == "1"
            assert context["operation"] == "deduct"
            assert context["correlation_id"]

        assert get_log_context() == {}

    def test_nested_context_inherits_correlation_id(self):
        with LogContext(user_id="1", correlation_id="abc"):
            with LogContext(server_id="2"):
                context = get_log_context()

        assert context == {"user_id": "1", "server_id": "2", "correlation_id": "abc"}

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with LogContext(operation="transfer"):
            assert get_log_context()["operation"] == "transfer"
        assert "operation" not in get_log_context()


class TestContextFilter:
    def test_context_copied_onto_record(self):
        record = make_record()
        with LogContext(user_id="1", server_id="2", operation="refund"):
            ContextFilter().filter(record)

        assert record.user_id == "1"
        assert record.server_id == "2"
        assert record.operation == "refund"
        assert record.component == "service"

    def test_explicit_extra_wins_over_context(self):
        record = make_record(user_id="explicit")
        with LogContext(user_id="from-context"):
            ContextFilter().filter(record)

        assert record.user_id == "explicit"


class TestJSONFormatter:
    def test_context_and_extras_serialized(self):
        record = make_record("Deducted", amount=5.0)
        with LogContext(user_id="1", correlation_id="abc"):
            ContextFilter().filter(record)

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Deducted"
        assert payload["user_id"] == "1"
        assert payload["correlation_id"] == "abc"
        assert payload["extra"] == {"amount": 5.0}
        # Unset context fields are omitted
        assert "server_id" not in payload

    def test_exception_text_kept_after_queue_prepare(self):
        record = make_record(exc_text="Traceback: boom")

        payload = json.loads(JSONFormatter().format(record))

        assert payload["exception"] == "Traceback: boom"


class TestSetup:
    def test_setup_and_shutdown_toggle_health(self):
        root = logging.getLogger()
        saved_handlers = list(root.handlers)
        saved_level = root.level
        try:
            setup_logging(write_file=False)
            setup_logging(write_file=False)

            health = get_logging_health()
            assert health.initialized
            assert health.queue_max_size > 0

            shutdown_logging()
            assert not get_logging_health().initialized
        finally:
            shutdown_logging()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
