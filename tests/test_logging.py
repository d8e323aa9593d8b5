"""Tests for the structured logging system (order_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from order_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from order_kernel.models.fulfillment import FulfillmentStatus


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("order_created")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "order_created"
        assert record["logger"] == "order_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        task_id = uuid4()
        get_logger("test").info(
            "task_dispatched",
            extra={"task_id": task_id, "status": FulfillmentStatus.SENT_TO_PRODUCER, "attempt": 1},
        )

        record = _parse_log(stream)
        assert record["task_id"] == str(task_id)
        assert record["status"] == "sent_to_producer"
        assert record["attempt"] == 1

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(event_id="evt_1", order_number="AIGG-20260115-AB12")
        get_logger("test").info("webhook_processed")

        record = _parse_log(stream)
        assert record["event_id"] == "evt_1"
        assert record["order_number"] == "AIGG-20260115-AB12"
        assert "producer" not in record

    def test_kernel_exception_fields(self):
        from order_kernel.exceptions import PeriodNotClosedError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise PeriodNotClosedError("2026-01-01", "2026-02-01")
        except PeriodNotClosedError:
            get_logger("test").error("report_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "PeriodNotClosedError"
        assert record["exc_code"] == "PERIOD_NOT_CLOSED"
        assert record["exc_period_start"] == "2026-01-01"
        assert record["exc_period_end"] == "2026-02-01"
        assert "traceback" in record

    def test_default_level_filters_debug(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]

    def test_secret_values_redacted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("producer_configured", extra={"api_key": "kd-secret", "producer": "kiendler"})

        record = _parse_log(stream)
        assert record["api_key"] == "[redacted]"
        assert "kd-secret" not in stream.getvalue()


class TestConsoleFormatter:
    def test_key_value_line(self):
        stream = StringIO()
        configure_logging(json_output=False, stream=stream)
        LogContext.set(order_number="AIGG-20260115-AB12")
        get_logger("test").warning("dispatch_failed", extra={"attempt": 2})

        line = stream.getvalue().strip()
        assert "WARNING" in line
        assert "dispatch_failed" in line
        assert "order_number=AIGG-20260115-AB12" in line
        assert line.endswith("attempt=2")


class TestLogContext:
    def test_bind_restores_previous(self):
        LogContext.set(producer="kiendler")
        with LogContext.bind(producer="hernach", actor="ops@aigg"):
            assert LogContext.get_all() == {"producer": "hernach", "actor": "ops@aigg"}
        assert LogContext.get_all() == {"producer": "kiendler"}

    def test_set_is_additive(self):
        LogContext.set(correlation_id="c")
        LogContext.set(event_id="e")
        assert LogContext.get_all() == {"correlation_id": "c", "event_id": "e"}

    def test_clear(self):
        LogContext.set(
            correlation_id="c", event_id="e", order_number="o", producer="p", actor="a"
        )
        assert len(LogContext.get_all()) == 5
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(customer="x")


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        handlers = logging.getLogger("order_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_reset_removes_only_installed_handler(self):
        foreign = logging.NullHandler()
        logger = logging.getLogger("order_kernel")
        logger.addHandler(foreign)
        try:
            handler, _ = _make_handler()
            configure_logging(handler=handler)
            reset_logging()
            assert handler not in logger.handlers
            assert foreign in logger.handlers
        finally:
            logger.removeHandler(foreign)

    def test_child_loggers_inherit(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("services.fulfillment_dispatcher")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "order_kernel.services.fulfillment_dispatcher"
