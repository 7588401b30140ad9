"""Tests for the structured logging system (jsonmap_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

from jsonmap_kernel.exceptions import ConflictError
from jsonmap_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    """Parse all JSON log lines from a stream."""
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "jsonmap.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("upsert_resolved", extra={"action": "merged", "warning_count": 2})

        record = _parse_log(stream)
        assert record["action"] == "merged"
        assert record["warning_count"] == 2

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", entity_id="customer")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["entity_id"] == "customer"

    def test_jsonmap_exception_code_extracted(self):
        """JSON mapper exceptions carry .code and structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ConflictError({"customerId": "123"})
        except ConflictError:
            get_logger("test").error("upsert_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "UPSERT_CONFLICT"
        assert record["exc_type"] == "ConflictError"
        assert record["exc_key"] == {"customerId": "123"}
        assert "traceback" in record

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "mapping_target" not in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"record_id": uid})

        assert _parse_log(stream)["record_id"] == str(uid)

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")  # below the default INFO level

        logs = _parse_all_logs(stream)
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", mapping_target="a.b")
        assert LogContext.get_all() == {"correlation_id": "x", "mapping_target": "a.b"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(entity_id="outer")
        with LogContext.bind(entity_id="inner"):
            assert LogContext.get_all()["entity_id"] == "inner"
        assert LogContext.get_all()["entity_id"] == "outer"

    def test_bind_restores_none(self):
        assert "mapping_target" not in LogContext.get_all()
        with LogContext.bind(mapping_target="temp"):
            assert LogContext.get_all()["mapping_target"] == "temp"
        assert "mapping_target" not in LogContext.get_all()

    def test_bind_ignores_none_values(self):
        with LogContext.bind(correlation_id=None, entity_id="e"):
            assert LogContext.get_all() == {"entity_id": "e"}

    def test_all_fields(self):
        LogContext.set(correlation_id="c", entity_id="e", mapping_target="m", trace_id="t")
        ctx = LogContext.get_all()
        assert len(ctx) == 4
        assert ctx["trace_id"] == "t"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        assert len(logging.getLogger("jsonmap").handlers) == 1

    def test_reset_allows_reconfigure(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        reset_logging()
        h2, stream = _make_handler()
        configure_logging(handler=h2)
        get_logger("test").info("after_reset")
        assert _parse_log(stream)["message"] == "after_reset"

    def test_get_logger_returns_child(self):
        assert get_logger("engines.evaluator").name == "jsonmap.engines.evaluator"

    def test_logger_hierarchy(self):
        """Child loggers inherit the jsonmap root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "jsonmap.deep.nested.module"
