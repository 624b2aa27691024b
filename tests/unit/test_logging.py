"""Tests for structured logging and trace context."""
import io
import json
import logging

from workflow_engine.observability.logging import (
    CustomJsonFormatter,
    TraceContextFilter,
    get_logger,
    setup_logging,
    with_trace_context,
)


def _capture(formatter):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter())
    logger = logging.getLogger("tests.logging")
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    return logger, stream


class TestTraceContext:
    """Test with_trace_context and get_logger."""

    def test_drops_empty_fields(self):
        extra = with_trace_context(workflow_id="wf-1", execution_id=None, node_id="", attempt=2)

        assert extra == {"workflow_id": "wf-1", "attempt": 2}

    def test_all_fields(self):
        extra = with_trace_context(
            workflow_id="wf-1", execution_id="exec-1", node_id="A", connector="people"
        )

        assert extra == {
            "workflow_id": "wf-1",
            "execution_id": "exec-1",
            "node_id": "A",
            "connector": "people",
        }

    def test_get_logger_binds_context(self):
        adapter = get_logger("tests.logging", workflow_id="wf-1")

        assert adapter.extra == {"workflow_id": "wf-1"}

    def test_filter_fills_missing_fields(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)

        assert TraceContextFilter().filter(record)
        assert record.workflow_id is None
        assert record.connector is None


class TestJsonFormatter:
    """Test CustomJsonFormatter output."""

    def test_json_fields(self):
        logger, stream = _capture(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))

        logger.warning("Node failed", extra=with_trace_context(workflow_id="wf-1", node_id="B"))

        payload = json.loads(stream.getvalue())
        assert payload["message"] == "Node failed"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "tests.logging"
        assert payload["workflow_id"] == "wf-1"
        assert payload["node_id"] == "B"
        assert "timestamp" in payload

    def test_bound_and_call_context_are_merged(self):
        _, stream = _capture(CustomJsonFormatter("%(message)s"))
        adapter = get_logger("tests.logging", workflow_id="wf-1")

        adapter.info("Node started", extra=with_trace_context(node_id="B"))

        payload = json.loads(stream.getvalue())
        assert payload["workflow_id"] == "wf-1"
        assert payload["node_id"] == "B"

    def test_empty_trace_fields_are_omitted(self):
        logger, stream = _capture(CustomJsonFormatter("%(message)s"))

        logger.info("plain")

        payload = json.loads(stream.getvalue())
        for name in ("workflow_id", "execution_id", "node_id", "connector"):
            assert name not in payload


class TestSetupLogging:
    """Test root logger configuration."""

    def test_text_format(self):
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        try:
            setup_logging(level="debug", fmt="text")

            (handler,) = root.handlers
            assert root.level == logging.DEBUG
            assert not isinstance(handler.formatter, CustomJsonFormatter)
        finally:
            root.handlers = saved[0]
            root.setLevel(saved[1])

    def test_json_format(self):
        root = logging.getLogger()
        saved = (root.handlers[:], root.level)
        try:
            setup_logging(level="INFO", fmt="json")

            (handler,) = root.handlers
            assert isinstance(handler.formatter, CustomJsonFormatter)
            assert any(isinstance(f, TraceContextFilter) for f in handler.filters)
        finally:
            root.handlers = saved[0]
            root.setLevel(saved[1])
