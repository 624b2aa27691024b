"""Structured JSON logging with workflow trace context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from workflow_engine.config import get_settings

TRACE_FIELDS = ("workflow_id", "execution_id", "node_id", "connector")


class TraceContextFilter(logging.Filter):
    """Add trace context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default trace context fields if not present."""
        for name in TRACE_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        if "timestamp" not in log_record:
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Drop empty trace context
        for name in TRACE_FIELDS:
            if not getattr(record, name, None):
                log_record.pop(name, None)


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configure logging for the engine.

    Args:
        level: Log level name, defaults to settings.log_level
        fmt: "json" or "text", defaults to settings.log_format
    """
    settings = get_settings()
    level = level or settings.log_level
    fmt = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(
            CustomJsonFormatter(
                "%(timestamp)s %(level)s %(name)s %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    handler.addFilter(TraceContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


class TraceLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges bound context with per-call extra."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> logging.LoggerAdapter:
    """
    Get a logger with trace context support.

    Args:
        name: Logger name (typically __name__)
        **context: Trace context bound to every record (workflow_id, execution_id, ...)

    Returns:
        LoggerAdapter carrying the bound context
    """
    logger = logging.getLogger(name)
    return TraceLoggerAdapter(logger, extra=with_trace_context(**context))


def with_trace_context(
    workflow_id: str | None = None,
    execution_id: str | None = None,
    node_id: str | None = None,
    connector: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with trace context for logging.

    Args:
        workflow_id: Workflow ID
        execution_id: Execution ID
        node_id: Node ID
        connector: Connector node_type
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if execution_id:
        extra["execution_id"] = execution_id
    if node_id:
        extra["node_id"] = node_id
    if connector:
        extra["connector"] = connector
    return extra
