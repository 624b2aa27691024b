"""Observability package."""
from workflow_engine.observability.logging import (
    get_logger,
    setup_logging,
    with_trace_context,
)
from workflow_engine.observability.metrics import MetricsSnapshot, WorkflowMetrics

__all__ = [
    "get_logger",
    "setup_logging",
    "with_trace_context",
    "MetricsSnapshot",
    "WorkflowMetrics",
]
