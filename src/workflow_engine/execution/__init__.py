"""
Execution - runs, their records and their logs.

This package provides:
- WorkflowExecution / ExecutionLog: the run record and its entries
- ExecutionRecorder: single writer of a run's record
- Scheduler: concurrent, retrying, cancellable execution of one run
"""

from workflow_engine.execution.models import ExecutionLog, ExecutionStatus, LogLevel, NodeEvent, WorkflowExecution
from workflow_engine.execution.recorder import ExecutionRecorder
from workflow_engine.execution.retry import RetryPolicy, interruptible_sleep, run_with_timeout
from workflow_engine.execution.scheduler import Scheduler

__all__ = [
    "ExecutionLog",
    "ExecutionRecorder",
    "ExecutionStatus",
    "LogLevel",
    "NodeEvent",
    "RetryPolicy",
    "Scheduler",
    "WorkflowExecution",
    "interruptible_sleep",
    "run_with_timeout",
]
