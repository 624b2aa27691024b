"""
Execution recorder - the single writer of one run's record and log.

Every scheduler event goes through ExecutionRecorder, which serializes log
appends under one lock, keeps timestamps strictly increasing and owns the
running -> terminal transition. Once terminal the record is frozen: later
appends are dropped and later transitions are refused.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from workflow_engine.errors import InvalidStateError
from workflow_engine.observability import get_logger, with_trace_context
from workflow_engine.execution.models import ExecutionLog, ExecutionStatus, LogLevel, WorkflowExecution


logger = get_logger(__name__)

LogListener = Callable[[str, ExecutionLog], None]
TerminalHook = Callable[[WorkflowExecution], None]

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionRecorder:
    """
    Owns a WorkflowExecution while its run is live.

    Listeners and the terminal hook are called after the lock is released,
    so they may call back into the engine (for example to cancel the run).
    """

    def __init__(
        self,
        execution: WorkflowExecution,
        listeners: Sequence[LogListener] = (),
        on_terminal: Optional[TerminalHook] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._execution = execution
        self._listeners = list(listeners)
        self._on_terminal = on_terminal
        self._clock = clock
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._last_ts: Optional[datetime] = execution.logs[-1].timestamp if execution.logs else None

    @property
    def execution_id(self) -> str:
        return self._execution.id

    @property
    def workflow_id(self) -> str:
        return self._execution.workflow_id

    @property
    def status(self) -> ExecutionStatus:
        return self._execution.status

    @property
    def is_terminal(self) -> bool:
        return self._execution.status.is_terminal

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last_ts is not None and now <= self._last_ts:
            now = self._last_ts + _TICK
        self._last_ts = now
        return now

    def _append_locked(self, level: LogLevel, message: str, fields: Dict[str, Any]) -> ExecutionLog:
        entry = ExecutionLog(timestamp=self._next_timestamp(), level=level, message=message, **fields)
        self._execution.logs.append(entry)
        return entry

    def _emit(self, entries: List[ExecutionLog]) -> None:
        for entry in entries:
            logger.log(
                _PY_LEVELS[entry.level],
                entry.message,
                extra=with_trace_context(
                    workflow_id=self.workflow_id,
                    execution_id=self.execution_id,
                    node_id=entry.node_id,
                    connector=entry.connector,
                    status=entry.status,
                ),
            )
            for listener in self._listeners:
                try:
                    listener(self.execution_id, entry)
                except Exception:
                    logger.exception(f"Log listener failed for execution {self.execution_id}")

    def append(self, level: LogLevel, message: str, **fields: Any) -> Optional[ExecutionLog]:
        """
        Append a log entry.

        Returns:
            The entry, or None when the record is already terminal
        """
        with self._lock:
            if self.is_terminal:
                logger.debug(
                    f"Dropped late log entry: {message}",
                    extra=with_trace_context(execution_id=self.execution_id),
                )
                return None
            entry = self._append_locked(level, message, fields)
        self._emit([entry])
        return entry

    def info(self, message: str, **fields: Any) -> Optional[ExecutionLog]:
        return self.append(LogLevel.INFO, message, **fields)

    def warn(self, message: str, **fields: Any) -> Optional[ExecutionLog]:
        return self.append(LogLevel.WARN, message, **fields)

    def error(self, message: str, **fields: Any) -> Optional[ExecutionLog]:
        return self.append(LogLevel.ERROR, message, **fields)

    def set_node_error(self, node_id: str, message: str) -> None:
        with self._lock:
            if not self.is_terminal:
                self._execution.node_errors[node_id] = message

    def finish(
        self,
        status: ExecutionStatus,
        message: str,
        error_message: Optional[str] = None,
        results: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Move the run to a terminal state, appending one final log entry.

        Returns:
            False when another transition already won

        Raises:
            InvalidStateError: if status is not terminal
        """
        if not status.is_terminal:
            raise InvalidStateError(f"cannot finish an execution as {status.value}")

        level = LogLevel.INFO
        if status == ExecutionStatus.FAILED:
            level = LogLevel.ERROR
        elif status == ExecutionStatus.CANCELLED:
            level = LogLevel.WARN

        with self._lock:
            if self.is_terminal:
                return False
            entry = self._append_locked(level, message, {"status": status.value})
            end_time = entry.timestamp
            self._execution.status = status
            self._execution.end_time = end_time
            self._execution.duration_ms = (end_time - self._execution.start_time).total_seconds() * 1000
            self._execution.error_message = error_message
            self._execution.results = results or {}
            final = self._execution.model_copy(deep=True)

        self._emit([entry])
        try:
            if self._on_terminal is not None:
                self._on_terminal(final)
        finally:
            self._finished.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the record is terminal. Returns False on timeout."""
        return self._finished.wait(timeout)

    def snapshot(self) -> WorkflowExecution:
        """Deep copy of the record, including partial logs while running."""
        with self._lock:
            return self._execution.model_copy(deep=True)


__all__ = [
    "ExecutionRecorder",
    "LogListener",
    "TerminalHook",
]
