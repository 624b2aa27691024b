"""
Execution records - one WorkflowExecution per run, with its ordered log.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    """Run state: running -> completed | failed | cancelled."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class NodeEvent(str, Enum):
    """Status values carried by node-scoped log entries."""
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    PRUNED = "pruned"


class ExecutionLog(BaseModel):
    """One append-only log entry scoped to an execution."""
    model_config = ConfigDict(populate_by_name=True)

    timestamp: datetime
    level: LogLevel = LogLevel.INFO
    message: str
    node_id: Optional[str] = Field(None, alias="nodeId")
    node_type: Optional[str] = Field(None, alias="nodeType")
    connector: Optional[str] = None
    status: Optional[str] = None
    attempt: Optional[int] = None


class WorkflowExecution(BaseModel):
    """A single run of a workflow."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    workflow_id: str = Field(..., alias="workflowId")
    status: ExecutionStatus = ExecutionStatus.RUNNING
    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    duration_ms: Optional[float] = Field(None, alias="durationMs")
    logs: List[ExecutionLog] = Field(default_factory=list)
    results: Dict[str, Any] = Field(default_factory=dict, description="Destination node id -> envelope")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    node_errors: Dict[str, str] = Field(default_factory=dict, alias="nodeErrors")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def node_logs(self, node_id: str, status: Optional[str] = None) -> List[ExecutionLog]:
        """Log entries for one node, optionally filtered by status."""
        return [
            entry for entry in self.logs
            if entry.node_id == node_id and (status is None or entry.status == status)
        ]

    def to_record(self) -> Dict[str, Any]:
        """Flat record with logs and results serialized as JSON strings."""
        data = self.model_dump(mode="json", exclude={"logs", "results"})
        data["logs"] = json.dumps(
            [entry.model_dump(mode="json", exclude_none=True) for entry in self.logs]
        )
        data["results"] = json.dumps(self.results, default=str)
        return data

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "WorkflowExecution":
        data = dict(record)
        for key in ("logs", "results"):
            if isinstance(data.get(key), str):
                data[key] = json.loads(data[key]) if data[key] else None
        if data.get("logs") is None:
            data["logs"] = []
        if data.get("results") is None:
            data["results"] = {}
        return cls.model_validate(data)


__all__ = [
    "ExecutionLog",
    "ExecutionStatus",
    "LogLevel",
    "NodeEvent",
    "WorkflowExecution",
]
