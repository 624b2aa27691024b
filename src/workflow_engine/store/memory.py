"""In-memory record store."""
import threading
from typing import Any

from workflow_engine.errors import InvalidStateError
from workflow_engine.execution.models import WorkflowExecution
from workflow_engine.models import Workflow
from workflow_engine.observability import get_logger, with_trace_context
from workflow_engine.store.base import RecordStore

logger = get_logger(__name__)


class InMemoryRecordStore(RecordStore):
    """
    Thread-safe store keeping records in process memory.

    Executions are held in their persisted shape (see
    WorkflowExecution.to_record), with logs and results as JSON strings.
    """

    def __init__(self, workflows: list[Workflow] | None = None):
        self._lock = threading.Lock()
        self._workflows: dict[str, Workflow] = {}
        self._executions: dict[str, dict[str, Any]] = {}
        for workflow in workflows or []:
            self.save_workflow(workflow)

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            return workflow.model_copy(deep=True) if workflow else None

    def save_workflow(self, workflow: Workflow) -> None:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
        logger.info(
            "Saved workflow",
            extra=with_trace_context(workflow_id=workflow.id, nodes=len(workflow.nodes)),
        )

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        with self._lock:
            record = self._executions.get(execution_id)
        return WorkflowExecution.from_record(record) if record else None

    def save_execution(self, execution: WorkflowExecution) -> None:
        record = execution.to_record()
        with self._lock:
            existing = self._executions.get(execution.id)
            if existing is not None and existing["status"] != "running":
                raise InvalidStateError(
                    f"execution {execution.id} is already {existing['status']}"
                )
            self._executions[execution.id] = record
        logger.info(
            "Saved execution",
            extra=with_trace_context(
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
                status=execution.status.value,
            ),
        )

    def list_executions(self, workflow_id: str | None = None) -> list[WorkflowExecution]:
        with self._lock:
            records = list(self._executions.values())
        executions = [WorkflowExecution.from_record(r) for r in records]
        if workflow_id is not None:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        return sorted(executions, key=lambda e: e.start_time)
