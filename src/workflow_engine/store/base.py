"""Record store interface consumed by the engine."""
from abc import ABC, abstractmethod

from workflow_engine.execution.models import WorkflowExecution
from workflow_engine.models import Workflow


class RecordStore(ABC):
    """
    Persistence collaborator for workflows and execution records.

    Implementations must return copies: callers may mutate what they get
    back without affecting stored state.
    """

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Return the workflow with its nodes and connections, or None."""

    @abstractmethod
    def save_workflow(self, workflow: Workflow) -> None:
        """Create or replace a workflow."""

    @abstractmethod
    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        """Return an execution record, or None."""

    @abstractmethod
    def save_execution(self, execution: WorkflowExecution) -> None:
        """
        Create or update an execution record.

        Raises:
            InvalidStateError: if the stored record is already terminal
        """

    @abstractmethod
    def list_executions(self, workflow_id: str | None = None) -> list[WorkflowExecution]:
        """Executions ordered by start time, optionally for one workflow."""
