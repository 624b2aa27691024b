"""
Workflow engine exceptions.

Hierarchy:
- WorkflowEngineError
  - ValidationError / ConnectorConfigError
  - NotFoundError / WorkflowNotFoundError, ExecutionNotFoundError, ConnectorNotFoundError
  - InvalidStateError / RegistryFrozenError
  - NodeExecutionError / NodeTimeoutError, SchemaMismatchError, ConnectorContractError
  - ExecutionTimeoutError
  - ExecutionCancelledError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from workflow_engine.validation import ValidationResult


class WorkflowEngineError(Exception):
    """Base exception for the workflow engine."""
    pass


class ValidationError(WorkflowEngineError):
    """Graph cannot run as specified. Never retried."""

    def __init__(
        self,
        message: str,
        result: Optional["ValidationResult"] = None,
        execution_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.result = result
        self.execution_id = execution_id

    @property
    def errors(self) -> list[str]:
        return list(self.result.errors) if self.result else [str(self)]


class ConnectorConfigError(ValidationError):
    """A node's config fails its connector's schema."""
    pass


class NotFoundError(WorkflowEngineError):
    """A referenced record or connector does not exist."""
    pass


class WorkflowNotFoundError(NotFoundError):
    pass


class ExecutionNotFoundError(NotFoundError):
    pass


class ConnectorNotFoundError(NotFoundError):
    def __init__(self, node_type: str, node_id: Optional[str] = None):
        if node_id:
            message = f"node {node_id} uses unknown connector type: {node_type}"
        else:
            message = f"unknown connector type: {node_type}"
        super().__init__(message)
        self.node_type = node_type
        self.node_id = node_id


class InvalidStateError(WorkflowEngineError):
    """Operation is not allowed in the current state."""
    pass


class RegistryFrozenError(InvalidStateError):
    """Connector registration attempted after the registry was frozen."""
    pass


class NodeExecutionError(WorkflowEngineError):
    """Raised when a node's execute call fails."""

    retryable = True

    def __init__(self, node_id: str, message: str, attempts: int = 0):
        super().__init__(message)
        self.node_id = node_id
        self.attempts = attempts


class NodeTimeoutError(NodeExecutionError):
    """A single node attempt exceeded its time limit."""
    pass


class SchemaMismatchError(NodeExecutionError):
    """An input envelope does not satisfy the node's input requirements."""

    retryable = False


class ConnectorContractError(NodeExecutionError):
    """A connector returned a value that breaks its kind's contract."""

    retryable = False


class ExecutionTimeoutError(WorkflowEngineError, TimeoutError):
    """The whole run exceeded its timeout."""
    pass


class ExecutionCancelledError(WorkflowEngineError):
    """The run was cancelled. Not a failure."""
    pass


__all__ = [
    "WorkflowEngineError",
    "ValidationError",
    "ConnectorConfigError",
    "NotFoundError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "ConnectorNotFoundError",
    "InvalidStateError",
    "RegistryFrozenError",
    "NodeExecutionError",
    "NodeTimeoutError",
    "SchemaMismatchError",
    "ConnectorContractError",
    "ExecutionTimeoutError",
    "ExecutionCancelledError",
]
