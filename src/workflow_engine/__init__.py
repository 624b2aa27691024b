"""
Workflow Engine - DAG execution of typed connector nodes.

This package provides:
- Workflow / WorkflowNode / WorkflowConnection: graph records
- WorkflowGraph: ordering, cycle and reachability queries
- Connector / ConnectorRegistry: pluggable node capabilities
- WorkflowValidator: static pre-flight checks
- Scheduler: concurrent execution with retries, timeouts and cancellation
- WorkflowEngine: start, cancel, query and validate runs
"""

from workflow_engine.compatibility import CompatibilityResult, is_compatible
from workflow_engine.connectors import Connector, ConnectorRegistry, RunContext, get_global_registry
from workflow_engine.engine import WorkflowEngine
from workflow_engine.execution import ExecutionLog, ExecutionStatus, LogLevel, Scheduler, WorkflowExecution
from workflow_engine.graph import CycleError, WorkflowGraph
from workflow_engine.inference import infer_schema, merge_envelopes, merge_schemas
from workflow_engine.models import NodeKind, Workflow, WorkflowConnection, WorkflowNode, load_workflow, parse_workflow
from workflow_engine.schema import DataEnvelope, DataSchema, FieldDefinition, FieldType, NodeMetadata
from workflow_engine.store import InMemoryRecordStore, RecordStore
from workflow_engine.validation import ValidationResult
from workflow_engine.validator import WorkflowValidator

__version__ = "0.1.0"

__all__ = [
    # Models
    "NodeKind",
    "Workflow",
    "WorkflowConnection",
    "WorkflowNode",
    "load_workflow",
    "parse_workflow",
    # Schemas
    "CompatibilityResult",
    "DataEnvelope",
    "DataSchema",
    "FieldDefinition",
    "FieldType",
    "NodeMetadata",
    "infer_schema",
    "is_compatible",
    "merge_envelopes",
    "merge_schemas",
    # Graph
    "CycleError",
    "WorkflowGraph",
    # Connectors
    "Connector",
    "ConnectorRegistry",
    "RunContext",
    "get_global_registry",
    # Validation
    "ValidationResult",
    "WorkflowValidator",
    # Execution
    "ExecutionLog",
    "ExecutionStatus",
    "LogLevel",
    "Scheduler",
    "WorkflowExecution",
    "WorkflowEngine",
    # Storage
    "InMemoryRecordStore",
    "RecordStore",
]
