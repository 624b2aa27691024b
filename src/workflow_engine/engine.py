"""
Workflow Engine - the public surface for running workflows.

Operations:
- start_execution(workflow_id) -> execution_id
- cancel_execution(execution_id)
- get_execution(execution_id), with live logs while running
- validate_workflow(workflow_id)

Each run gets its own snapshot, recorder, scheduler and background thread.
Runs share only the frozen connector registry, the metrics and the store.
"""

from __future__ import annotations

import threading
import traceback
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from workflow_engine.config import Settings, get_settings
from workflow_engine.connectors import ConnectorRegistry, get_global_registry
from workflow_engine.errors import (
    ConnectorNotFoundError,
    ExecutionNotFoundError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowNotFoundError,
)
from workflow_engine.execution import (
    ExecutionRecorder,
    ExecutionStatus,
    Scheduler,
    WorkflowExecution,
    interruptible_sleep,
)
from workflow_engine.execution.recorder import LogListener
from workflow_engine.execution.retry import Sleeper
from workflow_engine.graph import WorkflowGraph
from workflow_engine.models import Workflow
from workflow_engine.observability import WorkflowMetrics, get_logger, with_trace_context
from workflow_engine.schema import DataSchema
from workflow_engine.schema_cache import SchemaCache
from workflow_engine.store import RecordStore
from workflow_engine.validation import ValidationResult
from workflow_engine.validator import WorkflowValidator


logger = get_logger(__name__)


@dataclass
class _ActiveRun:
    recorder: ExecutionRecorder
    scheduler: Scheduler
    thread: threading.Thread


class WorkflowEngine:
    """
    Validates and runs workflows held in a record store.

    Usage:
        engine = WorkflowEngine(store, registry)
        execution_id = engine.start_execution("wf-1")
        execution = engine.wait_for_execution(execution_id, timeout=30)
    """

    def __init__(
        self,
        store: RecordStore,
        registry: Optional[ConnectorRegistry] = None,
        settings: Optional[Settings] = None,
        metrics: Optional[WorkflowMetrics] = None,
        schema_cache: Optional[SchemaCache] = None,
        listeners: Sequence[LogListener] = (),
        sleeper: Sleeper = interruptible_sleep,
    ):
        self._store = store
        self._registry = registry if registry is not None else get_global_registry()
        self._registry.freeze()
        self._settings = settings or get_settings()
        self.metrics = metrics or WorkflowMetrics()
        self.schema_cache = schema_cache or SchemaCache(
            ttl_s=self._settings.schema_cache_ttl_s,
            max_entries=self._settings.schema_cache_max_entries,
        )
        self._validator = WorkflowValidator(self._registry, self.schema_cache)
        self._listeners = list(listeners)
        self._sleeper = sleeper
        self._runs: Dict[str, _ActiveRun] = {}
        self._lock = threading.Lock()

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    def add_listener(self, listener: LogListener) -> None:
        """Register a log listener for runs started after this call."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def _load_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._store.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"workflow not found: {workflow_id}")
        return workflow

    def validate_workflow(self, workflow_id: str) -> ValidationResult:
        """Validate a stored workflow. No side effects."""
        return self._validator.validate(self._load_workflow(workflow_id))

    def save_workflow(self, workflow: Workflow) -> ValidationResult:
        """Validate and, when valid, persist a workflow."""
        result = self._validator.validate(workflow)
        if result.valid:
            self._store.save_workflow(workflow)
            self.schema_cache.invalidate_workflow(workflow.id)
        return result

    def get_workflow_schemas(self, workflow_id: str) -> Dict[str, Optional[DataSchema]]:
        """Static output schema of every node, None where only known at run time."""
        graph = WorkflowGraph(self._load_workflow(workflow_id))
        return self._validator.resolve_schemas(graph)

    def get_node_output_schema(self, workflow_id: str, node_id: str) -> Optional[DataSchema]:
        schemas = self.get_workflow_schemas(workflow_id)
        if node_id not in schemas:
            raise NotFoundError(f"node {node_id} not found in workflow {workflow_id}")
        return schemas[node_id]

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def start_execution(self, workflow_id: str) -> str:
        """
        Start a run in the background.

        Returns:
            The new execution id

        Raises:
            WorkflowNotFoundError: if the workflow does not exist
            InvalidStateError: if the workflow is not active
            ConnectorNotFoundError: if a node's connector is not registered
            ValidationError: if the workflow is invalid
        """
        workflow = self._load_workflow(workflow_id)
        if not workflow.active:
            raise InvalidStateError(f"workflow {workflow_id} is not active")
        snapshot = workflow.snapshot()

        execution = WorkflowExecution(id=str(uuid.uuid4()), workflow_id=workflow_id)
        recorder = ExecutionRecorder(
            execution,
            listeners=self._listeners,
            on_terminal=self._on_terminal,
        )
        self._store.save_execution(execution)
        self.metrics.record_run_started()

        missing = next(
            (n for n in sorted(snapshot.nodes, key=lambda n: n.id) if n.node_type not in self._registry),
            None,
        )
        if missing is not None:
            error = ConnectorNotFoundError(missing.node_type, missing.id)
            recorder.finish(ExecutionStatus.FAILED, f"Execution failed: {error}", error_message=str(error))
            self.metrics.record_error("connector_not_found")
            raise error

        result = self._validator.validate(snapshot)
        if not result.valid:
            message = "validation failed: " + "; ".join(result.errors)
            recorder.finish(ExecutionStatus.FAILED, f"Execution failed: {message}", error_message=message)
            self.metrics.record_error("validation")
            raise ValidationError(message, result=result, execution_id=execution.id)
        for warning in result.warnings:
            recorder.warn(f"Validation warning: {warning}")

        scheduler = Scheduler(
            self._registry,
            recorder,
            timeout_s=self._settings.resolve_timeout(snapshot.timeout),
            max_parallelism=self._settings.max_parallelism,
            node_timeout_s=self._settings.node_timeout_s,
            poll_interval_s=self._settings.poll_interval_s,
            prune_failed_branches=self._settings.prune_failed_branches,
            sleeper=self._sleeper,
            metrics=self.metrics,
        )
        thread = threading.Thread(
            target=self._run,
            args=(scheduler, recorder, snapshot),
            name=f"workflow-run-{execution.id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._runs[execution.id] = _ActiveRun(recorder, scheduler, thread)
        thread.start()

        logger.info(
            f"Started execution of workflow {workflow_id}",
            extra=with_trace_context(workflow_id=workflow_id, execution_id=execution.id),
        )
        return execution.id

    def _run(self, scheduler: Scheduler, recorder: ExecutionRecorder, workflow: Workflow) -> None:
        try:
            scheduler.run(workflow)
        except Exception as e:
            logger.error(
                f"Scheduler crashed: {e}\n{traceback.format_exc()}",
                extra=with_trace_context(workflow_id=workflow.id, execution_id=recorder.execution_id),
            )
            recorder.finish(
                ExecutionStatus.FAILED,
                f"Execution failed: internal error: {e}",
                error_message=f"internal error: {e}",
            )
            self.metrics.record_error("internal")

    def _on_terminal(self, execution: WorkflowExecution) -> None:
        self._store.save_execution(execution)
        self.metrics.record_run_finished(execution.status.value, execution.duration_ms or 0.0)
        with self._lock:
            self._runs.pop(execution.id, None)

    def _active(self, execution_id: str) -> Optional[_ActiveRun]:
        with self._lock:
            return self._runs.get(execution_id)

    def cancel_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Cancel a running execution.

        Raises:
            ExecutionNotFoundError: if the execution does not exist
            InvalidStateError: if the execution is already terminal
        """
        run = self._active(execution_id)
        if run is None or not run.recorder.finish(
            ExecutionStatus.CANCELLED,
            "Execution cancelled",
            error_message="workflow execution was cancelled",
        ):
            execution = self.get_execution(execution_id)
            raise InvalidStateError(f"execution {execution_id} is already {execution.status.value}")

        run.scheduler.cancel()
        return self.get_execution(execution_id)

    def get_execution(self, execution_id: str) -> WorkflowExecution:
        """
        Get an execution, with partial logs while it is running.

        Raises:
            ExecutionNotFoundError: if the execution does not exist
        """
        run = self._active(execution_id)
        if run is not None:
            return run.recorder.snapshot()
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"execution not found: {execution_id}")
        return execution

    def list_executions(self, workflow_id: Optional[str] = None) -> List[WorkflowExecution]:
        return self._store.list_executions(workflow_id)

    def wait_for_execution(self, execution_id: str, timeout: Optional[float] = None) -> WorkflowExecution:
        """
        Block until an execution is terminal.

        Raises:
            TimeoutError: if it is still running after `timeout` seconds
        """
        run = self._active(execution_id)
        if run is not None and not run.recorder.wait(timeout):
            raise TimeoutError(f"execution {execution_id} still running after {timeout}s")
        return self.get_execution(execution_id)

    def execute(self, workflow_id: str, timeout: Optional[float] = None) -> WorkflowExecution:
        """Start a run and wait for it to finish."""
        return self.wait_for_execution(self.start_execution(workflow_id), timeout)

    def shutdown(self, wait: bool = False) -> None:
        """Cancel every active run."""
        with self._lock:
            runs = list(self._runs.items())
        for execution_id, run in runs:
            try:
                self.cancel_execution(execution_id)
            except InvalidStateError:
                pass
            if wait:
                run.thread.join()


__all__ = ["WorkflowEngine"]
