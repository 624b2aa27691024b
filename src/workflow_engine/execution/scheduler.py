"""
Scheduler - concurrent, dependency-ordered execution of one run.

Runs a workflow snapshot on a bounded thread pool:
- A node is submitted once every predecessor's envelope is available
- Ready nodes are submitted in ascending id order
- Failed attempts are retried with linear backoff
- The run-level deadline and cancellation are checked between completions
- Results that arrive after the run became terminal are discarded

The scheduler never writes the record directly; every event goes through
the run's ExecutionRecorder.
"""

from __future__ import annotations

import bisect
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set

from workflow_engine.compatibility import is_compatible
from workflow_engine.connectors import Connector, ConnectorRegistry, RunContext
from workflow_engine.errors import (
    ConnectorContractError,
    ExecutionCancelledError,
    ExecutionTimeoutError,
    NodeExecutionError,
    NodeTimeoutError,
    SchemaMismatchError,
)
from workflow_engine.graph import CycleError, WorkflowGraph
from workflow_engine.inference import infer_schema
from workflow_engine.models import NodeKind, Workflow, WorkflowNode
from workflow_engine.observability import WorkflowMetrics, get_logger
from workflow_engine.schema import DataEnvelope
from workflow_engine.execution.models import ExecutionStatus, NodeEvent
from workflow_engine.execution.recorder import ExecutionRecorder
from workflow_engine.execution.retry import RetryPolicy, Sleeper, interruptible_sleep, run_with_timeout


logger = get_logger(__name__)


class Scheduler:
    """
    Executes one run. Create one Scheduler per WorkflowExecution.

    Usage:
        scheduler = Scheduler(registry, recorder, timeout_s=60)
        scheduler.run(workflow.snapshot())   # blocks until terminal
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        recorder: ExecutionRecorder,
        *,
        timeout_s: float,
        max_parallelism: int = 10,
        node_timeout_s: Optional[float] = None,
        poll_interval_s: float = 0.05,
        prune_failed_branches: bool = False,
        sleeper: Sleeper = interruptible_sleep,
        metrics: Optional[WorkflowMetrics] = None,
    ):
        if max_parallelism < 1:
            raise ValueError("max_parallelism must be at least 1")
        self._registry = registry
        self._recorder = recorder
        self._timeout_s = timeout_s
        self._max_parallelism = max_parallelism
        self._node_timeout_s = node_timeout_s
        self._poll_interval_s = poll_interval_s
        self._prune = prune_failed_branches
        self._sleeper = sleeper
        self._metrics = metrics
        self._cancel_event = threading.Event()
        self._deadline: Optional[float] = None

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def cancel(self) -> None:
        """Stop launching nodes and signal in-flight ones."""
        self._cancel_event.set()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def run(self, workflow: Workflow) -> None:
        """Execute the workflow until the record reaches a terminal state."""
        graph = WorkflowGraph(workflow)
        try:
            order = graph.topological_order()
        except CycleError as e:
            self._finish_failed(str(e), kind="validation")
            return

        self._deadline = time.monotonic() + self._timeout_s
        policy = RetryPolicy(workflow.max_retries, workflow.retry_delay)
        self._recorder.info(
            f"Execution started: {len(order)} nodes, order: {', '.join(order)}",
            status=ExecutionStatus.RUNNING.value,
        )

        waiting: Dict[str, Set[str]] = {n: set(graph.predecessors(n)) for n in order}
        ready: List[str] = sorted(n for n in order if not waiting[n])
        envelopes: Dict[str, DataEnvelope] = {}
        pruned: Set[str] = set()
        inflight: Dict[Future, str] = {}

        pool = ThreadPoolExecutor(
            max_workers=self._max_parallelism,
            thread_name_prefix=f"wf-{self._recorder.execution_id[:8]}",
        )
        try:
            while not self._recorder.is_terminal and not self._cancel_event.is_set():
                if time.monotonic() >= self._deadline:
                    self._time_out()
                    break

                while ready and len(inflight) < self._max_parallelism:
                    node_id = ready.pop(0)
                    inputs = [envelopes[p].model_copy(deep=True) for p in graph.predecessors(node_id)]
                    future = pool.submit(
                        self._run_node, graph.get_node(node_id), inputs, policy, workflow.config
                    )
                    inflight[future] = node_id

                if not inflight:
                    break

                remaining = max(0.0, self._deadline - time.monotonic())
                done, _ = wait(
                    list(inflight),
                    timeout=min(self._poll_interval_s, remaining),
                    return_when=FIRST_COMPLETED,
                )

                for future in sorted(done, key=lambda f: inflight[f]):
                    node_id = inflight.pop(future)
                    if self._recorder.is_terminal:
                        continue
                    try:
                        envelope = future.result()
                    except (ExecutionCancelledError, ExecutionTimeoutError):
                        continue
                    except NodeExecutionError as e:
                        if self._prune_branch(graph, node_id, pruned):
                            continue
                        self._finish_failed(str(e), kind="node_execution")
                        break
                    except Exception as e:
                        logger.exception(f"Node {node_id} raised outside its retry loop")
                        self._finish_failed(f"node {node_id} failed: {e}", kind="internal")
                        break

                    envelopes[node_id] = envelope
                    for succ in graph.successors(node_id):
                        waiting[succ].discard(node_id)
                        if not waiting[succ] and succ not in pruned:
                            bisect.insort(ready, succ)

            if not self._recorder.is_terminal and not self._cancel_event.is_set():
                self._complete(graph, order, envelopes, pruned)
        finally:
            if inflight:
                self._cancel_event.set()
            pool.shutdown(wait=False, cancel_futures=True)

    def _complete(
        self,
        graph: WorkflowGraph,
        order: List[str],
        envelopes: Dict[str, DataEnvelope],
        pruned: Set[str],
    ) -> None:
        stalled = [n for n in order if n not in envelopes and n not in pruned]
        if stalled:
            self._finish_failed(f"nodes never became ready: {', '.join(stalled)}", kind="stalled")
            return

        results = {
            dest: envelopes[dest].model_dump(mode="json", by_alias=True)
            for dest in graph.destinations()
            if dest in envelopes
        }
        self._recorder.finish(
            ExecutionStatus.COMPLETED,
            f"Execution completed: {len(envelopes)} nodes succeeded"
            + (f", {len(pruned)} pruned" if pruned else ""),
            results=results,
        )

    def _time_out(self) -> None:
        message = f"workflow execution timed out after {self._timeout_s:g}s"
        if self._recorder.finish(ExecutionStatus.FAILED, f"Execution failed: {message}", error_message=message):
            self._record_error("timeout")
        self._cancel_event.set()

    def _finish_failed(self, message: str, kind: str) -> None:
        if self._recorder.finish(ExecutionStatus.FAILED, f"Execution failed: {message}", error_message=message):
            self._record_error(kind)
        self._cancel_event.set()

    def _prune_branch(self, graph: WorkflowGraph, node_id: str, pruned: Set[str]) -> bool:
        """
        Skip a failed processor's branch when none of it leads to a destination.

        Sources, destinations and processors feeding a destination always
        fail the run.
        """
        if not self._prune or graph.get_node(node_id).type != NodeKind.PROCESSOR:
            return False
        downstream = graph.descendants(node_id)
        live = graph.reaching_destinations()
        if node_id in live or downstream & live:
            return False

        pruned.update(downstream | {node_id})
        skipped = sorted(downstream)
        self._recorder.warn(
            f"Pruned branch after node {node_id} failed; skipped: {', '.join(skipped) or 'none'}",
            node_id=node_id,
            status=NodeEvent.PRUNED.value,
        )
        return True

    def _record_error(self, kind: str) -> None:
        if self._metrics is not None:
            self._metrics.record_error(kind)

    # ------------------------------------------------------------------
    # Node execution (worker threads)
    # ------------------------------------------------------------------

    def _run_node(
        self,
        node: WorkflowNode,
        inputs: List[DataEnvelope],
        policy: RetryPolicy,
        workflow_config: Dict[str, Any],
    ) -> DataEnvelope:
        connector = self._registry.require(node.node_type, node.id)
        log_fields = {"node_id": node.id, "node_type": node.type.value, "connector": node.node_type}

        try:
            self._check_inputs(node, connector, inputs)
        except SchemaMismatchError as e:
            self._give_up(node, e, 0, log_fields)

        attempts = 0
        last_error: Optional[NodeExecutionError] = None
        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1 and self._sleeper(self._cancel_event, policy.delay_before(attempt)):
                raise ExecutionCancelledError(f"node {node.id} cancelled before attempt {attempt}")
            if self._cancel_event.is_set():
                raise ExecutionCancelledError(f"node {node.id} cancelled before attempt {attempt}")

            attempts = attempt
            self._recorder.info(
                f"Executing node {node.display_name} (attempt {attempt}/{policy.max_attempts})",
                status=NodeEvent.RUNNING.value,
                attempt=attempt,
                **log_fields,
            )
            ctx = RunContext(
                execution_id=self._recorder.execution_id,
                workflow_id=self._recorder.workflow_id,
                node_id=node.id,
                attempt=attempt,
                cancel_event=self._cancel_event,
                deadline=self._attempt_deadline(),
                workflow_config=workflow_config,
            )
            started = time.perf_counter()
            try:
                raw = self._call(connector, node, inputs, ctx)
                envelope = self._finalize(node, connector, raw, inputs, started, ctx)
            except ExecutionCancelledError:
                raise
            except ExecutionTimeoutError as e:
                if time.monotonic() >= self._deadline:
                    raise
                error = NodeTimeoutError(node.id, str(e), attempt)
            except NodeExecutionError as e:
                e.attempts = attempt
                error = e
            except Exception as e:
                error = NodeExecutionError(node.id, str(e) or type(e).__name__, attempt)
                error.__cause__ = e
            else:
                self._record_node(node, True)
                self._recorder.info(
                    f"Node {node.display_name} completed with {envelope.metadata.record_count} "
                    f"records in {envelope.metadata.execution_time_ms:.1f}ms",
                    status=NodeEvent.COMPLETED.value,
                    attempt=attempt,
                    **log_fields,
                )
                return envelope

            self._record_node(node, False)
            last_error = error
            if not error.retryable or attempt == policy.max_attempts:
                break
            self._recorder.warn(
                f"Node {node.display_name} attempt {attempt}/{policy.max_attempts} failed: {error}; "
                f"retrying in {policy.delay_before(attempt + 1):g}s",
                status=NodeEvent.RETRYING.value,
                attempt=attempt,
                **log_fields,
            )

        self._give_up(node, last_error, attempts, log_fields)

    def _give_up(
        self,
        node: WorkflowNode,
        error: Optional[NodeExecutionError],
        attempts: int,
        log_fields: Dict[str, Any],
    ) -> None:
        message = f"node {node.id} failed after {attempts} attempt(s): {error}"
        self._recorder.error(
            message,
            status=NodeEvent.FAILED.value,
            attempt=attempts or None,
            **log_fields,
        )
        self._recorder.set_node_error(node.id, str(error))
        raise NodeExecutionError(node.id, message, attempts) from error

    def _attempt_deadline(self) -> Optional[float]:
        if self._node_timeout_s is None:
            return self._deadline
        return min(self._deadline, time.monotonic() + self._node_timeout_s)

    def _call(
        self,
        connector: Connector,
        node: WorkflowNode,
        inputs: List[DataEnvelope],
        ctx: RunContext,
    ) -> Any:
        call_inputs = [] if connector.kind == NodeKind.SOURCE else inputs
        result, timed_out = run_with_timeout(
            connector.execute, self._node_timeout_s, call_inputs, dict(node.config), ctx
        )
        if timed_out:
            raise NodeTimeoutError(node.id, f"attempt timed out after {self._node_timeout_s:g}s")
        return result

    def _check_inputs(
        self,
        node: WorkflowNode,
        connector: Connector,
        inputs: List[DataEnvelope],
    ) -> None:
        """Re-check each input's run-time schema against the connector's requirements."""
        requirements = connector.required_input(node.config)
        if requirements is None:
            return
        for envelope in inputs:
            if envelope.data_schema.is_empty:
                continue
            compat = is_compatible(envelope.data_schema, requirements)
            if not compat.ok:
                raise SchemaMismatchError(
                    node.id,
                    f"input from {envelope.metadata.node_id} does not match: "
                    + "; ".join(compat.describe()),
                )

    def _finalize(
        self,
        node: WorkflowNode,
        connector: Connector,
        raw: Any,
        inputs: List[DataEnvelope],
        started: float,
        ctx: RunContext,
    ) -> DataEnvelope:
        """Normalize a connector's return value and stamp its metadata."""
        if isinstance(raw, DataEnvelope):
            envelope = raw
        elif isinstance(raw, list) and all(isinstance(r, dict) for r in raw):
            envelope = DataEnvelope.from_records(raw)
        elif raw is None and connector.kind == NodeKind.DESTINATION:
            envelope = DataEnvelope()
        else:
            raise ConnectorContractError(
                node.id,
                f"connector {node.node_type} returned {type(raw).__name__}, "
                "expected a DataEnvelope or a list of records",
            )

        if connector.kind == NodeKind.DESTINATION and envelope.records:
            raise ConnectorContractError(
                node.id,
                f"destination connector {node.node_type} returned {len(envelope.records)} records",
            )

        schema = envelope.data_schema
        if schema.is_empty and envelope.records:
            schema = infer_schema(envelope.records, node.id)
        else:
            schema = schema.model_copy(deep=True)
            for f in schema.fields:
                if not f.source_node:
                    f.source_node = node.id
            if node.id not in schema.source_nodes:
                schema.source_nodes.append(node.id)

        sources: Set[str] = set()
        for upstream in inputs:
            sources.add(upstream.metadata.node_id)
            sources.update(upstream.metadata.sources)
        sources.discard("")

        metadata = envelope.metadata.model_copy(
            update={
                "node_id": node.id,
                "node_type": node.node_type,
                "data_schema": schema,
                "record_count": len(envelope.records),
                "execution_time_ms": (time.perf_counter() - started) * 1000,
                "sources": sorted(sources),
                "custom": {**envelope.metadata.custom, **ctx.diagnostics},
            }
        )
        return DataEnvelope(records=envelope.records, metadata=metadata)

    def _record_node(self, node: WorkflowNode, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_node_execution(node.node_type, success)


__all__ = ["Scheduler"]
