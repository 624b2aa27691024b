"""Tests for the scheduler driven directly, without the engine."""
import threading
import time

import pytest

from workflow_engine.connectors import Connector, ConnectorRegistry
from workflow_engine.execution import (
    ExecutionRecorder,
    ExecutionStatus,
    LogLevel,
    Scheduler,
    WorkflowExecution,
)
from workflow_engine.models import NodeKind
from workflow_engine.observability import WorkflowMetrics
from workflow_engine.schema import DataEnvelope, DataSchema, FieldType


def _run(registry, workflow, **options):
    recorder = ExecutionRecorder(WorkflowExecution(id="exec-test", workflow_id=workflow.id))
    options.setdefault("timeout_s", 10)
    options.setdefault("poll_interval_s", 0.01)
    options.setdefault("sleeper", lambda event, seconds: event.is_set())
    Scheduler(registry, recorder, **options).run(workflow)
    return recorder.snapshot()


class TestEnvelopes:
    """Test envelope normalisation between nodes."""

    def test_raw_records_get_an_inferred_schema(self, registry, make_workflow, sink):
        workflow = make_workflow(
            [("A", "source", "raw"), ("C", "destination", "collect")],
            [("A", "C")],
        )

        execution = _run(registry, workflow)

        assert execution.status == ExecutionStatus.COMPLETED
        (inputs,) = sink["C"]
        envelope = inputs[0]
        assert envelope.metadata.node_id == "A"
        assert envelope.metadata.node_type == "raw"
        assert envelope.metadata.record_count == 2
        assert envelope.data_schema.get_field("id").type == FieldType.INTEGER
        assert envelope.data_schema.get_field("id").source_node == "A"
        assert envelope.metadata.execution_time_ms >= 0

    def test_destination_receipt_in_results(self, registry, pipeline):
        execution = _run(registry, pipeline)

        receipt = DataEnvelope.model_validate(execution.results["C"])
        assert receipt.records == []
        assert receipt.metadata.node_id == "C"
        assert receipt.metadata.sources == ["A", "B"]
        assert receipt.metadata.custom == {"written": 2}

    def test_consumers_get_independent_copies(self, make_workflow, sink):
        def mutate(inputs, config, ctx):
            inputs[0].records.clear()
            return []

        def collect(inputs, config, ctx):
            sink.setdefault(ctx.node_id, []).append(inputs)
            return None

        registry = ConnectorRegistry(
            [
                Connector("rows", NodeKind.SOURCE, lambda i, c, ctx: [{"v": 1}]),
                Connector("mutate", NodeKind.PROCESSOR, mutate),
                Connector("collect", NodeKind.DESTINATION, collect),
            ]
        )
        workflow = make_workflow(
            [("A", "source", "rows"), ("M", "processor", "mutate"), ("Z", "destination", "collect")],
            [("A", "M"), ("A", "Z"), ("M", "Z")],
        )

        _run(registry, workflow)

        from_a = [e for e in sink["Z"][0] if e.metadata.node_id == "A"][0]
        assert from_a.records == [{"v": 1}]

    def test_destination_returning_records_fails_without_retry(self, make_workflow):
        registry = ConnectorRegistry(
            [
                Connector("rows", NodeKind.SOURCE, lambda i, c, ctx: [{"v": 1}]),
                Connector("leaky", NodeKind.DESTINATION, lambda i, c, ctx: [{"v": 1}]),
            ]
        )
        workflow = make_workflow(
            [("A", "source", "rows"), ("Z", "destination", "leaky")],
            [("A", "Z")],
            max_retries=3,
        )

        execution = _run(registry, workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert len(execution.node_logs("Z", "running")) == 1
        assert "destination connector leaky returned 1 records" in execution.error_message

    def test_wrong_return_type_fails(self, make_workflow):
        registry = ConnectorRegistry(
            [
                Connector("odd", NodeKind.SOURCE, lambda i, c, ctx: "not records"),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        workflow = make_workflow([("A", "source", "odd"), ("Z", "destination", "sink")], [("A", "Z")])

        execution = _run(registry, workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert "returned str" in execution.error_message

    def test_runtime_schema_mismatch_is_not_retried(self, registry, make_workflow, calls):
        workflow = make_workflow(
            [
                ("A", "source", "raw", {"records": [{"id": 1, "name": 7}]}),
                ("B", "processor", "upper"),
                ("C", "destination", "collect"),
            ],
            [("A", "B"), ("B", "C")],
            max_retries=2,
        )

        execution = _run(registry, workflow)

        assert execution.status == ExecutionStatus.FAILED
        assert "B" not in calls
        assert execution.node_logs("B", "running") == []
        assert len(execution.node_logs("B", "failed")) == 1
        assert "field 'name': expected string, got integer" in execution.error_message


class TestConcurrency:
    """Test parallelism limits and timeouts."""

    def test_max_parallelism_is_respected(self, make_workflow):
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def slow(inputs, config, ctx):
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.05)
            with lock:
                state["running"] -= 1
            return [r for e in inputs for r in e.records]

        registry = ConnectorRegistry(
            [
                Connector("rows", NodeKind.SOURCE, lambda i, c, ctx: [{"v": 1}]),
                Connector("slow", NodeKind.PROCESSOR, slow),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        branches = ["P1", "P2", "P3", "P4", "P5"]
        workflow = make_workflow(
            [("A", "source", "rows"), ("Z", "destination", "sink")]
            + [(p, "processor", "slow") for p in branches],
            [("A", p) for p in branches] + [(p, "Z") for p in branches],
        )

        execution = _run(registry, workflow, max_parallelism=2)

        assert execution.status == ExecutionStatus.COMPLETED
        assert state["peak"] == 2

    def test_siblings_run_concurrently(self, make_workflow):
        barrier = threading.Barrier(2, timeout=5)

        def meet(inputs, config, ctx):
            barrier.wait()
            return []

        registry = ConnectorRegistry(
            [
                Connector("rows", NodeKind.SOURCE, lambda i, c, ctx: [{"v": 1}]),
                Connector("meet", NodeKind.PROCESSOR, meet),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        workflow = make_workflow(
            [
                ("A", "source", "rows"),
                ("B", "processor", "meet"),
                ("C", "processor", "meet"),
                ("Z", "destination", "sink"),
            ],
            [("A", "B"), ("A", "C"), ("B", "Z"), ("C", "Z")],
        )

        assert _run(registry, workflow).status == ExecutionStatus.COMPLETED

    def test_run_timeout_fails_and_signals_nodes(self, make_workflow):
        observed = threading.Event()

        def wait_for_cancel(inputs, config, ctx):
            if ctx.cancel_event.wait(5):
                observed.set()
            return []

        registry = ConnectorRegistry(
            [
                Connector("hang", NodeKind.SOURCE, wait_for_cancel),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        workflow = make_workflow([("A", "source", "hang"), ("Z", "destination", "sink")], [("A", "Z")])

        execution = _run(registry, workflow, timeout_s=0.2)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message == "workflow execution timed out after 0.2s"
        assert observed.wait(2)
        assert execution.node_logs("Z") == []

    def test_attempt_timeout_is_retried(self, make_workflow):
        release = threading.Event()

        registry = ConnectorRegistry(
            [
                Connector("stuck", NodeKind.SOURCE, lambda i, c, ctx: release.wait(5) and []),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        workflow = make_workflow(
            [("A", "source", "stuck"), ("Z", "destination", "sink")],
            [("A", "Z")],
            max_retries=1,
        )

        try:
            execution = _run(registry, workflow, node_timeout_s=0.05)
        finally:
            release.set()

        assert execution.status == ExecutionStatus.FAILED
        assert len(execution.node_logs("A", "running")) == 2
        assert "attempt timed out after 0.05s" in execution.node_errors["A"]


class TestBranchPruning:
    """Test the optional best-effort policy."""

    @pytest.fixture
    def forked(self, make_workflow):
        """A -> B(explode) -> C, A -> D."""
        return make_workflow(
            [
                ("A", "source", "people"),
                ("B", "processor", "explode"),
                ("C", "destination", "collect"),
                ("D", "destination", "collect"),
            ],
            [("A", "B"), ("B", "C"), ("A", "D")],
        )

    def test_any_failure_fails_the_run_by_default(self, registry, forked):
        execution = _run(registry, forked)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message.startswith("node B failed after 1 attempt(s)")

    def test_branch_feeding_a_destination_still_fails(self, registry, forked, calls):
        execution = _run(registry, forked, prune_failed_branches=True)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.node_logs("B", "pruned") == []
        assert "C" not in calls

    def test_dead_end_branch_is_pruned(self, registry, make_workflow, calls):
        """A -> B(explode) -> E, A -> D: nothing after B reaches a destination."""
        workflow = make_workflow(
            [
                ("A", "source", "people"),
                ("B", "processor", "explode"),
                ("D", "destination", "collect"),
                ("E", "processor", "passthrough"),
            ],
            [("A", "B"), ("B", "E"), ("A", "D")],
        )
        metrics = WorkflowMetrics()

        execution = _run(registry, workflow, prune_failed_branches=True, metrics=metrics)

        assert execution.status == ExecutionStatus.COMPLETED
        assert sorted(execution.results) == ["D"]
        assert "E" not in calls
        (pruned,) = execution.node_logs("B", "pruned")
        assert pruned.level == LogLevel.WARN
        assert "skipped: E" in pruned.message
        assert metrics.snapshot().node_failures == {"explode": 1}

    def test_failed_source_is_never_pruned(self, make_workflow):
        def down(inputs, config, ctx):
            raise ConnectionError("source down")

        registry = ConnectorRegistry(
            [
                Connector("down", NodeKind.SOURCE, down),
                Connector("rows", NodeKind.SOURCE, lambda i, c, ctx: [{"v": 1}]),
                Connector("sink", NodeKind.DESTINATION, lambda i, c, ctx: None),
            ]
        )
        workflow = make_workflow(
            [
                ("A", "source", "down"),
                ("S", "source", "rows"),
                ("Z", "destination", "sink"),
            ],
            [("S", "Z")],
        )

        execution = _run(registry, workflow, prune_failed_branches=True)

        assert execution.status == ExecutionStatus.FAILED
        assert "source down" in execution.error_message

    def test_pruning_never_drops_every_destination(self, registry, pipeline):
        pipeline.nodes[1].node_type = "explode"

        execution = _run(registry, pipeline, prune_failed_branches=True)

        assert execution.status == ExecutionStatus.FAILED

class TestSchemaStamping:
    """Static schemas declared by connectors carry provenance."""

    def test_declared_schema_gets_source_node(self, registry, pipeline, sink):
        _run(registry, pipeline)

        (inputs,) = sink["C"]
        schema: DataSchema = inputs[0].data_schema
        assert schema.field_names == ["id", "name"]
        assert {f.source_node for f in schema.fields} == {"A"}
        assert "B" in schema.source_nodes
        assert [r["name"] for r in inputs[0].records] == ["ADA", "GRACE"]
