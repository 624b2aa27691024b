"""Tests for the execution recorder and execution records."""
from datetime import datetime, timezone

import pytest

from workflow_engine.errors import InvalidStateError
from workflow_engine.execution import (
    ExecutionRecorder,
    ExecutionStatus,
    LogLevel,
    RetryPolicy,
    WorkflowExecution,
    run_with_timeout,
)


FIXED = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def execution():
    return WorkflowExecution(id="exec-1", workflow_id="wf-1", start_time=FIXED)


class TestExecutionRecorder:
    """Test the single-writer log and the terminal transition."""

    def test_timestamps_strictly_increase(self, execution):
        recorder = ExecutionRecorder(execution, clock=lambda: FIXED)

        for i in range(5):
            recorder.info(f"event {i}")

        stamps = [entry.timestamp for entry in recorder.snapshot().logs]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_entry_fields(self, execution):
        recorder = ExecutionRecorder(execution)

        entry = recorder.warn("retrying", node_id="B", connector="upper", status="retrying", attempt=1)

        assert entry.level == LogLevel.WARN
        assert entry.node_id == "B"
        assert entry.attempt == 1

    def test_finish_freezes_the_record(self, execution):
        terminal = []
        recorder = ExecutionRecorder(execution, on_terminal=terminal.append)
        recorder.info("started")

        assert recorder.finish(ExecutionStatus.COMPLETED, "done", results={"C": {}})
        assert recorder.info("late") is None
        assert not recorder.finish(ExecutionStatus.CANCELLED, "too late")

        final = recorder.snapshot()
        assert final.status == ExecutionStatus.COMPLETED
        assert [e.message for e in final.logs] == ["started", "done"]
        assert final.results == {"C": {}}
        assert final.end_time == final.logs[-1].timestamp
        assert final.duration_ms is not None
        assert len(terminal) == 1
        assert recorder.wait(0)

    def test_failed_finish_logs_error(self, execution):
        recorder = ExecutionRecorder(execution)

        recorder.finish(ExecutionStatus.FAILED, "Execution failed: boom", error_message="boom")

        final = recorder.snapshot()
        assert final.error_message == "boom"
        assert final.logs[-1].level == LogLevel.ERROR
        assert final.logs[-1].status == "failed"

    def test_finish_requires_terminal_status(self, execution):
        with pytest.raises(InvalidStateError):
            ExecutionRecorder(execution).finish(ExecutionStatus.RUNNING, "nope")

    def test_listeners_see_every_entry(self, execution):
        seen = []
        recorder = ExecutionRecorder(execution, listeners=[lambda eid, entry: seen.append((eid, entry.message))])

        recorder.info("one")
        recorder.finish(ExecutionStatus.CANCELLED, "two")

        assert seen == [("exec-1", "one"), ("exec-1", "two")]

    def test_failing_listener_does_not_break_logging(self, execution):
        def broken(eid, entry):
            raise RuntimeError("listener bug")

        recorder = ExecutionRecorder(execution, listeners=[broken])
        recorder.info("still logged")

        assert len(recorder.snapshot().logs) == 1

    def test_snapshot_is_a_copy(self, execution):
        recorder = ExecutionRecorder(execution)
        recorder.info("one")

        snapshot = recorder.snapshot()
        snapshot.logs.clear()

        assert len(recorder.snapshot().logs) == 1


class TestExecutionRecord:
    """Test the persisted record shape."""

    def test_record_round_trip(self, execution):
        recorder = ExecutionRecorder(execution)
        recorder.info("node", node_id="A", status="running", attempt=1)
        recorder.finish(ExecutionStatus.COMPLETED, "done", results={"C": {"data": []}})
        final = recorder.snapshot()

        record = final.to_record()

        assert isinstance(record["logs"], str)
        assert isinstance(record["results"], str)
        assert WorkflowExecution.from_record(record) == final

    def test_node_logs_filter(self, execution):
        recorder = ExecutionRecorder(execution)
        recorder.info("a1", node_id="A", status="running")
        recorder.info("b1", node_id="B", status="running")
        recorder.info("a2", node_id="A", status="completed")

        snapshot = recorder.snapshot()

        assert [e.message for e in snapshot.node_logs("A")] == ["a1", "a2"]
        assert [e.message for e in snapshot.node_logs("A", "running")] == ["a1"]


class TestRetryHelpers:
    """Test retry policy and timeouts."""

    def test_linear_delays(self):
        policy = RetryPolicy(max_retries=3, retry_delay=1.5)

        assert policy.max_attempts == 4
        assert [policy.delay_before(n) for n in range(1, 5)] == [0.0, 1.5, 3.0, 4.5]

    def test_run_with_timeout_returns_result(self):
        assert run_with_timeout(lambda x: x * 2, 1.0, 21) == (42, False)
        assert run_with_timeout(lambda: "direct", None) == ("direct", False)

    def test_run_with_timeout_reraises(self):
        def fail():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_timeout(fail, 1.0)

    def test_run_with_timeout_times_out(self):
        import threading

        release = threading.Event()
        result, timed_out = run_with_timeout(release.wait, 0.05, 5)
        release.set()

        assert timed_out
        assert result is None
