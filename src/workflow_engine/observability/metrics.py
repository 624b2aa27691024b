"""Prometheus metrics for workflow runs and node executions."""
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from pydantic import BaseModel, Field

# Run duration buckets in seconds
DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 300, 900, 3600)


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the engine counters."""

    runs_started: int = 0
    runs_completed: int = 0
    runs_failed: int = 0
    runs_cancelled: int = 0
    active_runs: int = 0
    total_duration_ms: float = 0.0
    average_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    node_executions: dict[str, int] = Field(default_factory=dict)
    node_failures: dict[str, int] = Field(default_factory=dict)
    error_counts: dict[str, int] = Field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        finished = self.runs_completed + self.runs_failed + self.runs_cancelled
        if finished == 0:
            return 0.0
        return self.runs_completed / finished


def _counts_by_label(counter: Counter, label: str) -> dict[str, int]:
    counts = {}
    for family in counter.collect():
        for sample in family.samples:
            if sample.name.endswith("_total"):
                counts[sample.labels[label]] = int(sample.value)
    return counts


class WorkflowMetrics:
    """
    Collectors shared by every run of one engine.

    Each instance owns its CollectorRegistry, so several engines in one
    process do not clash on metric names.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        # Run metrics
        self.runs_started = Counter(
            "workflow_engine_runs_started_total", "Workflow runs started", registry=self.registry
        )
        self.runs = Counter(
            "workflow_engine_runs_total", "Finished workflow runs", ["status"], registry=self.registry
        )
        self.active_runs = Gauge(
            "workflow_engine_active_runs", "Workflow runs in progress", registry=self.registry
        )
        self.run_duration = Histogram(
            "workflow_engine_run_duration_seconds",
            "Workflow run duration",
            buckets=DURATION_BUCKETS,
            registry=self.registry,
        )

        # Node metrics
        self.node_executions = Counter(
            "workflow_engine_node_executions_total",
            "Node execution attempts",
            ["node_type"],
            registry=self.registry,
        )
        self.node_failures = Counter(
            "workflow_engine_node_failures_total",
            "Failed node execution attempts",
            ["node_type"],
            registry=self.registry,
        )
        self.errors = Counter(
            "workflow_engine_errors_total", "Run-level errors", ["kind"], registry=self.registry
        )

    def record_run_started(self) -> None:
        self.runs_started.inc()
        self.active_runs.inc()

    def record_run_finished(self, status: str, duration_ms: float) -> None:
        """Record a terminal run outcome ("completed", "failed" or "cancelled")."""
        self.runs.labels(status=status).inc()
        self.active_runs.dec()
        self.run_duration.observe(duration_ms / 1000)

    def record_node_execution(self, node_type: str, success: bool) -> None:
        self.node_executions.labels(node_type=node_type).inc()
        if not success:
            self.node_failures.labels(node_type=node_type).inc()

    def record_error(self, kind: str) -> None:
        self.errors.labels(kind=kind).inc()

    def render(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)

    def _durations(self) -> tuple[float, float, float]:
        """(count, sum in seconds, p95 bucket bound in seconds) of run durations."""
        count = total = 0.0
        buckets = []
        for family in self.run_duration.collect():
            for sample in family.samples:
                if sample.name.endswith("_count"):
                    count = sample.value
                elif sample.name.endswith("_sum"):
                    total = sample.value
                elif sample.name.endswith("_bucket"):
                    buckets.append((float(sample.labels["le"]), sample.value))

        p95 = 0.0
        if count:
            rank = count * 0.95
            finite = [bound for bound, _ in buckets if bound != float("inf")]
            p95 = finite[-1]
            for bound, cumulative in sorted(buckets):
                if cumulative >= rank:
                    p95 = min(bound, finite[-1])
                    break
        return count, total, p95

    def snapshot(self) -> MetricsSnapshot:
        """
        Read the collectors into a MetricsSnapshot.

        p95_duration_ms is the upper bound of the histogram bucket holding
        the 95th percentile run.
        """
        runs = _counts_by_label(self.runs, "status")
        count, total, p95 = self._durations()
        return MetricsSnapshot(
            runs_started=int(self.registry.get_sample_value("workflow_engine_runs_started_total") or 0),
            runs_completed=runs.get("completed", 0),
            runs_failed=runs.get("failed", 0),
            runs_cancelled=runs.get("cancelled", 0),
            active_runs=int(self.registry.get_sample_value("workflow_engine_active_runs") or 0),
            total_duration_ms=total * 1000,
            average_duration_ms=total * 1000 / count if count else 0.0,
            p95_duration_ms=p95 * 1000,
            node_executions=_counts_by_label(self.node_executions, "node_type"),
            node_failures=_counts_by_label(self.node_failures, "node_type"),
            error_counts=_counts_by_label(self.errors, "kind"),
        )
