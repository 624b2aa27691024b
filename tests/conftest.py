"""Pytest configuration and fixtures."""
import os
import threading

import pytest

# Set test environment variables
os.environ["WORKFLOW_ENGINE_ENV"] = "test"
os.environ["WORKFLOW_ENGINE_LOG_FORMAT"] = "text"

from workflow_engine.config import Settings, reset_settings
from workflow_engine.connectors import Connector, ConnectorRegistry, reset_global_registry
from workflow_engine.engine import WorkflowEngine
from workflow_engine.models import NodeKind, parse_workflow
from workflow_engine.schema import DataEnvelope, DataSchema
from workflow_engine.store import InMemoryRecordStore


PEOPLE = [
    {"id": 1, "name": "ada"},
    {"id": 2, "name": "grace"},
]


@pytest.fixture(autouse=True)
def _reset_globals():
    """Reset process-wide singletons around every test."""
    reset_settings()
    reset_global_registry()
    yield
    reset_settings()
    reset_global_registry()


@pytest.fixture
def sink():
    """Inputs received by destination nodes: node id -> list of input lists."""
    return {}


@pytest.fixture
def calls():
    """Attempt counter per node id, shared by the test connectors."""
    return {}


@pytest.fixture
def connectors(sink, calls):
    """A small set of connectors covering every kind."""
    lock = threading.Lock()

    def count(ctx):
        with lock:
            calls[ctx.node_id] = calls.get(ctx.node_id, 0) + 1

    def read_people(inputs, config, ctx):
        count(ctx)
        return DataEnvelope.from_records(
            config.get("records", PEOPLE),
            DataSchema.of(("id", "integer"), ("name", "string")),
        )

    def read_raw(inputs, config, ctx):
        count(ctx)
        return [dict(r) for r in config.get("records", PEOPLE)]

    def upper(inputs, config, ctx):
        count(ctx)
        records = []
        for envelope in inputs:
            for record in envelope.records:
                records.append({**record, "name": record["name"].upper()})
        return DataEnvelope.from_records(records, inputs[0].data_schema)

    def passthrough(inputs, config, ctx):
        count(ctx)
        return [r for envelope in inputs for r in envelope.records]

    def explode(inputs, config, ctx):
        count(ctx)
        raise RuntimeError("boom")

    def collect(inputs, config, ctx):
        count(ctx)
        with lock:
            sink.setdefault(ctx.node_id, []).append(inputs)
        ctx.diagnostics["written"] = sum(len(e.records) for e in inputs)
        return DataEnvelope()

    people_schema = DataSchema.of(("id", "integer"), ("name", "string"))

    return [
        Connector(
            node_type="people",
            kind=NodeKind.SOURCE,
            execute=read_people,
            config_schema={
                "type": "object",
                "properties": {"records": {"type": "array", "items": {"type": "object"}}},
            },
            output_schema=lambda config, inputs: people_schema,
            description="Static list of people",
        ),
        Connector(node_type="raw", kind=NodeKind.SOURCE, execute=read_raw),
        Connector(
            node_type="upper",
            kind=NodeKind.PROCESSOR,
            execute=upper,
            input_schema=lambda config: DataSchema.of(("name", "string")),
            output_schema=lambda config, inputs: inputs[0] if inputs else None,
        ),
        Connector(node_type="passthrough", kind=NodeKind.PROCESSOR, execute=passthrough),
        Connector(node_type="explode", kind=NodeKind.PROCESSOR, execute=explode),
        Connector(node_type="collect", kind=NodeKind.DESTINATION, execute=collect),
    ]


@pytest.fixture
def registry(connectors):
    return ConnectorRegistry(connectors)


@pytest.fixture
def make_workflow():
    """
    Build a workflow from compact node and edge lists.

    nodes: [(id, kind, node_type), ...] or (id, kind, node_type, config)
    edges: [(source_id, target_id), ...]
    """

    def factory(nodes, edges, workflow_id="wf-1", **fields):
        data = {
            "id": workflow_id,
            "name": fields.pop("name", "Test workflow"),
            "nodes": [
                {
                    "id": node[0],
                    "type": node[1],
                    "node_type": node[2],
                    "label": node[0],
                    "config": node[3] if len(node) > 3 else {},
                }
                for node in nodes
            ],
            "connections": [
                {"source_id": source, "target_id": target} for source, target in edges
            ],
            **fields,
        }
        return parse_workflow(data)

    return factory


@pytest.fixture
def pipeline(make_workflow):
    """A(source) -> B(processor) -> C(destination)."""
    return make_workflow(
        [("A", "source", "people"), ("B", "processor", "upper"), ("C", "destination", "collect")],
        [("A", "B"), ("B", "C")],
    )


@pytest.fixture
def diamond(make_workflow):
    """A -> B, A -> C, B -> D, C -> D."""
    return make_workflow(
        [
            ("A", "source", "people"),
            ("B", "processor", "upper"),
            ("C", "processor", "passthrough"),
            ("D", "destination", "collect"),
        ],
        [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")],
    )


@pytest.fixture
def settings():
    return Settings(poll_interval_s=0.01, max_parallelism=4, default_timeout_s=30)


@pytest.fixture
def delays():
    """Retry delays requested by the scheduler."""
    return []


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def engine(store, registry, settings, delays):
    """Engine whose retry waits are recorded instead of slept."""

    def sleeper(cancel_event, seconds):
        delays.append(seconds)
        return cancel_event.is_set()

    engine = WorkflowEngine(store, registry, settings=settings, sleeper=sleeper)
    yield engine
    engine.shutdown()
