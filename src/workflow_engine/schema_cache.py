"""
Static schema resolution and caching.

SchemaResolver walks a DAG in topological order asking each connector for
its static output schema given its upstream schemas. A node with any
unknown upstream schema is unknown itself. Results can be cached per node,
keyed by a lineage hash covering the node's connector, its config and the
lineage of everything upstream.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from workflow_engine.connectors import ConnectorRegistry
from workflow_engine.graph import WorkflowGraph
from workflow_engine.schema import DataSchema
from workflow_engine.observability import get_logger


logger = get_logger(__name__)


class SchemaCacheMetrics(BaseModel):
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    sets: int = 0
    size: int = 0


@dataclass
class _Entry:
    schema: Optional[DataSchema]
    lineage: str
    stored_at: float


class SchemaCache:
    """
    TTL cache of static output schemas keyed by (workflow_id, node_id).

    An entry only matches when its lineage hash equals the caller's, so a
    config change anywhere upstream is a miss even before invalidation.
    """

    def __init__(
        self,
        ttl_s: float = 300,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_s
        self._max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()
        self._metrics = SchemaCacheMetrics()

    def get(self, workflow_id: str, node_id: str, lineage: str) -> Tuple[bool, Optional[DataSchema]]:
        """Return (found, schema). A cached None means the schema is dynamic."""
        with self._lock:
            entry = self._entries.get((workflow_id, node_id))
            if (
                entry is None
                or entry.lineage != lineage
                or self._clock() - entry.stored_at > self._ttl
            ):
                self._metrics.misses += 1
                return False, None
            self._metrics.hits += 1
            schema = entry.schema.model_copy(deep=True) if entry.schema else None
            return True, schema

    def set(self, workflow_id: str, node_id: str, lineage: str, schema: Optional[DataSchema]) -> None:
        with self._lock:
            key = (workflow_id, node_id)
            if key not in self._entries and len(self._entries) >= self._max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].stored_at)
                del self._entries[oldest]
                self._metrics.evictions += 1
            self._entries[key] = _Entry(
                schema=schema.model_copy(deep=True) if schema else None,
                lineage=lineage,
                stored_at=self._clock(),
            )
            self._metrics.sets += 1

    def invalidate_workflow(self, workflow_id: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k[0] == workflow_id]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cached schemas for workflow {workflow_id}")
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def metrics(self) -> SchemaCacheMetrics:
        with self._lock:
            return self._metrics.model_copy(update={"size": len(self._entries)})


def _hash(*parts: object) -> str:
    payload = json.dumps(parts, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class SchemaResolver:
    """Computes static output schemas for every node of a DAG."""

    def __init__(self, registry: ConnectorRegistry, cache: Optional[SchemaCache] = None):
        self._registry = registry
        self._cache = cache

    def resolve(self, graph: WorkflowGraph) -> Dict[str, Optional[DataSchema]]:
        """
        Map node id -> static output schema, None when unknown until run.

        Raises:
            CycleError: if the graph is not a DAG
        """
        schemas: Dict[str, Optional[DataSchema]] = {}
        lineage: Dict[str, str] = {}

        for node_id in graph.topological_order():
            node = graph.get_node(node_id)
            preds = graph.predecessors(node_id)
            lineage[node_id] = _hash(node.node_type, node.config, [lineage[p] for p in preds])

            if self._cache is not None:
                found, cached = self._cache.get(graph.workflow_id, node_id, lineage[node_id])
                if found:
                    schemas[node_id] = cached
                    continue

            schemas[node_id] = self._resolve_node(node_id, graph, schemas)
            if self._cache is not None:
                self._cache.set(graph.workflow_id, node_id, lineage[node_id], schemas[node_id])

        return schemas

    def _resolve_node(
        self,
        node_id: str,
        graph: WorkflowGraph,
        schemas: Dict[str, Optional[DataSchema]],
    ) -> Optional[DataSchema]:
        node = graph.get_node(node_id)
        connector = self._registry.get(node.node_type)
        if connector is None:
            return None

        upstream: List[DataSchema] = []
        for pred in graph.predecessors(node_id):
            if schemas.get(pred) is None:
                return None
            upstream.append(schemas[pred])

        schema = connector.static_output(node.config, upstream)
        if schema is None:
            return None
        schema = schema.model_copy(deep=True)
        for f in schema.fields:
            if not f.source_node:
                f.source_node = node_id
        if node_id not in schema.source_nodes:
            schema.source_nodes.append(node_id)
        return schema


__all__ = [
    "SchemaCache",
    "SchemaCacheMetrics",
    "SchemaResolver",
]
