"""
Workflow Validator - static pre-flight check of a workflow graph.

Checks run in a fixed order and accumulate every finding:
1. Structural: DAG-ness, endpoint integrity, role/position consistency
2. Registry: connector registered, kind matches role, config accepted
3. Schema: every edge checked against static schemas where known
4. Orphans: nodes without a path from a source or to a destination

Findings are emitted in node id / (source, target, id) order so repeated
calls on the same graph return identical results.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Set

from workflow_engine.compatibility import is_compatible
from workflow_engine.connectors import Connector, ConnectorRegistry
from workflow_engine.graph import WorkflowGraph
from workflow_engine.models import NodeKind, Workflow, WorkflowConnection
from workflow_engine.schema import DataSchema
from workflow_engine.schema_cache import SchemaCache, SchemaResolver
from workflow_engine.validation import ValidationResult
from workflow_engine.observability import get_logger


logger = get_logger(__name__)


def _sorted_connections(workflow: Workflow) -> List[WorkflowConnection]:
    return sorted(workflow.connections, key=lambda c: (c.source_id, c.target_id, c.id))


class WorkflowValidator:
    """
    Validates workflows against a connector registry.

    Usage:
        validator = WorkflowValidator(registry)
        result = validator.validate(workflow)
        if not result.valid:
            print(result.errors)
    """

    def __init__(self, registry: ConnectorRegistry, schema_cache: Optional[SchemaCache] = None):
        self._registry = registry
        self._resolver = SchemaResolver(registry, schema_cache)

    def validate(self, workflow: Workflow) -> ValidationResult:
        result = ValidationResult()
        if not workflow.nodes:
            result.error("workflow has no nodes")
            return result

        graph = WorkflowGraph(workflow)
        is_dag = self._check_structure(workflow, graph, result)
        configs_ok = self._check_registry(graph, result)
        if is_dag and configs_ok:
            self._check_schemas(workflow, graph, result)
        self._check_orphans(graph, result)

        if result.errors:
            logger.debug(
                f"Workflow {workflow.id} invalid: {len(result.errors)} errors, "
                f"{len(result.warnings)} warnings"
            )
        return result

    # ------------------------------------------------------------------
    # 1. Structure
    # ------------------------------------------------------------------

    def _check_structure(self, workflow: Workflow, graph: WorkflowGraph, result: ValidationResult) -> bool:
        node_counts = Counter(node.id for node in workflow.nodes)
        for node_id in sorted(n for n, count in node_counts.items() if count > 1):
            result.error(f"duplicate node id: {node_id}")

        for node_id in graph.node_ids:
            node = graph.get_node(node_id)
            if node.workflow_id and node.workflow_id != workflow.id:
                result.error(f"node {node_id} belongs to workflow {node.workflow_id}")

        conn_counts = Counter(conn.id for conn in workflow.connections if conn.id)
        for conn_id in sorted(c for c, count in conn_counts.items() if count > 1):
            result.error(f"duplicate connection id: {conn_id}")

        seen_pairs: Set[tuple] = set()
        for conn in _sorted_connections(workflow):
            label = conn.id or f"{conn.source_id}->{conn.target_id}"
            if conn.workflow_id and conn.workflow_id != workflow.id:
                result.error(f"connection {label} belongs to workflow {conn.workflow_id}")
            for endpoint in (conn.source_id, conn.target_id):
                if endpoint not in graph:
                    result.error(f"connection {label} references unknown node: {endpoint}")
            if conn.source_id == conn.target_id:
                result.error(f"connection {label} is a self-loop on node {conn.source_id}")
            pair = (conn.source_id, conn.target_id)
            if pair in seen_pairs:
                result.warn(f"duplicate connection from {conn.source_id} to {conn.target_id}")
            seen_pairs.add(pair)

        cyclic = graph.detect_cycles()
        if cyclic:
            result.error(f"workflow contains a cycle involving nodes: {', '.join(sorted(cyclic))}")

        if not graph.sources():
            result.error("workflow must have at least one source node")
        if not graph.destinations():
            result.error("workflow must have at least one destination node")

        for node_id in graph.node_ids:
            node = graph.get_node(node_id)
            has_inbound = bool(graph.predecessors(node_id))
            has_outbound = bool(graph.successors(node_id))
            if node.type == NodeKind.SOURCE and has_inbound:
                result.error(f"source node {node_id} cannot have incoming connections")
            if node.type == NodeKind.DESTINATION and has_outbound:
                result.error(f"destination node {node_id} cannot have outgoing connections")
            if node.type != NodeKind.SOURCE and not has_inbound:
                result.error(f"{node.type.value} node {node_id} has no incoming connections")
            if node.type != NodeKind.DESTINATION and not has_outbound:
                result.error(f"{node.type.value} node {node_id} has no outgoing connections")

        return not cyclic

    # ------------------------------------------------------------------
    # 2. Registry
    # ------------------------------------------------------------------

    def _check_registry(self, graph: WorkflowGraph, result: ValidationResult) -> bool:
        ok = True
        for node_id in graph.node_ids:
            node = graph.get_node(node_id)
            if not node.node_type:
                result.error(f"node {node_id} has no connector type")
                ok = False
                continue

            connector = self._registry.get(node.node_type)
            if connector is None:
                result.error(f"node {node_id} uses unknown connector type: {node.node_type}")
                ok = False
                continue

            if connector.kind != node.type:
                result.error(
                    f"node {node_id} is a {node.type.value} but connector "
                    f"{node.node_type} is a {connector.kind.value}"
                )
                ok = False

            config_result = connector.validate_config(node.config)
            if not config_result.valid:
                ok = False
            result.extend(config_result, prefix=f"node {node_id}: ")
        return ok

    # ------------------------------------------------------------------
    # 3. Schemas
    # ------------------------------------------------------------------

    def _check_schemas(self, workflow: Workflow, graph: WorkflowGraph, result: ValidationResult) -> None:
        static = self.resolve_schemas(graph)

        for node_id in graph.node_ids:
            if static[node_id] is None and graph.successors(node_id):
                result.warn(f"node {node_id}: output schema unknown until run")

        checked: Set[tuple] = set()
        for conn in _sorted_connections(workflow):
            pair = (conn.source_id, conn.target_id)
            if pair in checked or conn.source_id not in graph or conn.target_id not in graph:
                continue
            checked.add(pair)

            producer = static.get(conn.source_id)
            consumer: Connector = self._registry.require(graph.get_node(conn.target_id).node_type)
            requirements = consumer.required_input(graph.get_node(conn.target_id).config)
            if producer is None or requirements is None:
                continue

            compat = is_compatible(producer, requirements)
            edge = f"connection {conn.source_id} -> {conn.target_id}"
            for problem in compat.describe():
                result.error(f"{edge}: {problem}")
            if compat.extra_fields:
                result.warn(f"{edge}: fields not used downstream: {', '.join(compat.extra_fields)}")

    def resolve_schemas(self, graph: WorkflowGraph) -> Dict[str, Optional[DataSchema]]:
        return self._resolver.resolve(graph)

    # ------------------------------------------------------------------
    # 4. Orphans
    # ------------------------------------------------------------------

    def _check_orphans(self, graph: WorkflowGraph, result: ValidationResult) -> None:
        from_sources = graph.reachable_from_sources()
        to_destinations = graph.reaching_destinations()
        for node_id in graph.node_ids:
            if node_id not in from_sources:
                result.warn(f"node {node_id} is not reachable from any source")
            if node_id not in to_destinations:
                result.warn(f"node {node_id} does not lead to any destination")


__all__ = ["WorkflowValidator"]
