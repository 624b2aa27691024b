"""
Workflow Graph - pure queries over a workflow snapshot.

Builds adjacency from a Workflow and answers ordering and reachability
questions. Connections whose endpoints are not nodes of the workflow are
kept aside in dangling_connections and ignored by every query.
"""

from __future__ import annotations

from typing import Dict, List, Set

from workflow_engine.models import NodeKind, Workflow, WorkflowConnection, WorkflowNode



class CycleError(ValueError):
    """Raised by topological_order when the graph is not a DAG."""

    def __init__(self, nodes: Set[str]):
        super().__init__(f"workflow has cycles involving: {sorted(nodes)}")
        self.nodes = nodes


class WorkflowGraph:
    """
    Directed graph view of a workflow.

    Contains:
    - Deduplicated, id-sorted predecessor and successor lists
    - Kahn topological order with ascending-id tie-break
    - Cycle detection returning the participating nodes
    """

    def __init__(self, workflow: Workflow):
        self.workflow_id = workflow.id
        self._nodes: Dict[str, WorkflowNode] = {}
        for node in workflow.nodes:
            # First definition wins; duplicates are a validation error
            self._nodes.setdefault(node.id, node)

        self._successors: Dict[str, Set[str]] = {node_id: set() for node_id in self._nodes}
        self._predecessors: Dict[str, Set[str]] = {node_id: set() for node_id in self._nodes}
        self.dangling_connections: List[WorkflowConnection] = []

        for conn in workflow.connections:
            if conn.source_id not in self._nodes or conn.target_id not in self._nodes:
                self.dangling_connections.append(conn)
                continue
            self._successors[conn.source_id].add(conn.target_id)
            self._predecessors[conn.target_id].add(conn.source_id)

    @property
    def node_ids(self) -> List[str]:
        return sorted(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> WorkflowNode:
        return self._nodes[node_id]

    def predecessors(self, node_id: str) -> List[str]:
        return sorted(self._predecessors.get(node_id, ()))

    def successors(self, node_id: str) -> List[str]:
        return sorted(self._successors.get(node_id, ()))

    def sources(self) -> List[str]:
        return [n for n in self.node_ids if self._nodes[n].type == NodeKind.SOURCE]

    def destinations(self) -> List[str]:
        return [n for n in self.node_ids if self._nodes[n].type == NodeKind.DESTINATION]

    def _kahn(self) -> List[str]:
        in_degree = {node_id: len(preds) for node_id, preds in self._predecessors.items()}
        queue = [node_id for node_id, degree in in_degree.items() if degree == 0]
        order = []

        while queue:
            # Sort for deterministic order
            queue.sort()
            node_id = queue.pop(0)
            order.append(node_id)
            for succ in self._successors[node_id]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    queue.append(succ)
        return order

    def topological_order(self) -> List[str]:
        """
        Node ids in execution order.

        Raises:
            CycleError: if the graph contains a cycle
        """
        order = self._kahn()
        if len(order) != len(self._nodes):
            raise CycleError(self.detect_cycles())
        return order

    def is_dag(self) -> bool:
        return len(self._kahn()) == len(self._nodes)

    def detect_cycles(self) -> Set[str]:
        """
        Ids of every node that lies on a cycle.

        Uses Tarjan's strongly connected components: a node is on a cycle when
        its component has more than one member or it has a self edge.
        """
        index: Dict[str, int] = {}
        lowlink: Dict[str, int] = {}
        on_stack: Set[str] = set()
        stack: List[str] = []
        cyclic: Set[str] = set()
        counter = 0

        for root in self.node_ids:
            if root in index:
                continue
            # Iterative DFS: (node, successors iterator)
            work = [(root, iter(self.successors(root)))]
            index[root] = lowlink[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)

            while work:
                node_id, children = work[-1]
                advanced = False
                for child in children:
                    if child not in index:
                        index[child] = lowlink[child] = counter
                        counter += 1
                        stack.append(child)
                        on_stack.add(child)
                        work.append((child, iter(self.successors(child))))
                        advanced = True
                        break
                    if child in on_stack:
                        lowlink[node_id] = min(lowlink[node_id], index[child])
                if advanced:
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node_id])

                if lowlink[node_id] == index[node_id]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node_id:
                            break
                    if len(component) > 1 or node_id in self._successors[node_id]:
                        cyclic.update(component)

        return cyclic

    def levels(self) -> List[List[str]]:
        """
        Group nodes by depth: a node's level is one more than its deepest predecessor.

        Raises:
            CycleError: if the graph contains a cycle
        """
        depth: Dict[str, int] = {}
        for node_id in self.topological_order():
            preds = self._predecessors[node_id]
            depth[node_id] = max((depth[p] + 1 for p in preds), default=0)

        grouped: List[List[str]] = []
        for node_id in sorted(depth, key=lambda n: (depth[n], n)):
            if depth[node_id] == len(grouped):
                grouped.append([])
            grouped[depth[node_id]].append(node_id)
        return grouped

    def _walk(self, starts: List[str], edges: Dict[str, Set[str]]) -> Set[str]:
        seen: Set[str] = set()
        pending = list(starts)
        while pending:
            node_id = pending.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            pending.extend(edges[node_id] - seen)
        return seen

    def descendants(self, node_id: str) -> Set[str]:
        """Every node reachable from node_id, excluding itself unless on a cycle."""
        return self._walk(list(self._successors.get(node_id, ())), self._successors)

    def reachable_from_sources(self) -> Set[str]:
        return self._walk(self.sources(), self._successors)

    def reaching_destinations(self) -> Set[str]:
        return self._walk(self.destinations(), self._predecessors)


__all__ = [
    "CycleError",
    "WorkflowGraph",
]
