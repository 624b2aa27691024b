"""
Workflow Models - workflow, node and connection records.

A Workflow owns its nodes and connections. Runs work on a deep-copied
snapshot so edits made while a run is active never reach it.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


class NodeKind(str, Enum):
    """Structural role of a node, and the kind of connector that serves it."""
    SOURCE = "source"
    PROCESSOR = "processor"
    DESTINATION = "destination"


class WorkflowNode(BaseModel):
    """A node in a workflow."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Node id (unique within workflow)")
    workflow_id: str = Field("", alias="workflowId", description="Owning workflow id")
    type: NodeKind = Field(..., description="Structural role")
    node_type: str = Field(..., alias="nodeType", description="Connector identifier, e.g. 'http-fetch'")
    label: str = Field("", description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Connector-specific config")

    # Canvas position, not used by execution
    position_x: float = Field(0, alias="positionX")
    position_y: float = Field(0, alias="positionY")

    @property
    def display_name(self) -> str:
        return self.label or self.id


class WorkflowConnection(BaseModel):
    """Directed edge source_id -> target_id."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field("", description="Connection id")
    workflow_id: str = Field("", alias="workflowId")
    source_id: str = Field(..., alias="sourceId")
    target_id: str = Field(..., alias="targetId")


class Workflow(BaseModel):
    """Complete workflow definition."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Workflow id")
    name: str = Field("Unnamed Workflow")
    active: bool = Field(True, description="Inactive workflows are not started")
    config: Dict[str, Any] = Field(default_factory=dict)
    timeout: float = Field(0, description="Whole-run ceiling in seconds, <= 0 uses the default")
    max_retries: int = Field(0, alias="maxRetries", ge=0)
    retry_delay: float = Field(0, alias="retryDelay", ge=0, description="Seconds, scaled by attempt")

    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: List[WorkflowConnection] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def snapshot(self) -> "Workflow":
        """Frozen copy used by a single run."""
        return self.model_copy(deep=True)


def parse_workflow(data: Dict[str, Any]) -> Workflow:
    """
    Parse a workflow dict.

    Nodes and connections without a workflow id inherit the workflow's id.
    Connections without an id get "<source>-><target>".
    """
    workflow = Workflow.model_validate(data)
    for node in workflow.nodes:
        if not node.workflow_id:
            node.workflow_id = workflow.id
    for conn in workflow.connections:
        if not conn.workflow_id:
            conn.workflow_id = workflow.id
        if not conn.id:
            conn.id = f"{conn.source_id}->{conn.target_id}"
    return workflow


def load_workflow(path: str | Path) -> Workflow:
    """Load a workflow from a YAML or JSON file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: workflow file must contain a mapping")
    return parse_workflow(data)


__all__ = [
    "NodeKind",
    "Workflow",
    "WorkflowConnection",
    "WorkflowNode",
    "load_workflow",
    "parse_workflow",
]
