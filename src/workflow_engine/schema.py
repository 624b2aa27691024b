"""
Schema Model - typed field descriptors and data envelopes.

Provides:
- FieldType / FieldDefinition / DataSchema: what a node produces or requires
- NodeMetadata: provenance stamped on every envelope
- DataEnvelope: records flowing along an edge at run time
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    """Logical type of a record field."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    JSON = "json"


class FieldDefinition(BaseModel):
    """A named, typed field tagged with the node that produces it."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Field name")
    type: FieldType = Field(FieldType.STRING, description="Logical field type")
    nullable: bool = Field(False, description="Field may be null or absent")
    source_node: str = Field("", alias="sourceNode", description="Producing node id")
    description: str = Field("", description="Human readable description")


class DataSchema(BaseModel):
    """Ordered list of fields produced or required by a node."""
    model_config = ConfigDict(populate_by_name=True)

    fields: List[FieldDefinition] = Field(default_factory=list)
    source_nodes: List[str] = Field(default_factory=list, alias="sourceNodes")

    @classmethod
    def of(cls, *fields: FieldDefinition | tuple, source_node: str = "") -> "DataSchema":
        """
        Build a schema from FieldDefinitions or (name, type[, nullable]) tuples.

        Example:
            DataSchema.of(("id", "integer"), ("email", "string", True))
        """
        built = []
        for item in fields:
            if isinstance(item, FieldDefinition):
                built.append(item)
                continue
            name, type_, *rest = item
            built.append(
                FieldDefinition(
                    name=name,
                    type=FieldType(type_),
                    nullable=bool(rest[0]) if rest else False,
                    source_node=source_node,
                )
            )
        return cls(fields=built, source_nodes=[source_node] if source_node else [])

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def is_empty(self) -> bool:
        return not self.fields

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class NodeMetadata(BaseModel):
    """Provenance of an envelope."""
    model_config = ConfigDict(populate_by_name=True)

    node_id: str = Field("", alias="nodeId")
    node_type: str = Field("", alias="nodeType")
    data_schema: DataSchema = Field(default_factory=DataSchema, alias="schema")
    record_count: int = Field(0, alias="recordCount")
    execution_time_ms: float = Field(0, alias="executionTimeMs")
    sources: List[str] = Field(default_factory=list, description="Upstream node ids")
    custom: Dict[str, Any] = Field(default_factory=dict, description="Connector diagnostics")


class DataEnvelope(BaseModel):
    """A node's output: records plus metadata describing them."""
    model_config = ConfigDict(populate_by_name=True)

    records: List[Dict[str, Any]] = Field(default_factory=list, alias="data")
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        schema: Optional[DataSchema] = None,
    ) -> "DataEnvelope":
        records = list(records)
        return cls(
            records=records,
            metadata=NodeMetadata(
                data_schema=schema or DataSchema(),
                record_count=len(records),
            ),
        )

    @property
    def data_schema(self) -> DataSchema:
        return self.metadata.data_schema


__all__ = [
    "FieldType",
    "FieldDefinition",
    "DataSchema",
    "NodeMetadata",
    "DataEnvelope",
]
