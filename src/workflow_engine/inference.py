"""
Schema inference and fan-in merging.

Connectors that return raw records without a schema get one inferred from
the data. Processors with several inputs can merge envelopes or schemas;
field names produced by more than one upstream node are prefixed with the
producing node's label.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from workflow_engine.schema import DataEnvelope, DataSchema, FieldDefinition, FieldType, NodeMetadata


LABEL_PREFIX_LENGTH = 10


def infer_field_type(value: Any) -> Optional[FieldType]:
    """Map a Python value to a FieldType. Returns None for null."""
    if value is None:
        return None
    # bool is a subclass of int
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, int):
        return FieldType.INTEGER
    if isinstance(value, float):
        return FieldType.NUMBER
    if isinstance(value, (list, tuple, dict)):
        return FieldType.JSON
    return FieldType.STRING


def _combine(current: Optional[FieldType], seen: FieldType) -> FieldType:
    if current is None or current == seen:
        return seen
    if {current, seen} == {FieldType.INTEGER, FieldType.NUMBER}:
        return FieldType.NUMBER
    return FieldType.JSON


def infer_schema(records: Sequence[Mapping[str, Any]], source_node: str = "") -> DataSchema:
    """
    Infer a schema from records.

    Fields keep the order of their first appearance. A field is nullable when
    any record holds None for it or omits it.
    """
    types: Dict[str, Optional[FieldType]] = {}
    nullable: Dict[str, bool] = {}
    seen_in: Dict[str, int] = {}

    for record in records:
        for name, value in record.items():
            if name not in types:
                types[name] = None
                nullable[name] = False
                seen_in[name] = 0
            seen_in[name] += 1
            value_type = infer_field_type(value)
            if value_type is None:
                nullable[name] = True
            else:
                types[name] = _combine(types[name], value_type)

    fields = [
        FieldDefinition(
            name=name,
            type=field_type or FieldType.STRING,
            nullable=nullable[name] or seen_in[name] < len(records),
            source_node=source_node,
        )
        for name, field_type in types.items()
    ]
    return DataSchema(fields=fields, source_nodes=[source_node] if source_node else [])


def node_label_prefix(node_id: str, labels: Optional[Mapping[str, str]] = None) -> str:
    """Short, lowercase prefix for a node, from its label or its id."""
    label = (labels or {}).get(node_id)
    if label:
        return label.replace(" ", "_").lower()[:LABEL_PREFIX_LENGTH]
    return node_id[:8]


def _conflicting_names(field_lists: Iterable[List[FieldDefinition]]) -> set:
    counts: Dict[str, int] = {}
    for fields in field_lists:
        for f in fields:
            counts[f.name] = counts.get(f.name, 0) + 1
    return {name for name, count in counts.items() if count > 1}


def _merge_fields(
    owned: List[tuple],
    labels: Optional[Mapping[str, str]],
    prefix_by_owner: bool = False,
) -> List[FieldDefinition]:
    """
    Merge (owner node id, fields) pairs, prefixing conflicting names.

    The prefix comes from each field's source node, or from the owner when
    prefix_by_owner is set.
    """
    conflicts = _conflicting_names(fields for _, fields in owned)
    merged: List[FieldDefinition] = []
    added = set()
    for owner, fields in owned:
        for f in fields:
            source = f.source_node or owner
            prefix_node = owner if prefix_by_owner and owner else source
            name = f.name
            if name in conflicts and prefix_node:
                name = f"{node_label_prefix(prefix_node, labels)}_{f.name}"
            key = (name, prefix_node)
            if key in added:
                continue
            added.add(key)
            merged.append(f.model_copy(update={"name": name, "source_node": source}))
    return merged


def merge_schemas(
    schemas: Sequence[DataSchema],
    labels: Optional[Mapping[str, str]] = None,
) -> DataSchema:
    """Merge several schemas into one, prefixing conflicting field names."""
    if not schemas:
        return DataSchema()
    if len(schemas) == 1:
        return schemas[0].model_copy(deep=True)

    source_nodes: List[str] = []
    for schema in schemas:
        for node_id in schema.source_nodes:
            if node_id not in source_nodes:
                source_nodes.append(node_id)

    fields = _merge_fields([("", s.fields) for s in schemas], labels)
    return DataSchema(fields=fields, source_nodes=source_nodes)


def merge_envelopes(
    envelopes: Sequence[DataEnvelope],
    labels: Optional[Mapping[str, str]] = None,
) -> DataEnvelope:
    """
    Merge several input envelopes into one.

    Records are concatenated in input order. Sources are the union of the
    inputs' node ids and their own sources. Custom diagnostics under the same
    key are collected into a list.
    """
    if not envelopes:
        return DataEnvelope()

    sources: List[str] = []
    for env in envelopes:
        for node_id in [env.metadata.node_id, *env.metadata.sources]:
            if node_id and node_id not in sources:
                sources.append(node_id)

    fields = _merge_fields(
        [(env.metadata.node_id, env.data_schema.fields) for env in envelopes],
        labels,
        prefix_by_owner=True,
    )

    records: List[Dict[str, Any]] = []
    custom: Dict[str, Any] = {}
    for env in envelopes:
        records.extend(env.records)
        for key, value in env.metadata.custom.items():
            if key not in custom:
                custom[key] = value
            elif isinstance(custom[key], list):
                custom[key] = [*custom[key], value]
            else:
                custom[key] = [custom[key], value]

    return DataEnvelope(
        records=records,
        metadata=NodeMetadata(
            data_schema=DataSchema(fields=fields, source_nodes=list(sources)),
            record_count=len(records),
            sources=sources,
            custom=custom,
        ),
    )


__all__ = [
    "infer_field_type",
    "infer_schema",
    "merge_envelopes",
    "merge_schemas",
    "node_label_prefix",
]
