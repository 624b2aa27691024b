"""
Producer/consumer schema compatibility.

A consumer's requirements are satisfied when every required field exists
upstream with an assignable type. Fields the consumer does not mention are
ignored and reported separately as extra_fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from workflow_engine.schema import DataSchema, FieldDefinition, FieldType


# Producer type -> consumer types it widens to
_WIDENING = {
    FieldType.INTEGER: {FieldType.NUMBER},
}


@dataclass
class CompatibilityResult:
    """Outcome of checking one producer schema against one set of requirements."""
    ok: bool = True
    missing_fields: List[str] = field(default_factory=list)
    type_mismatches: List[str] = field(default_factory=list)
    extra_fields: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok

    def describe(self) -> List[str]:
        """Human readable problems, missing fields first."""
        problems = [f"missing field '{name}'" for name in self.missing_fields]
        problems.extend(self.type_mismatches)
        return problems


def is_type_assignable(producer: FieldType, consumer: FieldType) -> bool:
    """Exact match or numeric widening."""
    return producer == consumer or consumer in _WIDENING.get(producer, set())


def is_assignable(producer: FieldDefinition, consumer: FieldDefinition) -> bool:
    if not is_type_assignable(producer.type, consumer.type):
        return False
    # A nullable producer only satisfies a consumer that accepts nulls
    return consumer.nullable or not producer.nullable


def _mismatch(producer: FieldDefinition, consumer: FieldDefinition) -> str:
    if not is_type_assignable(producer.type, consumer.type):
        return (
            f"field '{consumer.name}': expected {consumer.type.value}, "
            f"got {producer.type.value}"
        )
    return f"field '{consumer.name}': nullable upstream but required non-null"


def is_compatible(producer: DataSchema, requirements: DataSchema) -> CompatibilityResult:
    """
    Check that a producer schema satisfies a consumer's requirements.

    Non-nullable consumer fields are required. Nullable consumer fields may be
    absent, but when present upstream their type must still be assignable.

    Args:
        producer: Schema of the upstream envelope
        requirements: Fields the downstream connector needs

    Returns:
        CompatibilityResult with missing fields, type mismatches and extra fields
    """
    result = CompatibilityResult()
    for wanted in requirements.fields:
        offered = producer.get_field(wanted.name)
        if offered is None:
            if not wanted.nullable:
                result.missing_fields.append(wanted.name)
            continue
        if not is_assignable(offered, wanted):
            result.type_mismatches.append(_mismatch(offered, wanted))

    required = set(requirements.field_names)
    result.extra_fields = [name for name in producer.field_names if name not in required]
    result.ok = not result.missing_fields and not result.type_mismatches
    return result


__all__ = [
    "CompatibilityResult",
    "is_assignable",
    "is_compatible",
    "is_type_assignable",
]
