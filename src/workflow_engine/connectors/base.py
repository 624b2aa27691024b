"""
Connector descriptor and run context.

A Connector is a tagged capability record, not a base class: the registry
maps node_type to one descriptor whose `kind` tells the engine which arity
convention applies.
- source: receives no inputs and produces records from external state
- processor: receives one or more input envelopes
- destination: consumes inputs and returns an envelope with zero records
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import jsonschema

from workflow_engine.errors import ConnectorConfigError, ExecutionCancelledError, ExecutionTimeoutError
from workflow_engine.models import NodeKind
from workflow_engine.schema import DataEnvelope, DataSchema
from workflow_engine.validation import ValidationResult


@dataclass
class RunContext:
    """
    Per-attempt context handed to a connector's execute call.

    Cancellation is cooperative: long-running connectors should call
    check_cancelled() or watch `cancel_event` between units of work.
    """
    execution_id: str
    workflow_id: str
    node_id: str
    attempt: int = 1
    cancel_event: threading.Event = field(default_factory=threading.Event)
    deadline: Optional[float] = None  # time.monotonic() value
    workflow_config: Dict[str, Any] = field(default_factory=dict)
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining_time(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check_cancelled(self) -> None:
        """Raise if the run was cancelled or its deadline passed."""
        if self.cancel_event.is_set():
            raise ExecutionCancelledError(f"execution {self.execution_id} was cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ExecutionTimeoutError(f"execution {self.execution_id} timed out")


ExecuteFn = Callable[[List[DataEnvelope], Dict[str, Any], RunContext], Union[DataEnvelope, List[Dict[str, Any]]]]
ConfigValidatorFn = Callable[[Dict[str, Any]], Iterable[str]]
InputSchemaFn = Callable[[Dict[str, Any]], Optional[DataSchema]]
OutputSchemaFn = Callable[[Dict[str, Any], List[DataSchema]], Optional[DataSchema]]


@dataclass(frozen=True)
class Connector:
    """
    Registered capability for one node_type.

    Attributes:
        node_type: Registry key, e.g. "http-fetch"
        kind: Which structural role the connector serves
        execute: (inputs, config, ctx) -> DataEnvelope or list of records
        config_schema: JSON Schema for the node config
        config_validator: Extra config checks returning error messages
        input_schema: config -> fields the connector requires on each input
        output_schema: (config, upstream schemas) -> static output schema,
            or None when the output is only known at run time
    """
    node_type: str
    kind: NodeKind
    execute: ExecuteFn
    config_schema: Dict[str, Any] = field(default_factory=dict)
    display_name: str = ""
    description: str = ""
    config_validator: Optional[ConfigValidatorFn] = None
    input_schema: Optional[InputSchemaFn] = None
    output_schema: Optional[OutputSchemaFn] = None

    def validate_config(self, config: Dict[str, Any]) -> ValidationResult:
        """Check config against config_schema, then the custom validator."""
        result = ValidationResult()
        if self.config_schema:
            validator = jsonschema.Draft7Validator(self.config_schema)
            for err in sorted(validator.iter_errors(config), key=lambda e: list(e.absolute_path)):
                path = ".".join(str(p) for p in err.absolute_path)
                result.error(f"config.{path}: {err.message}" if path else f"config: {err.message}")
        if self.config_validator is not None:
            for message in self.config_validator(config):
                result.error(message)
        return result

    def check_config(self, config: Dict[str, Any], node_id: Optional[str] = None) -> None:
        """
        Raise when config is invalid.

        Raises:
            ConnectorConfigError: carrying the ValidationResult
        """
        result = self.validate_config(config)
        if not result.valid:
            owner = f"node {node_id}" if node_id else f"connector {self.node_type}"
            raise ConnectorConfigError(f"{owner}: " + "; ".join(result.errors), result=result)

    def required_input(self, config: Dict[str, Any]) -> Optional[DataSchema]:
        if self.input_schema is None:
            return None
        return self.input_schema(config)

    def static_output(
        self,
        config: Dict[str, Any],
        inputs: List[DataSchema],
    ) -> Optional[DataSchema]:
        if self.output_schema is None:
            return None
        return self.output_schema(config, inputs)


__all__ = [
    "Connector",
    "ExecuteFn",
    "RunContext",
]
