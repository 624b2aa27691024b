"""
Connectors - pluggable node capabilities.

This package provides:
- Connector: descriptor registered per node_type
- RunContext: cancellation and deadline handed to execute calls
- ConnectorRegistry: lookup, discovery and the frozen registration phase
"""

from workflow_engine.connectors.base import Connector, RunContext
from workflow_engine.connectors.registry import (
    CONNECTOR_ENTRY_POINT,
    ConnectorRegistry,
    get_global_registry,
    reset_global_registry,
)

__all__ = [
    "CONNECTOR_ENTRY_POINT",
    "Connector",
    "ConnectorRegistry",
    "RunContext",
    "get_global_registry",
    "reset_global_registry",
]
