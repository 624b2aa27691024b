"""
Connector Registry - lookup of connector descriptors by node_type.

Supports multiple discovery methods:
1. Manual registration
2. Entry-points (for installed connector packs)
3. Module scanning

The registry is filled during a registration phase and then frozen; a
frozen registry is read-only and safe to share between concurrent runs.
"""

from __future__ import annotations

import importlib
import threading
from importlib.metadata import entry_points
from typing import Dict, Iterable, Iterator, List, Optional

from workflow_engine.errors import ConnectorNotFoundError, RegistryFrozenError
from workflow_engine.models import NodeKind
from workflow_engine.connectors.base import Connector
from workflow_engine.observability import get_logger


logger = get_logger(__name__)

# Entry point group for connector packs
CONNECTOR_ENTRY_POINT = "workflow_engine.connectors"

# Function looked up by discover_module
REGISTER_FUNCTION = "register_connectors"


class ConnectorRegistry:
    """
    Central registry of connectors.

    Usage:
        registry = ConnectorRegistry()
        registry.register(Connector("csv-read", NodeKind.SOURCE, read_csv))
        registry.discover_entry_points()
        registry.freeze()

        connector = registry.require("csv-read")
    """

    def __init__(self, connectors: Optional[Iterable[Connector]] = None):
        self._connectors: Dict[str, Connector] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for connector in connectors or ():
            self.register(connector)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """End the registration phase."""
        if not self._frozen:
            self._frozen = True
            logger.info(f"Connector registry frozen with {len(self._connectors)} connectors")

    def register(self, connector: Connector, replace: bool = False) -> Connector:
        """
        Register a connector.

        Args:
            connector: Descriptor to register
            replace: Overwrite an existing registration for the same node_type

        Raises:
            RegistryFrozenError: if the registry was frozen
            ValueError: if node_type is empty or already registered
        """
        if not connector.node_type:
            raise ValueError("connector node_type must not be empty")
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"cannot register '{connector.node_type}': registry is frozen"
                )
            if connector.node_type in self._connectors and not replace:
                raise ValueError(f"connector already registered: {connector.node_type}")
            self._connectors[connector.node_type] = connector

        logger.debug(f"Registered connector: {connector.node_type} ({connector.kind.value})")
        return connector

    def register_many(self, connectors: Iterable[Connector]) -> int:
        count = 0
        for connector in connectors:
            self.register(connector)
            count += 1
        return count

    def _register_from(self, result: object, origin: str) -> int:
        if isinstance(result, Connector):
            self.register(result)
            return 1
        if isinstance(result, dict):
            return self.register_many(result.values())
        if isinstance(result, (list, tuple)):
            return self.register_many(result)
        if result is not None:
            logger.warning(f"Ignoring unexpected value from '{origin}': {type(result).__name__}")
        return 0

    def discover_entry_points(self, group: str = CONNECTOR_ENTRY_POINT) -> int:
        """
        Discover connector packs via entry points.

        Entry points are defined in pyproject.toml:

            [project.entry-points."workflow_engine.connectors"]
            mypack = "mypack:register_connectors"

        The entry point may be a Connector, or a callable that either
        registers into the registry passed to it or returns connectors
        (a Connector, a list of them, or a dict keyed by node_type).

        Returns:
            Number of connectors registered
        """
        count = 0
        for ep in entry_points(group=group):
            try:
                loaded = ep.load()
                count += self._load(loaded, ep.name)
                logger.info(f"Discovered connector pack: {ep.name}")
            except RegistryFrozenError:
                raise
            except Exception as e:
                logger.error(f"Failed to load connector pack '{ep.name}': {e}")
        return count

    def _load(self, loaded: object, origin: str) -> int:
        if isinstance(loaded, Connector):
            self.register(loaded)
            return 1
        if callable(loaded):
            before = len(self._connectors)
            returned = loaded(self)
            added = len(self._connectors) - before
            return added + self._register_from(returned, origin)
        return self._register_from(loaded, origin)

    def discover_module(self, module_path: str) -> int:
        """
        Register connectors from a module.

        Calls the module's register_connectors(registry) when present,
        otherwise registers every module-level Connector object.

        Raises:
            ImportError: if the module cannot be imported
        """
        module = importlib.import_module(module_path)

        register = getattr(module, REGISTER_FUNCTION, None)
        if callable(register):
            return self._load(register, module_path)

        count = 0
        for name in sorted(dir(module)):
            obj = getattr(module, name)
            if isinstance(obj, Connector):
                self.register(obj)
                count += 1
        logger.info(f"Registered {count} connectors from module '{module_path}'")
        return count

    def get(self, node_type: str) -> Optional[Connector]:
        return self._connectors.get(node_type)

    def require(self, node_type: str, node_id: Optional[str] = None) -> Connector:
        """
        Get a connector or raise.

        Raises:
            ConnectorNotFoundError: if node_type is not registered
        """
        connector = self._connectors.get(node_type)
        if connector is None:
            raise ConnectorNotFoundError(node_type, node_id)
        return connector

    def list_node_types(self, kind: Optional[NodeKind] = None) -> List[str]:
        return sorted(
            node_type for node_type, connector in self._connectors.items()
            if kind is None or connector.kind == kind
        )

    def __len__(self) -> int:
        return len(self._connectors)

    def __iter__(self) -> Iterator[Connector]:
        return iter([self._connectors[t] for t in sorted(self._connectors)])

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._connectors


# Process-wide registry
_global_registry: Optional[ConnectorRegistry] = None


def get_global_registry() -> ConnectorRegistry:
    """Get or create the process-wide registry."""
    global _global_registry
    if _global_registry is None:
        _global_registry = ConnectorRegistry()
    return _global_registry


def reset_global_registry() -> None:
    """Reset the process-wide registry (useful for testing)."""
    global _global_registry
    _global_registry = None


__all__ = [
    "CONNECTOR_ENTRY_POINT",
    "ConnectorRegistry",
    "get_global_registry",
    "reset_global_registry",
]
