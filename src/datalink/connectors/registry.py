"""Explicit registry mapping connector type ids to factories."""

from typing import Any, Callable, Dict, List, Mapping, Optional

from ..core.errors import ConnectorNotFoundError
from ..utils.logging import get_logger
from .base import Connector
from .csv_stream import CsvConnector
from .google_drive import GoogleDriveConnector
from .json_stream import JsonConnector
from .local import LocalConnector
from .memory import MemoryConnector
from .sql import SqlConnector

ConnectorFactory = Callable[..., Connector]


class ConnectorRegistry:
    """Registry for creating connector instances by type id."""

    def __init__(self, factories: Optional[Mapping[str, ConnectorFactory]] = None):
        self._factories: Dict[str, ConnectorFactory] = {}
        self.logger = get_logger(self.__class__.__name__)
        for type_id, factory in (factories or {}).items():
            self.register(type_id, factory)

    def register(self, type_id: str, factory: ConnectorFactory):
        """Register a connector type, replacing any previous factory.

        Args:
            type_id: Stable type identifier used in configuration
            factory: Callable taking ``(specifications, name=...)``
        """
        key = type_id.strip().lower()
        if key in self._factories:
            self.logger.info("Replacing connector type", type=key)
        self._factories[key] = factory

    def create(self, type_id: str, specifications: Optional[Mapping[str, Any]] = None, name: Optional[str] = None) -> Connector:
        """Create a connector instance.

        Raises:
            ConnectorNotFoundError: If the type is not registered
            SpecificationError: If the specifications are invalid
        """
        key = type_id.strip().lower()
        if key not in self._factories:
            raise ConnectorNotFoundError(f"Unsupported connector type: {type_id}")
        return self._factories[key](specifications, name=name)

    def get_supported_types(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, type_id: str) -> bool:
        return type_id.strip().lower() in self._factories


def default_registry() -> ConnectorRegistry:
    """Registry populated with every connector shipped in this package."""
    return ConnectorRegistry({
        connector_class.type_id: connector_class
        for connector_class in (
            MemoryConnector,
            LocalConnector,
            CsvConnector,
            JsonConnector,
            SqlConnector,
            GoogleDriveConnector,
        )
    })
