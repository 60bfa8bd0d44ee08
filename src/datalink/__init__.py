"""Datalink - uniform storage connectors with a two-phase transfer protocol."""

from .config import get_settings
from .connectors import Connector, ConnectorRegistry, default_registry
from .core import CancellationToken, TransferCoordinator, TransferPackage, TransferResult
from .service import StorageService

__version__ = "1.0.0"

__all__ = [
    "get_settings",
    "Connector",
    "ConnectorRegistry",
    "default_registry",
    "CancellationToken",
    "TransferCoordinator",
    "TransferPackage",
    "TransferResult",
    "StorageService",
]
