"""Backend adapters implementing the connector contract."""

from .base import Connector, ConnectorSpecifications, StorageConnector, TableConnector
from .csv_stream import CsvConnector
from .google_drive import GoogleDriveConnector
from .json_stream import JsonConnector
from .local import LocalConnector
from .memory import MemoryConnector, MemoryEntry, MemoryStore
from .registry import ConnectorRegistry, default_registry
from .sql import SqlConnector

__all__ = [
    "Connector",
    "ConnectorSpecifications",
    "StorageConnector",
    "TableConnector",
    "CsvConnector",
    "GoogleDriveConnector",
    "JsonConnector",
    "LocalConnector",
    "MemoryConnector",
    "MemoryEntry",
    "MemoryStore",
    "ConnectorRegistry",
    "default_registry",
    "SqlConnector",
]
