"""Caller-facing facade over configured connectors."""

import asyncio
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from zipfile import ZIP_DEFLATED, ZipFile

from .config.loader import ConfigLoader
from .config.schema import DatalinkConfig
from .connectors.base import Connector
from .connectors.registry import ConnectorRegistry, default_registry
from .core.cancellation import CancellationToken
from .core.entities import CompressEntry, ReadResult, StorageUsage, TransferPackage, TransmitResult
from .core.errors import ConnectorNotFoundError
from .core.options import OptionsInput
from .core.transfer import TransferCoordinator, TransferResult
from .utils.logging import get_logger, log_async_execution_time, setup_logging


class StorageService:
    """Resolves configured connectors by name and exposes every operation on them.

    Connectors are created, validated and initialized lazily on first use.
    """

    def __init__(self, config: Optional[DatalinkConfig] = None, registry: Optional[ConnectorRegistry] = None):
        """Initialize the service.

        Args:
            config: Named connector configuration
            registry: Connector type registry, the shipped connectors by default
        """
        self.config = config or DatalinkConfig()
        self.registry = registry or default_registry()
        self.coordinator = TransferCoordinator()
        self.logger = get_logger(self.__class__.__name__)
        self._connectors: Dict[str, Connector] = {}
        self._lock = asyncio.Lock()

        self.logger.info("Storage service initialized", connectors=len(self.config.connectors))

    @classmethod
    def from_file(cls, file_path: Union[str, Path], registry: Optional[ConnectorRegistry] = None) -> "StorageService":
        """Load a configuration file, apply its logging settings and build the service."""
        config = ConfigLoader().load_from_file(file_path)
        setup_logging(config.log_level, config.log_format)
        return cls(config, registry)

    def add_connector(self, connector: Connector):
        """Register an already constructed connector under its name."""
        self._connectors[connector.name] = connector

    def list_connectors(self) -> List[Dict[str, Any]]:
        names = {connector.name for connector in self.config.connectors} | set(self._connectors)
        result = []
        for name in sorted(names):
            if name in self._connectors:
                result.append(self._connectors[name].get_info())
            else:
                connector_config = self.config.get_connector(name)
                result.append({
                    "name": name,
                    "type": connector_config.type,
                    "description": connector_config.description,
                    "initialized": False,
                })
        return result

    async def get_connector(self, name: str) -> Connector:
        """Return the initialized connector configured under ``name``.

        Raises:
            ConnectorNotFoundError: If no connector has that name
            SpecificationError: If its specifications are invalid
        """
        async with self._lock:
            connector = self._connectors.get(name)
            if connector is None:
                connector_config = self.config.get_connector(name)
                if connector_config is None:
                    raise ConnectorNotFoundError(f"No connector configured with name '{name}'")
                connector = self.registry.create(
                    connector_config.type,
                    connector_config.specifications,
                    name=connector_config.name
                )
                self._connectors[name] = connector

        await connector.initialize()
        return connector

    async def about(self, name: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> StorageUsage:
        return await (await self.get_connector(name)).about(options, cancel)

    async def create(self, name: str, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None):
        await (await self.get_connector(name)).create(path, options, cancel)

    async def write(self, name: str, path: str, payload: Any, options: OptionsInput = None,
                    cancel: Optional[CancellationToken] = None):
        await (await self.get_connector(name)).write(path, options, payload, cancel)

    async def read(self, name: str, path: str, options: OptionsInput = None,
                   cancel: Optional[CancellationToken] = None) -> ReadResult:
        return await (await self.get_connector(name)).read(path, options, cancel)

    async def update(self, name: str, path: str, payload: Any = None, options: OptionsInput = None,
                     cancel: Optional[CancellationToken] = None):
        await (await self.get_connector(name)).update(path, options, payload, cancel)

    async def delete(self, name: str, path: str, options: OptionsInput = None,
                     cancel: Optional[CancellationToken] = None) -> int:
        return await (await self.get_connector(name)).delete(path, options, cancel)

    async def exist(self, name: str, path: str, options: OptionsInput = None,
                    cancel: Optional[CancellationToken] = None) -> bool:
        return await (await self.get_connector(name)).exist(path, options, cancel)

    async def list(self, name: str, path: str, options: OptionsInput = None,
                   cancel: Optional[CancellationToken] = None) -> List[Dict[str, Any]]:
        return await (await self.get_connector(name)).list(path, options, cancel)

    async def compress(self, name: str, path: str, options: OptionsInput = None,
                       cancel: Optional[CancellationToken] = None) -> List[CompressEntry]:
        return await (await self.get_connector(name)).compress(path, options, cancel)

    async def compress_archive(self, name: str, path: str, options: OptionsInput = None,
                               cancel: Optional[CancellationToken] = None) -> bytes:
        """Compress matched entities into zip archive bytes."""
        entries = await self.compress(name, path, options, cancel)
        buffer = BytesIO()
        with ZipFile(buffer, "w", compression=ZIP_DEFLATED) as archive:
            for entry in entries:
                archive.writestr(entry.name, entry.content)
        self.logger.info("Built archive", connector=name, path=path, entries=len(entries))
        return buffer.getvalue()

    async def prepare_transmission_data(self, name: str, path: str, options: OptionsInput = None,
                                        cancel: Optional[CancellationToken] = None) -> TransferPackage:
        return await (await self.get_connector(name)).prepare_transmission_data(path, options, cancel)

    async def transmit_data(self, name: str, path: str, package: TransferPackage, options: OptionsInput = None,
                            cancel: Optional[CancellationToken] = None) -> TransmitResult:
        return await (await self.get_connector(name)).transmit_data(path, options, package, cancel)

    @log_async_execution_time
    async def transfer(
        self,
        source: str,
        source_path: str,
        destination: str,
        destination_path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> TransferResult:
        """Transfer between two configured connectors."""
        source_connector = await self.get_connector(source)
        destination_connector = await self.get_connector(destination)
        return await self.coordinator.transfer(
            source_connector,
            source_path,
            destination_connector,
            destination_path,
            options,
            cancel
        )
