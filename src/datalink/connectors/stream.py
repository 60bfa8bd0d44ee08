"""Shared base for table connectors that keep one table per file."""

import asyncio
import functools
import os
import shutil
from abc import abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import validator

from ..core import paths
from ..core.cancellation import CancellationToken
from ..core.entities import EntityKind, StorageEntity
from ..core.errors import AlreadyExistsError, BackendUnavailableError, PathError
from ..core.options import DeleteOptions, OptionsInput
from .base import ConnectorSpecifications, TableConnector


class StreamSpecifications(ConnectorSpecifications):
    root: str

    @validator("root")
    def expand_root(cls, v):
        return os.path.abspath(os.path.expanduser(v))


class StreamTableConnector(TableConnector):
    """A directory of documents where each document is one table."""

    Specifications = StreamSpecifications

    @property
    def root(self) -> Path:
        return Path(self.specifications.root)

    def _resolve(self, path: str) -> Path:
        relative = paths.normalize(path).rstrip(paths.SEPARATOR)
        return self.root / relative if relative else self.root

    @abstractmethod
    def parse(self, content: bytes) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Parse a document into its columns and rows."""
        pass

    async def _run(self, func: Callable, *args, path: Optional[str] = None, **kwargs):
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except (PathError, AlreadyExistsError):
            raise
        except FileNotFoundError as e:
            raise PathError(f"Path does not exist: {e.strerror}", path=path)
        except OSError as e:
            raise BackendUnavailableError(f"File system error: {e}", path=path)

    async def _connect(self) -> None:
        await self._run(self.root.mkdir, parents=True, exist_ok=True, path="/")

    async def _table_exists(self, path: str) -> bool:
        return await self._run(self._resolve(path).is_file, path=path)

    async def _directory_exists(self, path: str) -> bool:
        return await self._run(self._resolve(path).is_dir, path=path)

    async def _create_directory(self, path: str) -> None:
        await self._ensure_initialized()
        await self._run(self._resolve(path).mkdir, parents=True, exist_ok=True, path=path)

    async def _store(self, path: str, content: bytes) -> None:
        await self._ensure_initialized()
        target = self._resolve(path)

        def write_file():
            with open(target, "wb") as handle:
                handle.write(content)

        await self._run(write_file, path=path)

    async def _create_table(self, path: str, columns: List[str], overwrite: bool) -> None:
        await self._store(path, self.render(columns, []))

    async def _write_document(self, path: str, content: bytes, overwrite: bool) -> None:
        if not overwrite and await self._table_exists(path):
            raise AlreadyExistsError("File already exists", path=path)
        await self._store(path, content)
        self.logger.debug("Wrote document", path=path, size=len(content))

    async def _read_rows(self, path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        target = self._resolve(path)
        if not await self._table_exists(path):
            raise PathError("File does not exist", path=path)
        content = await self._run(target.read_bytes, path=path)
        return self.parse(content)

    async def _append_rows(self, path: str, columns: List[str], rows: List[Dict[str, Any]]) -> None:
        _, existing = await self._read_rows(path)
        await self._store(path, self.render(columns, existing + rows))

    async def _delete_rows(self, path: str, matched: List[Dict[str, Any]], remaining: List[Dict[str, Any]]) -> None:
        columns, _ = await self._read_rows(path)
        await self._store(path, self.render(columns, remaining))

    async def _drop_table(self, path: str) -> None:
        await self._run(self._resolve(path).unlink, path=path)

    def _scan(self, path: str) -> List[StorageEntity]:
        directory = self._resolve(path)
        if not directory.is_dir():
            raise PathError("Directory does not exist", path=path or "/")

        entities = []
        with os.scandir(directory) as entries:
            for entry in entries:
                full_path = paths.combine(path, entry.name)
                stat = entry.stat()
                modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                if entry.is_dir():
                    entities.append(StorageEntity(
                        full_path=paths.as_directory(full_path),
                        kind=EntityKind.DIRECTORY,
                        modified_time=modified,
                    ))
                elif entry.is_file() and entry.name.lower().endswith(self.extension):
                    entities.append(StorageEntity(
                        full_path=full_path,
                        kind=EntityKind.FILE,
                        size=stat.st_size,
                        modified_time=modified,
                        content_type=self.content_type,
                    ))
        return entities

    async def _list_tables(self, path: str) -> List[StorageEntity]:
        await self._ensure_initialized()
        return await self._run(self._scan, path, path=path)

    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        canonical = paths.normalize(path)
        if not paths.is_root(canonical) and paths.is_directory(canonical):
            return await self._delete_directory(canonical, options)
        return await super().delete(canonical, options, cancel)

    async def _delete_directory(self, path: str, options: OptionsInput) -> int:
        if not DeleteOptions.from_options(options).purge:
            raise PathError("Deleting a directory requires purge", path=path)
        target = self._resolve(path)
        if not target.is_dir():
            raise PathError("Directory does not exist", path=path)
        await self._run(shutil.rmtree, target, path=path)
        self.logger.info("Purged directory", path=path)
        return 1
