"""Local file system connector."""

import asyncio
import functools
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import validator

from ..core import paths
from ..core.cancellation import CancellationToken, check_cancelled
from ..core.entities import EntityKind, ReadResult, StorageEntity, StorageUsage, guess_content_type, md5_hex
from ..core.errors import AlreadyExistsError, BackendUnavailableError, PathError
from ..core.options import CreateOptions, DeleteOptions, OptionsInput, QueryOptions, WriteOptions
from .base import ConnectorSpecifications, StorageConnector


class LocalSpecifications(ConnectorSpecifications):
    root: str

    @validator("root")
    def expand_root(cls, v):
        return os.path.abspath(os.path.expanduser(v))


class LocalConnector(StorageConnector):
    """Connector exposing a directory tree on the local file system.

    Every path is resolved below the configured ``root``; normalization has
    already removed ``..`` segments, so no path escapes it.
    """

    type_id = "local"
    description = "Local file system directory"
    Specifications = LocalSpecifications

    @property
    def root(self) -> Path:
        return Path(self.specifications.root)

    def _resolve(self, path: str) -> Path:
        relative = paths.normalize(path).rstrip(paths.SEPARATOR)
        return self.root / relative if relative else self.root

    async def _run(self, func: Callable, *args, path: Optional[str] = None, **kwargs):
        """Run blocking file system calls in the default executor."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except (PathError, AlreadyExistsError):
            raise
        except FileNotFoundError as e:
            raise PathError(f"Path does not exist: {e.strerror}", path=path)
        except FileExistsError as e:
            raise AlreadyExistsError(f"Path already exists: {e.strerror}", path=path)
        except NotADirectoryError as e:
            raise PathError(f"Not a directory: {e.strerror}", path=path)
        except OSError as e:
            raise BackendUnavailableError(f"File system error: {e}", path=path)

    async def _connect(self) -> None:
        await self._run(self.root.mkdir, parents=True, exist_ok=True, path="/")

    async def about(self, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> StorageUsage:
        await self._ensure_initialized()
        usage = await self._run(shutil.disk_usage, str(self.root), path="/")
        return StorageUsage(total=usage.total, free=usage.free, used=usage.used)

    async def create(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> None:
        create_options = CreateOptions.from_options(options)
        canonical = self._require_directory(path, "Create")
        if paths.is_root(canonical):
            raise PathError("Cannot create the root path", path="/")
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        target = self._resolve(canonical)
        if target.is_dir():
            if create_options.overwrite is False:
                raise AlreadyExistsError("Directory already exists", path=canonical)
            return

        await self._run(target.mkdir, parents=True, exist_ok=True, path=canonical)
        self.logger.info("Created directory", path=canonical)

    async def write(
        self,
        path: str,
        options: OptionsInput,
        payload: Any,
        cancel: Optional[CancellationToken] = None
    ) -> None:
        canonical = self._require_file(path, "Write")
        write_options = WriteOptions.from_options(options)
        content = self._payload_bytes(payload, canonical)
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        target = self._resolve(canonical)
        if target.is_dir():
            raise PathError("A directory exists at this path", path=canonical)
        mode = "wb" if write_options.overwrite else "xb"

        def write_file():
            with open(target, mode) as handle:
                handle.write(content)

        await self._run(write_file, path=canonical)
        self.logger.debug("Wrote file", path=canonical, size=len(content))

    async def read(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> ReadResult:
        canonical = self._require_file(path, "Read")
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        target = self._resolve(canonical)
        if not target.is_file():
            raise PathError("File does not exist", path=canonical)
        content = await self._run(target.read_bytes, path=canonical)

        return ReadResult(
            content=content,
            content_type=guess_content_type(canonical),
            extension=paths.extension(canonical),
            md5=md5_hex(content),
        )

    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        canonical = paths.normalize(path)
        self._guard_root_delete(canonical)
        delete_options = DeleteOptions.from_options(options)
        check_cancelled(cancel, canonical)
        await self._ensure_initialized()

        target = self._resolve(canonical)
        if paths.is_file(canonical):
            if not target.is_file():
                raise PathError("File does not exist", path=canonical)
            await self._run(target.unlink, path=canonical)
            self.logger.info("Deleted file", path=canonical)
            return 1

        if not target.is_dir():
            raise PathError("Directory does not exist", path=canonical)

        if delete_options.purge:
            await self._run(shutil.rmtree, target, path=canonical)
            self.logger.info("Purged directory", path=canonical)
            return 1

        matched = await self.list_entities(canonical, QueryOptions.from_options(options), cancel)
        removed = 0
        for entity in matched:
            if entity.is_file:
                await self._run(self._resolve(entity.full_path).unlink, path=entity.full_path)
                removed += 1

        self.logger.info("Deleted files", path=canonical, files=removed)
        return removed

    async def exist(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> bool:
        canonical = paths.normalize(path)
        check_cancelled(cancel, canonical)
        target = self._resolve(canonical)
        if paths.is_directory(canonical):
            return await self._run(target.is_dir, path=canonical)
        return await self._run(target.is_file, path=canonical)

    def _entity(self, entry: os.DirEntry, full_path: str) -> StorageEntity:
        stat = entry.stat()
        if entry.is_dir():
            return StorageEntity(
                full_path=paths.as_directory(full_path),
                kind=EntityKind.DIRECTORY,
                created_time=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
                modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )
        return StorageEntity(
            full_path=full_path,
            kind=EntityKind.FILE,
            size=stat.st_size,
            created_time=datetime.fromtimestamp(stat.st_ctime, tz=timezone.utc),
            modified_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            content_type=guess_content_type(full_path),
        )

    def _scan(self, path: str, recurse: bool) -> List[StorageEntity]:
        directory = self._resolve(path)
        if not directory.is_dir():
            raise PathError("Directory does not exist", path=path or "/")

        entities = []
        pending = [path]
        while pending:
            current = pending.pop()
            with os.scandir(self._resolve(current)) as entries:
                for entry in entries:
                    if not (entry.is_dir() or entry.is_file()):
                        continue
                    entity = self._entity(entry, paths.combine(current, entry.name))
                    entities.append(entity)
                    if recurse and entity.is_directory:
                        pending.append(entity.full_path)
        return entities

    async def _list_directory(
        self,
        path: str,
        recurse: bool,
        cancel: Optional[CancellationToken] = None
    ) -> List[StorageEntity]:
        check_cancelled(cancel, path)
        await self._ensure_initialized()
        return await self._run(self._scan, path, recurse, path=path)
