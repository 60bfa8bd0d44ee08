"""In-memory connector backed by an injectable bucket store."""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core import paths
from ..core.cancellation import CancellationToken, check_cancelled
from ..core.entities import (
    EntityKind,
    ReadResult,
    StorageEntity,
    StorageUsage,
    guess_content_type,
    md5_hex,
)
from ..core.errors import AlreadyExistsError, PathError
from ..core.options import CreateOptions, DeleteOptions, OptionsInput, QueryOptions, WriteOptions
from .base import ConnectorSpecifications, StorageConnector


@dataclass
class MemoryEntry:
    """A stored file (``content`` set) or directory marker (``content`` is None)."""

    content: Optional[bytes] = None
    content_type: Optional[str] = None
    created_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    modified_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_marker(self) -> bool:
        return self.content is None


class MemoryStore:
    """Bucket table owned by one or more memory connectors.

    ``buckets`` maps a bucket name to ``{key: MemoryEntry}`` where keys are
    paths relative to the bucket. Listings share the store with each other;
    create, write and delete take it exclusively.
    """

    def __init__(self):
        self.buckets: Dict[str, Dict[str, MemoryEntry]] = {}
        self._readers = 0
        self._readers_lock = asyncio.Lock()
        self._writer_lock = asyncio.Lock()

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[Dict[str, Dict[str, MemoryEntry]]]:
        async with self._readers_lock:
            # count the reader only once the store is held, so a reader
            # cancelled while waiting leaves no trace
            if self._readers == 0:
                await self._writer_lock.acquire()
            self._readers += 1
        try:
            yield self.buckets
        finally:
            # no await here; release cannot be interrupted by cancellation
            self._readers -= 1
            if self._readers == 0:
                self._writer_lock.release()

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[Dict[str, Dict[str, MemoryEntry]]]:
        async with self._writer_lock:
            yield self.buckets


class MemorySpecifications(ConnectorSpecifications):
    pass


class MemoryConnector(StorageConnector):
    """Connector storing buckets of files in process memory."""

    type_id = "memory"
    description = "In-memory bucket store"
    Specifications = MemorySpecifications
    has_containers = True

    def __init__(self, specifications=None, name: Optional[str] = None, store: Optional[MemoryStore] = None):
        super().__init__(specifications, name)
        self.store = store or MemoryStore()

    def _entity(self, bucket: str, key: str, entry: MemoryEntry) -> StorageEntity:
        full_path = paths.combine(bucket, key) if key else paths.as_directory(bucket)
        if entry.is_marker:
            return StorageEntity(
                full_path=full_path,
                kind=EntityKind.DIRECTORY,
                created_time=entry.created_time,
                modified_time=entry.modified_time,
            )
        return StorageEntity(
            full_path=full_path,
            kind=EntityKind.FILE,
            size=len(entry.content),
            md5=md5_hex(entry.content),
            created_time=entry.created_time,
            modified_time=entry.modified_time,
            content_type=entry.content_type,
        )

    async def about(self, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> StorageUsage:
        async with self.store.reading() as buckets:
            used = sum(
                len(entry.content)
                for entries in buckets.values()
                for entry in entries.values()
                if not entry.is_marker
            )
        return StorageUsage(total=0, free=0, used=used)

    async def create(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> None:
        """Create a bucket and directory markers for every level of ``path``."""
        create_options = CreateOptions.from_options(options)
        canonical = self._require_directory(path, "Create")
        if paths.is_root(canonical):
            raise PathError("Cannot create the root path", path="/")
        check_cancelled(cancel, canonical)

        parts = paths.split(canonical)
        async with self.store.writing() as buckets:
            if parts.is_container_root:
                exists = parts.container in buckets
            else:
                exists = parts.container in buckets and parts.relative in buckets[parts.container]

            if exists:
                if create_options.overwrite is False:
                    raise AlreadyExistsError("Directory already exists", path=canonical)
                return

            entries = buckets.setdefault(parts.container, {})
            if parts.relative:
                for key in [*reversed(list(paths.ancestors(parts.relative))), parts.relative]:
                    entries.setdefault(key, MemoryEntry())

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
        parts = paths.split(canonical)
        if not parts.relative:
            raise PathError("Files must be stored inside a bucket", path=canonical)
        check_cancelled(cancel, canonical)

        async with self.store.writing() as buckets:
            if parts.container not in buckets:
                raise PathError("Bucket does not exist", path=parts.container)
            entries = buckets[parts.container]
            existing = entries.get(parts.relative)
            if existing is not None and not write_options.overwrite:
                raise AlreadyExistsError("File already exists", path=canonical)

            now = datetime.now(timezone.utc)
            entries[parts.relative] = MemoryEntry(
                content=content,
                content_type=guess_content_type(canonical),
                created_time=existing.created_time if existing is not None else now,
                modified_time=now,
            )

        self.logger.debug("Wrote file", path=canonical, size=len(content))

    async def read(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> ReadResult:
        canonical = self._require_file(path, "Read")
        parts = paths.split(canonical)
        check_cancelled(cancel, canonical)

        async with self.store.reading() as buckets:
            entry = buckets.get(parts.container, {}).get(parts.relative)
            if entry is None or entry.is_marker:
                raise PathError("File does not exist", path=canonical)
            content = entry.content

        return ReadResult(
            content=content,
            content_type=entry.content_type,
            extension=paths.extension(canonical),
            md5=md5_hex(content),
        )

    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        """Delete a file, the matched files of a directory, or with purge the whole subtree."""
        canonical = paths.normalize(path)
        self._guard_root_delete(canonical)
        delete_options = DeleteOptions.from_options(options)
        parts = paths.split(canonical)
        check_cancelled(cancel, canonical)

        if paths.is_file(canonical):
            async with self.store.writing() as buckets:
                entries = buckets.get(parts.container, {})
                entry = entries.get(parts.relative)
                if entry is None or entry.is_marker:
                    raise PathError("File does not exist", path=canonical)
                del entries[parts.relative]
            self.logger.info("Deleted file", path=canonical)
            return 1

        if delete_options.purge:
            return await self._purge(canonical)

        query = QueryOptions.from_options(options)
        matched = await self.list_entities(canonical, query, cancel)
        removed = 0
        async with self.store.writing() as buckets:
            for entity in matched:
                if not entity.is_file:
                    continue
                target = paths.split(entity.full_path)
                if buckets.get(target.container, {}).pop(target.relative, None) is not None:
                    removed += 1

        self.logger.info("Deleted files", path=canonical, files=removed)
        return removed

    async def _purge(self, path: str) -> int:
        parts = paths.split(path)
        async with self.store.writing() as buckets:
            if parts.container not in buckets:
                raise PathError("Bucket does not exist", path=parts.container)

            if parts.is_container_root:
                removed = len(buckets.pop(parts.container))
            else:
                entries = buckets[parts.container]
                if parts.relative not in entries:
                    raise PathError("Directory does not exist", path=path)
                doomed = [key for key in entries if key.startswith(parts.relative)]
                for key in doomed:
                    del entries[key]
                removed = len(doomed)

        self.logger.info("Purged directory", path=path, entities=removed)
        return removed

    async def exist(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> bool:
        """Check existence without inferring directories from the files beneath them."""
        canonical = paths.normalize(path)
        if paths.is_root(canonical):
            return True
        parts = paths.split(canonical)
        check_cancelled(cancel, canonical)

        async with self.store.reading() as buckets:
            if parts.container not in buckets:
                return False
            if parts.is_container_root:
                return True
            entry = buckets[parts.container].get(parts.relative)
            if entry is None:
                return False
            return entry.is_marker == paths.is_directory(canonical)

    async def _list_containers(self, cancel: Optional[CancellationToken] = None) -> List[StorageEntity]:
        async with self.store.reading() as buckets:
            return [
                StorageEntity(full_path=paths.as_directory(bucket), kind=EntityKind.DIRECTORY)
                for bucket in sorted(buckets)
            ]

    async def _list_directory(
        self,
        path: str,
        recurse: bool,
        cancel: Optional[CancellationToken] = None
    ) -> List[StorageEntity]:
        parts = paths.split(path)
        check_cancelled(cancel, path)

        async with self.store.reading() as buckets:
            if parts.container not in buckets:
                raise PathError("Bucket does not exist", path=parts.container)
            entries = buckets[parts.container]
            if parts.relative and parts.relative not in entries:
                raise PathError("Directory does not exist", path=path)

            entities = []
            for key, entry in entries.items():
                if key == parts.relative or not key.startswith(parts.relative):
                    continue
                remainder = key[len(parts.relative):].rstrip(paths.SEPARATOR)
                if not recurse and paths.SEPARATOR in remainder:
                    continue
                entities.append(self._entity(parts.container, key, entry))

        return entities
