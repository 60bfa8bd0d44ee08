"""Connector capability contract and common functionality."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from ..config.settings import get_settings
from ..core import paths
from ..core.cancellation import CancellationToken, check_cancelled, is_cancelled
from ..core.entities import (
    CompressEntry,
    ReadResult,
    RowOutcome,
    StorageEntity,
    StorageUsage,
    TransferPackage,
    TransferRow,
    TransmitResult,
)
from ..core.errors import (
    AlreadyExistsError,
    NotSupportedError,
    OperationCancelledError,
    PathError,
    SpecificationError,
    TransferRowError,
)
from ..core.filters import FilterEngine, validate_query
from ..core.options import (
    CompressOptions,
    CreateOptions,
    DeleteOptions,
    OptionsInput,
    QueryOptions,
    TransferOptions,
    WriteOptions,
)
from ..core.transfer import prepare_file_package, transmit_file_package
from ..utils.logging import get_logger


class ConnectorSpecifications(BaseModel):
    """Base class for connector specifications.

    Fields without a default are mandatory: they must be present and
    non-empty before the connector may talk to its backend.
    """

    class Config:
        extra = "ignore"


def _spec_key(key: str) -> str:
    return str(key).replace("_", "").replace("-", "").lower()


class Connector(ABC):
    """Abstract base class for every backend adapter.

    Operations take a path, loose ``options`` (a mapping or options model)
    and an optional cancellation token. An operation a backend cannot
    support raises :class:`NotSupportedError`; it never silently does nothing.
    """

    type_id: str = ""
    description: str = ""
    Specifications: Type[ConnectorSpecifications] = ConnectorSpecifications

    def __init__(self, specifications: Optional[Mapping[str, Any]] = None, name: Optional[str] = None):
        """Initialize the connector.

        Args:
            specifications: Connector-specific settings, keys matched case-insensitively
            name: Name the connector is configured under

        Raises:
            SpecificationError: If a mandatory specification is missing or invalid
        """
        self.name = name or self.type_id
        self.raw_specifications = dict(specifications or {})
        self.logger = get_logger(self.__class__.__name__)
        self.filter_engine = FilterEngine()
        self._initialized = False
        self.specifications = self.validate_specifications()

    def validate_specifications(self) -> ConnectorSpecifications:
        """Validate raw specifications against the connector's model."""
        supplied = {_spec_key(key): value for key, value in self.raw_specifications.items()}
        values: Dict[str, Any] = {}
        missing = []

        for field_name, field_info in self.Specifications.model_fields.items():
            value = supplied.get(_spec_key(field_name))
            if isinstance(value, str):
                value = value.strip()

            if value is None or value == "":
                if field_info.is_required():
                    missing.append(field_name)
                continue
            values[field_name] = value

        if missing:
            raise SpecificationError(
                f"Connector '{self.name}' is missing required specification(s): {', '.join(missing)}"
            )

        try:
            return self.Specifications(**values)
        except ValidationError as e:
            raise SpecificationError(f"Connector '{self.name}' has invalid specifications: {e}")

    async def initialize(self) -> None:
        """Open backend resources. Safe to call more than once."""
        if self._initialized:
            return
        await self._connect()
        self._initialized = True
        self.logger.info("Connector initialized", connector=self.name, type=self.type_id)

    async def _connect(self) -> None:
        pass

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def get_info(self) -> Dict[str, Any]:
        """Describe the connector instance."""
        return {
            "name": self.name,
            "type": self.type_id,
            "description": self.description,
            "initialized": self._initialized,
        }

    async def about(self, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> StorageUsage:
        raise NotSupportedError(f"{self.type_id} connector does not support about")

    @abstractmethod
    async def create(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> None:
        """Create a directory or table container; idempotent unless overwrite is False."""
        pass

    @abstractmethod
    async def write(
        self,
        path: str,
        options: OptionsInput,
        payload: Any,
        cancel: Optional[CancellationToken] = None
    ) -> None:
        """Write file or row content, honouring the overwrite flag."""
        pass

    @abstractmethod
    async def read(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> ReadResult:
        pass

    async def update(
        self,
        path: str,
        options: OptionsInput = None,
        payload: Any = None,
        cancel: Optional[CancellationToken] = None
    ) -> None:
        raise NotSupportedError(f"{self.type_id} connector does not support update", path=path)

    @abstractmethod
    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        """Delete entities and return how many were removed."""
        pass

    @abstractmethod
    async def exist(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> bool:
        pass

    @abstractmethod
    async def list(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[Dict[str, Any]]:
        pass

    async def compress(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[CompressEntry]:
        raise NotSupportedError(f"{self.type_id} connector does not support compress", path=path)

    @abstractmethod
    async def prepare_transmission_data(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> TransferPackage:
        pass

    @abstractmethod
    async def transmit_data(
        self,
        path: str,
        options: OptionsInput,
        package: TransferPackage,
        cancel: Optional[CancellationToken] = None
    ) -> TransmitResult:
        pass

    def _guard_root_delete(self, path: str):
        """Refuse any delete aimed at the whole store."""
        if paths.is_root(path):
            raise PathError("Deleting the root path is not allowed", path="/")

    @staticmethod
    def _require_file(path: str, operation: str) -> str:
        canonical = paths.normalize(path)
        if not canonical:
            raise PathError(f"{operation} requires a non-empty path")
        if paths.is_directory(canonical):
            raise PathError(f"{operation} requires a file path", path=canonical)
        return canonical

    @staticmethod
    def _require_directory(path: str, operation: str) -> str:
        canonical = paths.normalize(path)
        if paths.is_file(canonical):
            raise PathError(f"{operation} requires a directory path", path=canonical)
        return canonical


class StorageConnector(Connector):
    """Base class for hierarchical file stores.

    Subclasses provide the backend listing hooks and single-entity
    operations; listing, compress and both transfer phases are built here on
    top of them.
    """

    has_containers = False

    async def _list_containers(self, cancel: Optional[CancellationToken] = None) -> List[StorageEntity]:
        """Return one directory entity per root container."""
        raise NotSupportedError(f"{self.type_id} connector has no root containers")

    @abstractmethod
    async def _list_directory(
        self,
        path: str,
        recurse: bool,
        cancel: Optional[CancellationToken] = None
    ) -> List[StorageEntity]:
        """Return the entities below a directory, excluding the directory itself."""
        pass

    async def _collect(self, path: str, recurse: bool, cancel: Optional[CancellationToken]) -> List[StorageEntity]:
        if not (paths.is_root(path) and self.has_containers):
            return await self._list_directory(path, recurse, cancel)

        containers = await self._list_containers(cancel)
        entities = list(containers)
        if not recurse or not containers:
            return entities

        semaphore = asyncio.Semaphore(get_settings().transfer.max_concurrent_listings)

        async def list_container(container: StorageEntity) -> List[StorageEntity]:
            async with semaphore:
                check_cancelled(cancel, container.full_path)
                return await self._list_directory(container.full_path, True, cancel)

        # Merge only after every container has been listed.
        results = await asyncio.gather(*(list_container(container) for container in containers))
        for result in results:
            entities.extend(result)

        self.logger.debug("Listed root containers", containers=len(containers), entities=len(entities))
        return entities

    async def list_entities(
        self,
        path: str,
        options: Optional[QueryOptions] = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[StorageEntity]:
        """List, filter, sort and page entities below a directory."""
        options = options or QueryOptions()
        canonical = self._require_directory(path, "List")
        validate_query(options)
        check_cancelled(cancel, canonical)

        entities = await self._collect(canonical, options.recurse, cancel)
        return self.filter_engine.select_entities(entities, options)

    async def list(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[Dict[str, Any]]:
        query = QueryOptions.from_options(options)
        entities = await self.list_entities(path, query, cancel)
        return self.filter_engine.render_entities(entities, query)

    async def compress(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[CompressEntry]:
        """Read every matched file into an archive entry.

        Entries that fail to read are logged and skipped.
        """
        canonical = paths.normalize(path)

        if paths.is_file(canonical):
            targets: List[Tuple[str, str]] = [(paths.name(canonical), canonical)]
        else:
            query = QueryOptions.from_options(options)
            entities = await self.list_entities(canonical, query, cancel)
            targets = [
                (paths.relative_to(entity.full_path, canonical), entity.full_path)
                for entity in entities if entity.is_file
            ]

        entries = []
        for entry_name, full_path in targets:
            check_cancelled(cancel, full_path)
            try:
                result = await self.read(full_path, cancel=cancel)
            except OperationCancelledError:
                raise
            except Exception as e:
                self.logger.warning("Skipping unreadable entity in compress", path=full_path, error=str(e))
                continue
            entries.append(CompressEntry(name=entry_name, content=result.content, content_type=result.content_type))

        self.logger.info("Compressed entities", path=canonical, entries=len(entries))
        return entries

    async def prepare_transmission_data(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> TransferPackage:
        return await prepare_file_package(self, path, options, cancel)

    async def transmit_data(
        self,
        path: str,
        options: OptionsInput,
        package: TransferPackage,
        cancel: Optional[CancellationToken] = None
    ) -> TransmitResult:
        return await transmit_file_package(self, path, options, package, cancel)

    @staticmethod
    def _payload_bytes(payload: Any, path: str) -> bytes:
        if isinstance(payload, (bytes, bytearray)):
            return bytes(payload)
        if isinstance(payload, str):
            return payload.encode("utf-8")
        raise PathError(f"Cannot write a {type(payload).__name__} payload to a file", path=path)


class TableConnector(Connector):
    """Base class for backends whose entities are rows of tables.

    A table path addresses one table; filtering, sorting and paging apply to
    its rows. Subclasses implement the storage hooks and the document
    rendering used for reads, compress and transfer rows.
    """

    content_type: Optional[str] = None
    extension: str = ""
    # schemaless tables grow new columns on write instead of rejecting them
    fixed_schema = True

    def _is_table_path(self, path: str) -> bool:
        return paths.is_file(path)

    def _require_table(self, path: str, operation: str) -> str:
        canonical = paths.normalize(path)
        if not self._is_table_path(canonical):
            raise PathError(f"{operation} requires a table path", path=canonical or "/")
        return canonical

    @abstractmethod
    async def _table_exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def _create_table(self, path: str, columns: List[str], overwrite: bool) -> None:
        pass

    @abstractmethod
    async def _read_rows(self, path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        """Return the table's columns and rows; raise PathError when it does not exist."""
        pass

    @abstractmethod
    async def _append_rows(self, path: str, columns: List[str], rows: List[Dict[str, Any]]) -> None:
        pass

    @abstractmethod
    async def _delete_rows(self, path: str, matched: List[Dict[str, Any]], remaining: List[Dict[str, Any]]) -> None:
        pass

    @abstractmethod
    async def _drop_table(self, path: str) -> None:
        pass

    @abstractmethod
    async def _list_tables(self, path: str) -> List[StorageEntity]:
        pass

    @abstractmethod
    def render(self, columns: List[str], rows: List[Dict[str, Any]]) -> bytes:
        """Render rows as a standalone document in the connector's format."""
        pass

    def normalize_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Shape an incoming row before it is checked against the table columns."""
        return record

    async def _create_directory(self, path: str) -> None:
        raise NotSupportedError(f"{self.type_id} connector has no directories", path=path)

    async def _write_document(self, path: str, content: bytes, overwrite: bool) -> None:
        raise NotSupportedError(f"{self.type_id} connector cannot store raw documents", path=path)

    async def _select(self, path: str, options: OptionsInput, cancel: Optional[CancellationToken]):
        """Read a table and apply the filter engine; returns all rows, matched rows and the query."""
        query = QueryOptions.from_options(options)
        validate_query(query)
        check_cancelled(cancel, path)
        columns, rows = await self._read_rows(path)
        matched = self.filter_engine.apply(rows, query.model_copy(update={"fields": []}), columns)
        return columns, rows, matched, query

    async def create(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> None:
        create_options = CreateOptions.from_options(options)
        canonical = paths.normalize(path)
        if paths.is_root(canonical):
            raise PathError("Cannot create the root path", path="/")
        check_cancelled(cancel, canonical)

        if not self._is_table_path(canonical):
            await self._create_directory(canonical)
            return

        if await self._table_exists(canonical):
            if create_options.overwrite is None:
                return
            if not create_options.overwrite:
                raise AlreadyExistsError("Table already exists", path=canonical)

        await self._create_table(canonical, create_options.headers, bool(create_options.overwrite))
        self.logger.info("Created table", path=canonical, columns=create_options.headers)

    async def write(
        self,
        path: str,
        options: OptionsInput,
        payload: Any,
        cancel: Optional[CancellationToken] = None
    ) -> None:
        """Append one row mapping or a list of them; raw bytes replace the whole document."""
        canonical = self._require_table(path, "Write")
        write_options = WriteOptions.from_options(options)
        check_cancelled(cancel, canonical)

        if isinstance(payload, (bytes, bytearray, str)):
            content = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
            await self._write_document(canonical, content, write_options.overwrite)
            return

        records = [payload] if isinstance(payload, Mapping) else list(payload or [])
        if not all(isinstance(record, Mapping) for record in records):
            raise PathError("Rows must be written as mappings", path=canonical)

        records = [self.normalize_record(dict(record)) for record in records]
        exists = await self._table_exists(canonical)
        columns = (await self._read_rows(canonical))[0] if exists else []
        if not columns:
            # a missing or header-less table takes its columns from the rows
            for record in records:
                columns.extend(key for key in record if key not in columns)
            if not exists:
                await self._create_table(canonical, columns, False)

        incoming = [key for record in records for key in record]
        if not self.fixed_schema:
            columns.extend(key for key in dict.fromkeys(incoming) if key not in columns)
        unknown = sorted(set(incoming) - set(columns))
        if unknown:
            raise PathError(f"Unknown column(s): {', '.join(unknown)}", path=canonical)

        await self._append_rows(canonical, columns, records)
        self.logger.debug("Wrote rows", path=canonical, rows=len(records))

    async def read(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> ReadResult:
        """Return the single row matching the filter."""
        canonical = self._require_table(path, "Read")
        columns, _, matched, query = await self._select(canonical, options, cancel)

        if not matched:
            raise PathError("No row matches the filter", path=canonical)
        if len(matched) > 1:
            raise PathError(f"Filter matches {len(matched)} rows, expected exactly one", path=canonical)

        record = self.filter_engine.project(matched, query.fields, columns)[0]
        content = self.render(list(record.keys()), [record])
        return ReadResult(
            content=content,
            content_type=self.content_type,
            extension=self.extension,
            record=record,
        )

    async def delete(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> int:
        """Delete the filtered rows; with purge and no filter, drop the table."""
        canonical = paths.normalize(path)
        self._guard_root_delete(canonical)
        delete_options = DeleteOptions.from_options(options)
        canonical = self._require_table(canonical, "Delete")

        query = QueryOptions.from_options(options)
        if delete_options.purge and not (query.filter and query.filter.strip()):
            if not await self._table_exists(canonical):
                raise PathError("Table does not exist", path=canonical)
            await self._drop_table(canonical)
            self.logger.info("Dropped table", path=canonical)
            return 1

        _, rows, matched, _ = await self._select(canonical, options, cancel)
        # apply() returns copies, so remaining rows are found by value
        remaining = list(rows)
        for row in matched:
            remaining.remove(row)
        await self._delete_rows(canonical, matched, remaining)
        self.logger.info("Deleted rows", path=canonical, rows=len(matched))
        return len(matched)

    async def exist(self, path: str, options: OptionsInput = None, cancel: Optional[CancellationToken] = None) -> bool:
        """A table path exists when the table does and, with a filter, when any row matches."""
        canonical = paths.normalize(path)
        if paths.is_root(canonical):
            return True
        check_cancelled(cancel, canonical)

        if not self._is_table_path(canonical):
            return await self._directory_exists(canonical)
        if not await self._table_exists(canonical):
            return False

        query = QueryOptions.from_options(options)
        if not (query.filter and query.filter.strip()):
            return True
        _, _, matched, _ = await self._select(canonical, options, cancel)
        return bool(matched)

    async def _directory_exists(self, path: str) -> bool:
        return False

    async def list(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[Dict[str, Any]]:
        """List filtered rows of a table, or the tables below a directory."""
        canonical = paths.normalize(path)
        query = QueryOptions.from_options(options)
        validate_query(query)
        check_cancelled(cancel, canonical)

        if not self._is_table_path(canonical):
            tables = await self._list_tables(canonical)
            selected = self.filter_engine.select_entities(tables, query)
            return self.filter_engine.render_entities(selected, query)

        columns, rows = await self._read_rows(canonical)
        return self.filter_engine.apply(rows, query, columns)

    async def compress(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> List[CompressEntry]:
        """Export the filtered rows as one document, or one document per row."""
        canonical = self._require_table(path, "Compress")
        compress_options = CompressOptions.from_options(options)
        columns, records = await self._selected_records(canonical, options, cancel)
        stem, extension = self._stem(canonical)

        if not compress_options.separate_per_row:
            return [CompressEntry(
                name=f"{stem}{extension}",
                content=self.render(columns, records),
                content_type=self.content_type,
            )]

        entries = []
        for index, record in enumerate(records, start=1):
            check_cancelled(cancel, canonical)
            entries.append(CompressEntry(
                name=f"{stem}_{index}{extension}",
                content=self.render(columns, [record]),
                content_type=self.content_type,
            ))
        return entries

    async def _selected_records(self, path: str, options: OptionsInput, cancel: Optional[CancellationToken]):
        columns, _, matched, query = await self._select(path, options, cancel)
        records = self.filter_engine.project(matched, query.fields, columns)
        if query.fields:
            columns = list(query.fields)
        return columns, records

    def _stem(self, path: str) -> Tuple[str, str]:
        entry_name = paths.name(path)
        extension = paths.extension(entry_name) or self.extension
        stem = entry_name[:-len(paths.extension(entry_name))] if paths.extension(entry_name) else entry_name
        return stem, extension

    async def prepare_transmission_data(
        self,
        path: str,
        options: OptionsInput = None,
        cancel: Optional[CancellationToken] = None
    ) -> TransferPackage:
        """Build a tabular package: one row per matched record plus the whole table as one document."""
        canonical = self._require_table(path, "Prepare")
        columns, records = await self._selected_records(canonical, options, cancel)
        stem, extension = self._stem(canonical)

        package = TransferPackage(
            columns=columns,
            name=f"{stem}{extension}",
            content=self.render(columns, records),
            content_type=self.content_type,
        )

        for index, record in enumerate(records, start=1):
            if is_cancelled(cancel):
                package.cancelled = True
                break
            package.rows.append(TransferRow(
                key=f"{stem}_{index}{extension}",
                content=self.render(columns, [record]),
                content_type=self.content_type,
                items=[record.get(column) for column in columns],
            ))

        self.logger.info("Prepared table for transfer", path=canonical, rows=len(package.rows))
        return package

    async def transmit_data(
        self,
        path: str,
        options: OptionsInput,
        package: TransferPackage,
        cancel: Optional[CancellationToken] = None
    ) -> TransmitResult:
        """Append package rows to a table, creating it from the package columns when missing.

        Rows are only ever appended, so ``overwrite`` never replaces an
        existing table. A directory destination receives documents instead
        of rows.
        """
        canonical = paths.normalize(path)
        if not self._is_table_path(canonical):
            return await transmit_file_package(self, canonical, options, package, cancel)

        TransferOptions.from_options(options)
        package.check_unique_keys()
        result = TransmitResult()

        if await self._table_exists(canonical):
            columns, _ = await self._read_rows(canonical)
            if not columns:
                columns = list(package.columns)
        else:
            columns = list(package.columns)
            await self._create_table(canonical, columns, False)

        accepted: List[Tuple[str, Dict[str, Any]]] = []
        for row in package.rows:
            if is_cancelled(cancel):
                result.cancelled = True
                break
            if row.is_directory_marker:
                self.logger.debug("Ignoring directory marker for table destination", key=row.key)
                continue

            record = self._row_record(package, row)
            if not self.fixed_schema:
                columns.extend(key for key in record if key not in columns)
            unknown = sorted(set(record) - set(columns))
            if unknown:
                error = TransferRowError(f"Unknown column(s): {', '.join(unknown)}", key=row.key, path=canonical)
                self.logger.warning("Skipping row with unknown columns", key=row.key, error=str(error))
                result.outcomes.append(RowOutcome(key=row.key, success=False, error=str(error)))
                continue
            accepted.append((row.key, record))

        if not accepted:
            return result

        try:
            await self._append_rows(canonical, columns, [record for _, record in accepted])
        except Exception as e:
            self.logger.warning("Failed to write rows", path=canonical, rows=len(accepted), error=str(e))
            for key, _ in accepted:
                error = TransferRowError(f"Failed to transmit row: {e}", key=key, path=canonical)
                result.outcomes.append(RowOutcome(key=key, success=False, error=str(error)))
            return result

        for key, _ in accepted:
            result.outcomes.append(RowOutcome(key=key, success=True))
        self.logger.info("Transmitted rows", path=canonical, rows=len(accepted))
        return result

    @staticmethod
    def _row_record(package: TransferPackage, row: TransferRow) -> Dict[str, Any]:
        if row.items is not None:
            return dict(zip(package.columns, row.items))
        return TransferPackage(rows=[row]).records()[0]
