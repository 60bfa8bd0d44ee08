"""Relational table connector built on SQLAlchemy Core."""

import asyncio
import functools
import io
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import Column, MetaData, Table, Text, create_engine, delete, inspect, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from ..core import paths
from ..core.entities import EntityKind, StorageEntity
from ..core.errors import BackendUnavailableError, NotSupportedError, PathError
from .base import ConnectorSpecifications, TableConnector


class SqlSpecifications(ConnectorSpecifications):
    url: str


class SqlConnector(TableConnector):
    """Tables of a relational database; each table is a root container.

    ``people`` and ``people/`` address the same table. Only the root path
    lists tables.
    """

    type_id = "sql"
    description = "Relational database tables"
    Specifications = SqlSpecifications
    content_type = "text/csv"
    extension = ".csv"

    def __init__(self, specifications=None, name: Optional[str] = None):
        super().__init__(specifications, name)
        self.engine: Optional[Engine] = None

    def _is_table_path(self, path: str) -> bool:
        return not paths.is_root(path)

    @staticmethod
    def _table_name(path: str) -> str:
        return paths.split(path).container

    async def _connect(self) -> None:
        url = self.specifications.url
        try:
            if url.startswith("sqlite"):
                self.engine = create_engine(
                    url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                    echo=False
                )
            else:
                self.engine = create_engine(url, pool_pre_ping=True, pool_recycle=300, echo=False)
        except SQLAlchemyError as e:
            raise BackendUnavailableError(f"Failed to create database engine: {e}")

    async def _run(self, func: Callable, *args, path: Optional[str] = None, **kwargs):
        """Run a blocking engine call in the default executor."""
        await self._ensure_initialized()
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except NoSuchTableError:
            raise PathError("Table does not exist", path=path)
        except SQLAlchemyError as e:
            self.logger.error("Database operation failed", path=path, error=str(e))
            raise BackendUnavailableError(f"Database error: {e}", path=path)

    def _reflect(self, name: str) -> Table:
        return Table(name, MetaData(), autoload_with=self.engine)

    async def _table_exists(self, path: str) -> bool:
        name = self._table_name(path)
        return await self._run(lambda: inspect(self.engine).has_table(name), path=path)

    async def _create_table(self, path: str, columns: List[str], overwrite: bool) -> None:
        if not columns:
            raise NotSupportedError("Creating a table requires at least one header", path=path)
        name = self._table_name(path)

        def create():
            table = Table(name, MetaData(), *[Column(column, Text) for column in columns])
            if overwrite:
                table.drop(self.engine, checkfirst=True)
            table.create(self.engine)

        await self._run(create, path=path)

    async def _read_rows(self, path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        name = self._table_name(path)

        def read():
            table = self._reflect(name)
            with self.engine.connect() as connection:
                result = connection.execute(select(table))
                rows = [dict(row._mapping) for row in result]
            return [column.name for column in table.columns], rows

        return await self._run(read, path=path)

    async def _append_rows(self, path: str, columns: List[str], rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        name = self._table_name(path)

        def append():
            table = self._reflect(name)
            values = [{column: row.get(column) for column in columns} for row in rows]
            with self.engine.begin() as connection:
                connection.execute(insert(table), values)

        await self._run(append, path=path)

    async def _delete_rows(self, path: str, matched: List[Dict[str, Any]], remaining: List[Dict[str, Any]]) -> None:
        name = self._table_name(path)

        def remove():
            table = self._reflect(name)
            # rows carry no identity, so the table is rewritten from the survivors
            with self.engine.begin() as connection:
                connection.execute(delete(table))
                if remaining:
                    connection.execute(insert(table), remaining)

        await self._run(remove, path=path)

    async def _drop_table(self, path: str) -> None:
        name = self._table_name(path)
        await self._run(lambda: self._reflect(name).drop(self.engine), path=path)

    async def _list_tables(self, path: str) -> List[StorageEntity]:
        names = await self._run(lambda: inspect(self.engine).get_table_names(), path=path)
        return [StorageEntity(full_path=paths.as_directory(name), kind=EntityKind.DIRECTORY) for name in names]

    def _stem(self, path: str) -> Tuple[str, str]:
        return self._table_name(path), self.extension

    def render(self, columns: List[str], rows: List[Dict[str, Any]]) -> bytes:
        if not columns:
            return b""
        buffer = io.StringIO()
        pd.DataFrame(rows, columns=columns).to_csv(buffer, index=False)
        return buffer.getvalue().encode("utf-8")
