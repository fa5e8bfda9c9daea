"""Tabular source backed by an SQLAlchemy async engine.

SQLite's ``typeof()`` supplies the native type tag of every cell, so the
projection layer sees exactly what the store holds rather than what the
declared column type suggests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import column, func, inspect, literal_column, select, table
from sqlalchemy.exc import NoSuchTableError

from contactsync.exceptions import SourceUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncResult

logger = logging.getLogger(__name__)


class SqlRow:
    """A fully materialized result row with per-cell type tags."""

    __slots__ = ("_types", "_values")

    def __init__(self, values: dict[str, Any], types: dict[str, str]) -> None:
        self._values = values
        self._types = types

    def column_type(self, name: str) -> str | None:
        return self._types.get(name)

    def get(self, name: str) -> Any:
        return self._values.get(name)

    def __repr__(self) -> str:
        return f"SqlRow({self._values!r})"


class SqlTabularSource:
    """Read rows from a table through an async SQLAlchemy engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def _table_columns(self, conn: AsyncConnection, table_name: str) -> list[str]:
        def _inspect(sync_conn: Connection) -> list[str]:
            return [col["name"] for col in inspect(sync_conn).get_columns(table_name)]

        try:
            columns = await conn.run_sync(_inspect)
        except NoSuchTableError as exc:
            raise SourceUnavailableError(f"Table not found: {table_name}") from exc
        if not columns:
            raise SourceUnavailableError(f"Table not found: {table_name}")
        return columns

    @asynccontextmanager
    async def query(
        self,
        table_name: str,
        columns: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[AsyncIterator[SqlRow]]:
        """Open a connection and stream the requested columns of ``table_name``.

        Requested columns the table does not have are reported as missing
        (``column_type`` returns None) instead of failing the query. A filter
        on a missing column matches nothing. Rows come back in rowid order, so
        the last row of a merge group is the one with the highest rowid.
        """
        async with self.engine.connect() as conn:
            available = await self._table_columns(conn, table_name)
            present = [name for name in dict.fromkeys(columns) if name in available]
            missing = [name for name in columns if name not in available]
            if missing:
                logger.debug("Columns not in %s: %s", table_name, missing)

            filter = filter or {}
            if not present or any(key not in available for key in filter):
                yield _empty_rows()
                return

            source = table(table_name, *(column(name) for name in available))
            stmt = select(
                *(source.c[name] for name in present),
                *(func.typeof(source.c[name]) for name in present),
            ).order_by(literal_column("rowid"))
            for key, value in filter.items():
                stmt = stmt.where(source.c[key] == value)

            result = await conn.stream(stmt)
            try:
                yield _stream_rows(result, present)
            finally:
                await result.close()


async def _empty_rows() -> AsyncIterator[SqlRow]:
    for row in ():
        yield row


async def _stream_rows(result: AsyncResult[Any], names: list[str]) -> AsyncIterator[SqlRow]:
    width = len(names)
    async for raw in result:
        values = {name: raw[i] for i, name in enumerate(names)}
        types = {name: str(raw[width + i]) for i, name in enumerate(names)}
        yield SqlRow(values, types)
