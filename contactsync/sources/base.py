"""Tabular source protocol: rows of named, natively typed cells."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence
    from contextlib import AbstractAsyncContextManager


class ColumnType(StrEnum):
    """Native type tags a source may report for a cell."""

    INTEGER = "integer"
    FLOAT = "real"
    TEXT = "text"
    BLOB = "blob"
    NULL = "null"


@runtime_checkable
class Row(Protocol):
    """A single row yielded by a tabular source."""

    def column_type(self, name: str) -> str | None:
        """Return the cell's native type tag, or None if the column does not exist."""
        ...

    def get(self, name: str) -> Any:
        """Return the cell's raw value."""
        ...


@runtime_checkable
class TabularSource(Protocol):
    """Read-only access to a table of rows.

    ``query`` is an async context manager yielding a finite, non-restartable
    async iterator of rows. The iteration resource is released when the
    context exits, whether the iterator was drained or not.
    """

    def query(
        self,
        table_name: str,
        columns: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[Row]]: ...
