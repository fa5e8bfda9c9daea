"""Tabular sources the projection layer reads from."""

from contactsync.sources.base import ColumnType, Row, TabularSource
from contactsync.sources.sql_source import SqlRow, SqlTabularSource

__all__ = [
    "ColumnType",
    "Row",
    "SqlRow",
    "SqlTabularSource",
    "TabularSource",
]
