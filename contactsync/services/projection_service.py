"""Typed row projection: tabular rows to per-identity records.

The projection never needs to know the table's schema in advance. Each cell
is classified once from the source's own type tag; cells that cannot be
classified, and rows that carry no identity, are dropped with a warning so
that one bad row never aborts the exchange.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from contactsync.exceptions import ColumnTypeError, PermissionDenied, SchemaError
from contactsync.services.identity_service import identity_of
from contactsync.sources.base import ColumnType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Collection, Sequence

    from contactsync.services.identity_service import UID
    from contactsync.sources.base import Row, TabularSource

logger = logging.getLogger(__name__)

READ_CONTACTS = "READ_CONTACTS"


@dataclass(frozen=True)
class ContactsAccess:
    """Capability token proving contacts access was granted.

    Passed explicitly into every projection; there is no ambient permission
    state.
    """

    permission: str = READ_CONTACTS


def grant_contacts_access(granted: bool) -> ContactsAccess | None:
    """Return a capability token when access is granted, otherwise None."""
    return ContactsAccess() if granted else None


def require_access(access: ContactsAccess | None) -> ContactsAccess:
    """Fail fast with PermissionDenied unless a READ_CONTACTS token is present."""
    if access is None or access.permission != READ_CONTACTS:
        raise PermissionDenied("Contacts access has not been granted")
    return access


@dataclass(frozen=True)
class ColumnValue:
    """A typed cell value.

    ``kind`` is one of INTEGER, FLOAT, TEXT or BLOB. Absent cells are never
    represented by a ColumnValue; they are missing from the Record.
    """

    kind: ColumnType
    value: int | float | str | bytes

    @classmethod
    def of_int(cls, value: int) -> ColumnValue:
        return cls(ColumnType.INTEGER, value)

    @classmethod
    def of_float(cls, value: float) -> ColumnValue:
        return cls(ColumnType.FLOAT, value)

    @classmethod
    def of_text(cls, value: str) -> ColumnValue:
        return cls(ColumnType.TEXT, value)

    @classmethod
    def of_blob(cls, value: bytes) -> ColumnValue:
        return cls(ColumnType.BLOB, value)


Record = dict[str, ColumnValue]


def read_cell(row: Row, name: str) -> ColumnValue | None:
    """Read one cell, branching on its native type tag.

    Returns None when the column is missing from the row or holds null.
    Raises ColumnTypeError for an unrecognized tag.
    """
    tag = row.column_type(name)
    if tag is None:
        return None
    try:
        kind = ColumnType(tag)
    except ValueError as exc:
        raise ColumnTypeError(f"Column {name!r} has unrecognized type tag {tag!r}") from exc

    raw: Any = row.get(name)
    if kind == ColumnType.NULL or raw is None:
        return None
    if kind == ColumnType.INTEGER:
        return ColumnValue.of_int(int(raw))
    if kind == ColumnType.FLOAT:
        return ColumnValue.of_float(float(raw))
    if kind == ColumnType.TEXT:
        return ColumnValue.of_text(str(raw))
    return ColumnValue.of_blob(bytes(raw))


def read_record(row: Row, columns: Sequence[str]) -> Record:
    """Read the requested columns of ``row``, skipping unreadable cells."""
    record: Record = {}
    for name in columns:
        try:
            value = read_cell(row, name)
        except (ColumnTypeError, TypeError, ValueError) as exc:
            logger.warning("Skipping cell %r: %s", name, exc)
            continue
        if value is not None:
            record[name] = value
    return record


async def iter_projected_rows(
    source: TabularSource,
    access: ContactsAccess | None,
    table_name: str,
    lookup_column: str,
    columns: Sequence[str],
    identities: Collection[UID] | None = None,
) -> AsyncIterator[tuple[UID, Record]]:
    """Yield ``(uid, record)`` for every selected row, one per source row.

    Rows of the same merge group are yielded separately; folding them is the
    caller's policy. ``identities=None`` selects every row.
    """
    require_access(access)
    wanted = set(identities) if identities is not None else None
    query_columns = [lookup_column, *(name for name in columns if name != lookup_column)]

    skipped = 0
    async with source.query(table_name, query_columns) as rows:
        async for row in rows:
            try:
                uid = identity_of(row, lookup_column)
            except SchemaError as exc:
                skipped += 1
                logger.warning("Skipping row without identity in %s: %s", table_name, exc)
                continue
            if wanted is not None and uid not in wanted:
                continue
            yield uid, read_record(row, columns)

    if skipped:
        logger.info("Skipped %d row(s) without identity in %s", skipped, table_name)


async def project(
    source: TabularSource,
    access: ContactsAccess | None,
    table_name: str,
    lookup_column: str,
    columns: Sequence[str],
    identities: Collection[UID] | None = None,
) -> dict[UID, Record]:
    """Project the source into one Record per identity.

    When several rows share an identity, later rows overwrite earlier ones
    column by column.
    """
    records: dict[UID, Record] = {}
    async for uid, record in iter_projected_rows(
        source, access, table_name, lookup_column, columns, identities
    ):
        records.setdefault(uid, {}).update(record)
    return records
