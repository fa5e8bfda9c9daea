"""Contact identity: a stable uID read from the lookup column."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from contactsync.exceptions import SchemaError
from contactsync.sources.base import ColumnType

if TYPE_CHECKING:
    from contactsync.sources.base import Row

# Packet body key holding the uID list; a uID may never take this value.
RESERVED_UIDS_KEY = "uids"


@dataclass(frozen=True, order=True)
class UID:
    """Opaque identity of a logical contact.

    Rows of one merge group share the lookup value, so they share a UID.
    Equality and hashing are on the string value.
    """

    value: str

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: object) -> UID:
        """Parse a wire or cell value into a UID.

        Accepts non-empty strings and integers (rendered in decimal). Raises
        ValueError for anything else, for values containing line breaks, and
        for the reserved ``uids`` key.
        """
        if isinstance(raw, bool):
            raise ValueError(f"Invalid uID: {raw!r}")
        if isinstance(raw, int):
            raw = str(raw)
        if not isinstance(raw, str):
            raise ValueError(f"Invalid uID type: {type(raw).__name__}")
        if not raw or raw != raw.strip():
            raise ValueError(f"Invalid uID: {raw!r}")
        if "\n" in raw or "\r" in raw:
            raise ValueError(f"uID contains a line break: {raw!r}")
        if raw == RESERVED_UIDS_KEY:
            raise ValueError(f"uID collides with reserved key {RESERVED_UIDS_KEY!r}")
        return cls(raw)


def identity_of(row: Row, lookup_column: str) -> UID:
    """Extract the UID of ``row`` from its lookup column.

    Raises SchemaError when the cell is absent, null, or not a valid uID; the
    caller skips the row and carries on with the batch.
    """
    tag = row.column_type(lookup_column)
    if tag is None or tag == ColumnType.NULL:
        raise SchemaError(f"Row has no {lookup_column!r} value")
    try:
        return UID.parse(row.get(lookup_column))
    except ValueError as exc:
        raise SchemaError(f"Row has an unusable {lookup_column!r} value: {exc}") from exc
