"""Contacts service: the source side of the exchange.

Every function here is stateless: it reads the contacts table through the
projection layer and returns fresh values for a single response.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import TYPE_CHECKING

from contactsync.exceptions import MalformedRecordError, SourceUnavailableError
from contactsync.services.projection_service import (
    iter_projected_rows,
    read_record,
    require_access,
)
from contactsync.services.vcard_service import DEFAULT_NAMESPACE, finalize
from contactsync.sources.base import ColumnType

if TYPE_CHECKING:
    from collections.abc import Collection

    from contactsync.config import ContactsSchema
    from contactsync.services.identity_service import UID
    from contactsync.services.projection_service import ColumnValue, ContactsAccess
    from contactsync.sources.base import TabularSource

logger = logging.getLogger(__name__)

_PHONE_STRIP_RE = re.compile(r"[^\d+]")


def _timestamp_of(value: ColumnValue | None) -> int | None:
    if value is None or value.kind != ColumnType.INTEGER:
        return None
    assert isinstance(value.value, int)
    return value.value


async def build_manifest(
    source: TabularSource,
    access: ContactsAccess | None,
    schema: ContactsSchema,
    identities: Collection[UID] | None = None,
) -> dict[UID, int]:
    """Build the uID -> last-modified manifest.

    A merge group reports the maximum timestamp among its rows. Rows without
    an integer timestamp contribute nothing; an identity none of whose rows
    has one is left out of the manifest.
    """
    manifest: dict[UID, int] = {}
    async for uid, record in iter_projected_rows(
        source,
        access,
        schema.table,
        schema.lookup_column,
        [schema.timestamp_column],
        identities,
    ):
        timestamp = _timestamp_of(record.get(schema.timestamp_column))
        if timestamp is None:
            logger.warning("Row for %s has no usable %s", uid, schema.timestamp_column)
            continue
        current = manifest.get(uid)
        if current is None or timestamp > current:
            manifest[uid] = timestamp
    return manifest


async def collect_vcards(
    source: TabularSource,
    access: ContactsAccess | None,
    schema: ContactsSchema,
    device_id: str,
    identities: Collection[UID],
    namespace: str = DEFAULT_NAMESPACE,
) -> dict[UID, str]:
    """Resolve ``identities`` to finalized vCards.

    Only identities that were found and finalized successfully are returned;
    the rest are dropped with a warning. Within a merge group the last row's
    vCard wins and the metadata timestamp is the group maximum.
    """
    require_access(access)
    if not identities:
        return {}

    texts: dict[UID, str] = {}
    timestamps: dict[UID, int] = {}
    async for uid, record in iter_projected_rows(
        source,
        access,
        schema.table,
        schema.lookup_column,
        [schema.vcard_column, schema.timestamp_column],
        identities,
    ):
        vcard = record.get(schema.vcard_column)
        if vcard is not None:
            if vcard.kind == ColumnType.TEXT:
                texts[uid] = str(vcard.value)
            else:
                logger.warning("Ignoring non-text vCard cell for %s (%s)", uid, vcard.kind)
        timestamp = _timestamp_of(record.get(schema.timestamp_column))
        if timestamp is not None and (uid not in timestamps or timestamp > timestamps[uid]):
            timestamps[uid] = timestamp

    vcards: dict[UID, str] = {}
    for uid in identities:
        if uid not in texts:
            if uid in timestamps:
                logger.warning("Contact %s has no vCard", uid)
            continue
        if uid not in timestamps:
            logger.warning("Contact %s has no %s", uid, schema.timestamp_column)
            continue
        try:
            vcards[uid] = finalize(texts[uid], device_id, uid, timestamps[uid], namespace)
        except MalformedRecordError as exc:
            logger.warning("Dropping malformed vCard for %s: %s", uid, exc)
    return vcards


def normalize_phone_number(number: str) -> str:
    """Keep digits and a leading '+'; the phone column stores numbers in this form."""
    stripped = _PHONE_STRIP_RE.sub("", number.strip())
    if not stripped:
        return ""
    return stripped[0] + stripped[1:].replace("+", "")


def encode_photo(data: bytes | None) -> str:
    """Base64-encode a contact photo; missing photos encode to ''."""
    if not data:
        return ""
    return base64.b64encode(data).decode("ascii")


async def lookup_phone_number(
    source: TabularSource,
    access: ContactsAccess | None,
    schema: ContactsSchema,
    number: str,
) -> dict[str, str]:
    """Look up the name and photo of the contact owning ``number``.

    Only the first matching row is used. Keys are present only when the
    contact has the corresponding value. An unreadable source yields {}.
    """
    require_access(access)
    normalized = normalize_phone_number(number)
    if not normalized:
        return {}

    columns = [schema.display_name_column, schema.photo_column]
    info: dict[str, str] = {}
    try:
        async with source.query(
            schema.table, columns, filter={schema.phone_column: normalized}
        ) as rows:
            async for row in rows:
                record = read_record(row, columns)
                name = record.get(schema.display_name_column)
                if name is not None and name.kind == ColumnType.TEXT:
                    info["name"] = str(name.value)
                photo = record.get(schema.photo_column)
                if photo is not None and photo.kind == ColumnType.BLOB:
                    encoded = encode_photo(bytes(photo.value))  # type: ignore[arg-type]
                    if encoded:
                        info["photo"] = encoded
                break
    except SourceUnavailableError as exc:
        logger.error("Phone number lookup failed: %s", exc)
        return {}
    return info
