"""Network packets and the contacts message contract.

A packet is a JSON object ``{"id": ..., "type": ..., "body": {...}}``; the
body is a string-keyed map. Four packet types make up the contacts protocol:

- ``request_all_uids_timestamps`` (requester -> source): no fields.
- ``response_uids_timestamps`` (source -> requester): ``uids`` plus one field
  per uID holding its last-modified timestamp.
- ``request_vcards_by_uid`` (requester -> source): ``uids`` to fetch.
- ``response_vcards`` (source -> requester): ``uids`` actually resolved plus
  one field per uID holding its finalized vCard.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from contactsync.exceptions import MalformedRequestError
from contactsync.services.identity_service import RESERVED_UIDS_KEY, UID

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

PACKET_TYPE_CONTACTS_REQUEST_ALL_UIDS_TIMESTAMPS = (
    "kdeconnect.contacts.request_all_uids_timestamps"
)
PACKET_TYPE_CONTACTS_REQUEST_VCARDS_BY_UIDS = "kdeconnect.contacts.request_vcards_by_uid"
PACKET_TYPE_CONTACTS_RESPONSE_UIDS_TIMESTAMPS = "kdeconnect.contacts.response_uids_timestamps"
PACKET_TYPE_CONTACTS_RESPONSE_VCARDS = "kdeconnect.contacts.response_vcards"

UIDS_KEY = RESERVED_UIDS_KEY


def _now_ms() -> int:
    return int(time.time() * 1000)


class NetworkPacket(BaseModel):
    """A single string-keyed key/value message."""

    id: int = Field(default_factory=_now_ms)
    type: str = Field(min_length=1)
    body: dict[str, Any] = Field(default_factory=dict)

    def has(self, key: str) -> bool:
        return key in self.body

    def get(self, key: str, default: Any = None) -> Any:
        return self.body.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.body[key] = value

    def serialize(self) -> bytes:
        """Encode as a newline-terminated JSON line."""
        return self.model_dump_json().encode("utf-8") + b"\n"

    @classmethod
    def deserialize(cls, data: bytes | str) -> NetworkPacket:
        """Decode a JSON line, raising MalformedRequestError on bad input."""
        try:
            return cls.model_validate_json(data)
        except ValidationError as exc:
            raise MalformedRequestError(f"Invalid packet: {exc.error_count()} error(s)") from exc


def require_uid_list(packet: NetworkPacket) -> list[Any]:
    """Return the raw ``uids`` list, raising MalformedRequestError if absent or not a list."""
    if not packet.has(UIDS_KEY):
        raise MalformedRequestError(f"{packet.type} packet has no {UIDS_KEY!r} key")
    raw = packet.get(UIDS_KEY)
    if not isinstance(raw, list):
        raise MalformedRequestError(f"{packet.type} packet has a non-list {UIDS_KEY!r} field")
    return raw


def parse_uid_list(raw_uids: Iterable[Any]) -> list[UID]:
    """Parse each entry as a UID, dropping unparseable entries with a warning."""
    uids: list[UID] = []
    seen: set[UID] = set()
    for raw in raw_uids:
        try:
            uid = UID.parse(raw)
        except ValueError as exc:
            logger.warning("Dropping malformed uID %r: %s", raw, exc)
            continue
        if uid not in seen:
            seen.add(uid)
            uids.append(uid)
    return uids


# ── Builders ─────────────────────────────────────────


def build_request_all_uids_timestamps() -> NetworkPacket:
    return NetworkPacket(type=PACKET_TYPE_CONTACTS_REQUEST_ALL_UIDS_TIMESTAMPS)


def build_request_vcards_by_uid(uids: Iterable[UID]) -> NetworkPacket:
    packet = NetworkPacket(type=PACKET_TYPE_CONTACTS_REQUEST_VCARDS_BY_UIDS)
    packet.set(UIDS_KEY, [str(uid) for uid in uids])
    return packet


def build_response_uids_timestamps(manifest: Mapping[UID, int]) -> NetworkPacket:
    packet = NetworkPacket(type=PACKET_TYPE_CONTACTS_RESPONSE_UIDS_TIMESTAMPS)
    ordered = sorted(manifest)
    packet.set(UIDS_KEY, [str(uid) for uid in ordered])
    for uid in ordered:
        packet.set(str(uid), manifest[uid])
    return packet


def build_response_vcards(vcards: Mapping[UID, str]) -> NetworkPacket:
    packet = NetworkPacket(type=PACKET_TYPE_CONTACTS_RESPONSE_VCARDS)
    ordered = sorted(vcards)
    packet.set(UIDS_KEY, [str(uid) for uid in ordered])
    for uid in ordered:
        packet.set(str(uid), vcards[uid])
    return packet


# ── Response parsing (requester side) ────────────────


def _expect_type(packet: NetworkPacket, expected: str) -> None:
    if packet.type != expected:
        raise MalformedRequestError(f"Expected {expected} packet, got {packet.type}")


def parse_response_uids_timestamps(packet: NetworkPacket) -> dict[UID, int]:
    """Read the remote manifest out of a ``response_uids_timestamps`` packet.

    uIDs with a missing or non-integer timestamp are dropped with a warning.
    """
    _expect_type(packet, PACKET_TYPE_CONTACTS_RESPONSE_UIDS_TIMESTAMPS)
    manifest: dict[UID, int] = {}
    for uid in parse_uid_list(require_uid_list(packet)):
        value = packet.get(str(uid))
        if isinstance(value, bool) or not isinstance(value, int):
            logger.warning("Dropping uID %s with invalid timestamp %r", uid, value)
            continue
        manifest[uid] = value
    return manifest


def parse_response_vcards(packet: NetworkPacket) -> dict[UID, str]:
    """Read the uID -> vCard text map out of a ``response_vcards`` packet."""
    _expect_type(packet, PACKET_TYPE_CONTACTS_RESPONSE_VCARDS)
    vcards: dict[UID, str] = {}
    for uid in parse_uid_list(require_uid_list(packet)):
        value = packet.get(str(uid))
        if not isinstance(value, str):
            logger.warning("Dropping uID %s without vCard text", uid)
            continue
        vcards[uid] = value
    return vcards
