"""vCard assembly: append and strip the sync metadata footer.

The vCard body is opaque. The only structure relied upon is the single
``END:VCARD`` line that terminates the record; metadata lines are always
inserted immediately before it.
"""

from __future__ import annotations

from dataclasses import dataclass

from contactsync.exceptions import MalformedRecordError
from contactsync.services.identity_service import UID


END_MARKER = "END:VCARD"
DEFAULT_NAMESPACE = "KDECONNECT"


@dataclass(frozen=True)
class VCardMetadata:
    """Sync metadata embedded in a sent vCard."""

    device_id: str
    uid: UID
    timestamp: int


@dataclass(frozen=True)
class FinalizedVCard:
    """A finalized vCard split into its body and its metadata."""

    body: str
    metadata: VCardMetadata


def _id_prefix(namespace: str) -> str:
    return f"X-{namespace.upper()}-ID-DEV-"


def _timestamp_prefix(namespace: str) -> str:
    return f"X-{namespace.upper()}-TIMESTAMP:"


def _is_metadata_line(line: str, namespace: str) -> bool:
    upper = line.upper()
    return upper.startswith((_id_prefix(namespace), _timestamp_prefix(namespace)))


def insertion_point(text: str) -> int:
    """Return the offset of the end marker line, where metadata is inserted.

    The marker is matched case-insensitively. Raises MalformedRecordError
    unless it occurs exactly once and is the last non-blank line.
    """
    lines = text.splitlines(keepends=True)
    markers = [i for i, line in enumerate(lines) if line.strip().upper() == END_MARKER]
    if len(markers) != 1:
        raise MalformedRecordError(f"Expected one {END_MARKER} line, found {len(markers)}")
    index = markers[0]
    if any(line.strip() for line in lines[index + 1 :]):
        raise MalformedRecordError(f"Content found after {END_MARKER}")
    return sum(len(line) for line in lines[:index])


def finalize(
    raw: str,
    origin_device_id: str,
    uid: UID,
    last_modified: int,
    namespace: str = DEFAULT_NAMESPACE,
) -> str:
    """Append the device/uID line and the timestamp line before the end marker.

    Metadata lines already present in ``raw`` for the same namespace are
    dropped first, so finalizing twice yields one footer.
    """
    if not origin_device_id or ":" in origin_device_id or "\n" in origin_device_id:
        raise ValueError(f"Invalid origin device id: {origin_device_id!r}")

    body = raw[: insertion_point(raw)]
    kept = [
        line for line in body.splitlines(keepends=True) if not _is_metadata_line(line, namespace)
    ]
    body = "".join(kept)
    if body and not body.endswith("\n"):
        body += "\n"

    return (
        f"{body}"
        f"{_id_prefix(namespace)}{origin_device_id}:{uid}\n"
        f"{_timestamp_prefix(namespace)}{last_modified}\n"
        f"{END_MARKER}"
    )


def parse_finalized(text: str, namespace: str = DEFAULT_NAMESPACE) -> FinalizedVCard:
    """Split a finalized vCard into body and metadata.

    The body is everything before the end marker with the metadata lines
    removed. Raises MalformedRecordError when either metadata line is missing
    or unparseable.
    """
    body = text[: insertion_point(text)]
    id_prefix = _id_prefix(namespace)
    ts_prefix = _timestamp_prefix(namespace)

    device_id: str | None = None
    uid: UID | None = None
    timestamp: int | None = None
    kept: list[str] = []
    for line in body.splitlines(keepends=True):
        stripped = line.rstrip("\r\n")
        upper = stripped.upper()
        if upper.startswith(id_prefix):
            device_id, sep, raw_uid = stripped[len(id_prefix) :].partition(":")
            if not sep or not device_id:
                raise MalformedRecordError(f"Malformed device line: {stripped!r}")
            try:
                uid = UID.parse(raw_uid)
            except ValueError as exc:
                raise MalformedRecordError(f"Malformed uID in device line: {exc}") from exc
        elif upper.startswith(ts_prefix):
            try:
                timestamp = int(stripped[len(ts_prefix) :].strip())
            except ValueError as exc:
                raise MalformedRecordError(f"Malformed timestamp line: {stripped!r}") from exc
        else:
            kept.append(line)

    if device_id is None or uid is None:
        raise MalformedRecordError("Missing device/uID metadata line")
    if timestamp is None:
        raise MalformedRecordError("Missing timestamp metadata line")

    return FinalizedVCard(
        body="".join(kept),
        metadata=VCardMetadata(device_id=device_id, uid=uid, timestamp=timestamp),
    )
