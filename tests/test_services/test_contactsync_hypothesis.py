"""Property-based tests for vCard metadata, fetch planning and projection."""

from __future__ import annotations

import asyncio
import string

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from contactsync.protocol.packets import (
    build_response_uids_timestamps,
    parse_response_uids_timestamps,
)
from contactsync.services.identity_service import UID
from contactsync.services.projection_service import ContactsAccess, project
from contactsync.services.reconciliation_service import compute_fetch_plan
from contactsync.services.vcard_service import (
    END_MARKER,
    finalize,
    insertion_point,
    parse_finalized,
)
from tests.conftest import MemorySource

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_UID = st.builds(
    UID,
    st.text(alphabet=string.ascii_letters + string.digits + "-_.:", min_size=1, max_size=12),
).filter(lambda uid: uid.value != "uids")
_TIMESTAMP = st.integers(min_value=0, max_value=2**53)
_MANIFEST = st.dictionaries(keys=_UID, values=_TIMESTAMP, max_size=12)
_BODY_LINE = st.text(
    alphabet=string.ascii_letters + string.digits + ":;=-. ", min_size=1, max_size=30
).filter(lambda line: line.strip() and not line.upper().startswith("X-KDECONNECT-"))


@PROPERTY_SETTINGS
@given(lines=st.lists(_BODY_LINE, max_size=6), uid=_UID, timestamp=_TIMESTAMP)
def test_finalize_then_parse_recovers_metadata(
    lines: list[str], uid: UID, timestamp: int
) -> None:
    lines = [line for line in lines if line.strip().upper() != END_MARKER]
    raw = "\n".join(["BEGIN:VCARD", *lines, END_MARKER]) + "\n"

    parsed = parse_finalized(finalize(raw, "device", uid, timestamp))

    assert parsed.metadata.device_id == "device"
    assert parsed.metadata.uid == uid
    assert parsed.metadata.timestamp == timestamp
    assert parsed.body == raw[: insertion_point(raw)]


@PROPERTY_SETTINGS
@given(local=_MANIFEST, remote=_MANIFEST)
def test_fetch_plan_partitions_all_uids(local: dict[UID, int], remote: dict[UID, int]) -> None:
    plan = compute_fetch_plan(local, remote)

    assert set(plan.to_fetch) | set(plan.unchanged) == set(remote)
    assert not set(plan.to_fetch) & set(plan.unchanged)
    assert set(plan.deleted) == set(local) - set(remote)
    for uid in plan.to_fetch:
        assert uid not in local or remote[uid] > local[uid]


@PROPERTY_SETTINGS
@given(manifest=_MANIFEST)
def test_fetch_plan_against_itself_is_empty(manifest: dict[UID, int]) -> None:
    plan = compute_fetch_plan(manifest, manifest)
    assert plan.to_fetch == []
    assert plan.deleted == []
    assert sorted(plan.unchanged) == sorted(manifest)


@PROPERTY_SETTINGS
@given(manifest=_MANIFEST)
def test_manifest_packet_round_trip(manifest: dict[UID, int]) -> None:
    assert parse_response_uids_timestamps(build_response_uids_timestamps(manifest)) == manifest


_ROW = st.fixed_dictionaries(
    {
        "lookup_key": st.tuples(st.just("text"), st.sampled_from(["a", "b", "c"])),
        "last_updated_timestamp": st.tuples(st.just("integer"), _TIMESTAMP),
    },
    optional={
        "display_name": st.tuples(st.just("text"), st.text(max_size=10)),
        "photo": st.tuples(st.just("blob"), st.binary(max_size=8)),
    },
)


@PROPERTY_SETTINGS
@given(rows=st.lists(_ROW, max_size=10))
def test_projection_is_idempotent_and_complete(rows: list[dict[str, tuple[str, object]]]) -> None:
    columns = ["display_name", "photo", "last_updated_timestamp"]
    source = MemorySource(rows)

    first = asyncio.run(project(source, ContactsAccess(), "raw_contacts", "lookup_key", columns))
    second = asyncio.run(project(source, ContactsAccess(), "raw_contacts", "lookup_key", columns))

    assert first == second
    assert set(first) == {UID(row["lookup_key"][1]) for row in rows}  # type: ignore[arg-type]
    assert source.open_cursors == 0
