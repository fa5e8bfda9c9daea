"""Tests for the source-side contacts service."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING

import pytest

from contactsync.config import ContactsSchema
from contactsync.exceptions import PermissionDenied
from contactsync.services.contacts_service import (
    build_manifest,
    collect_vcards,
    encode_photo,
    lookup_phone_number,
    normalize_phone_number,
)
from contactsync.services.identity_service import UID
from contactsync.services.vcard_service import parse_finalized
from tests.conftest import TEST_DEVICE_ID, MemorySource, insert_contacts, make_vcard

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from contactsync.services.projection_service import ContactsAccess
    from contactsync.sources.sql_source import SqlTabularSource

ALICE = UID("alice")
BOB = UID("bob")


class TestBuildManifest:
    async def test_one_entry_per_identity(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "last_updated_timestamp": 100},
                {"lookup_key": "bob", "last_updated_timestamp": 200},
            ],
        )
        assert await build_manifest(source, access, schema) == {ALICE: 100, BOB: 200}

    async def test_merge_group_reports_maximum(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "last_updated_timestamp": 300},
                {"lookup_key": "alice", "last_updated_timestamp": 100},
            ],
        )
        assert await build_manifest(source, access, schema) == {ALICE: 300}

    async def test_identity_without_timestamp_omitted(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "last_updated_timestamp": 100},
                {"lookup_key": "bob"},
            ],
        )
        with caplog.at_level(logging.WARNING, logger="contactsync.services.contacts_service"):
            manifest = await build_manifest(source, access, schema)
        assert manifest == {ALICE: 100}
        assert any("bob" in r.getMessage() for r in caplog.records)

    async def test_empty_table(
        self, source: SqlTabularSource, access: ContactsAccess, schema: ContactsSchema
    ) -> None:
        assert await build_manifest(source, access, schema) == {}

    async def test_access_required(self, schema: ContactsSchema) -> None:
        memory = MemorySource([])
        with pytest.raises(PermissionDenied):
            await build_manifest(memory, None, schema)
        assert memory.queries == []

    async def test_text_timestamp_ignored(
        self, access: ContactsAccess, schema: ContactsSchema
    ) -> None:
        memory = MemorySource(
            [
                {"lookup_key": ("text", "alice"), "last_updated_timestamp": ("text", "100")},
                {"lookup_key": ("text", "bob"), "last_updated_timestamp": ("integer", 5)},
            ]
        )
        assert await build_manifest(memory, access, schema) == {BOB: 5}


class TestCollectVCards:
    async def test_finalizes_requested_contacts(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "vcard": make_vcard("Alice"), "last_updated_timestamp": 1},
                {"lookup_key": "bob", "vcard": make_vcard("Bob"), "last_updated_timestamp": 2},
            ],
        )
        vcards = await collect_vcards(source, access, schema, TEST_DEVICE_ID, [BOB])
        assert list(vcards) == [BOB]
        parsed = parse_finalized(vcards[BOB])
        assert parsed.metadata.device_id == TEST_DEVICE_ID
        assert parsed.metadata.uid == BOB
        assert parsed.metadata.timestamp == 2

    async def test_unknown_uid_silently_omitted(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [{"lookup_key": "alice", "vcard": make_vcard("Alice"), "last_updated_timestamp": 1}],
        )
        vcards = await collect_vcards(
            source, access, schema, TEST_DEVICE_ID, [ALICE, UID("ghost")]
        )
        assert list(vcards) == [ALICE]

    async def test_empty_request_does_not_query(
        self, access: ContactsAccess, schema: ContactsSchema
    ) -> None:
        memory = MemorySource([{"lookup_key": ("text", "alice")}])
        assert await collect_vcards(memory, access, schema, TEST_DEVICE_ID, []) == {}
        assert memory.queries == []

    async def test_malformed_vcard_dropped(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "vcard": "BEGIN:VCARD\nFN:A", "last_updated_timestamp": 1},
                {"lookup_key": "bob", "vcard": make_vcard("Bob"), "last_updated_timestamp": 2},
            ],
        )
        vcards = await collect_vcards(source, access, schema, TEST_DEVICE_ID, [ALICE, BOB])
        assert list(vcards) == [BOB]

    async def test_merge_group_uses_last_vcard_and_max_timestamp(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "vcard": make_vcard("Old"), "last_updated_timestamp": 9},
                {"lookup_key": "alice", "vcard": make_vcard("New"), "last_updated_timestamp": 3},
            ],
        )
        vcards = await collect_vcards(source, access, schema, TEST_DEVICE_ID, [ALICE])
        parsed = parse_finalized(vcards[ALICE])
        assert "FN:New" in parsed.body
        assert parsed.metadata.timestamp == 9

    async def test_merge_group_vcard_follows_row_order_not_insert_order(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {
                    "id": 20,
                    "lookup_key": "alice",
                    "vcard": make_vcard("Later"),
                    "last_updated_timestamp": 1,
                },
                {
                    "id": 10,
                    "lookup_key": "alice",
                    "vcard": make_vcard("Earlier"),
                    "last_updated_timestamp": 2,
                },
            ],
        )
        vcards = await collect_vcards(source, access, schema, TEST_DEVICE_ID, [ALICE])
        assert "FN:Later" in parse_finalized(vcards[ALICE]).body

    async def test_contact_without_timestamp_omitted(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(db_engine, [{"lookup_key": "alice", "vcard": make_vcard("Alice")}])
        assert await collect_vcards(source, access, schema, TEST_DEVICE_ID, [ALICE]) == {}

    async def test_access_required(self, schema: ContactsSchema) -> None:
        memory = MemorySource([])
        with pytest.raises(PermissionDenied):
            await collect_vcards(memory, None, schema, TEST_DEVICE_ID, [ALICE])


class TestPhoneLookup:
    def test_normalize_phone_number(self) -> None:
        assert normalize_phone_number(" +1 (555) 010-0 ") == "+15550100"
        assert normalize_phone_number("555+1") == "5551"
        assert normalize_phone_number("ext.") == ""

    def test_encode_photo(self) -> None:
        assert encode_photo(b"\x89PNG") == base64.b64encode(b"\x89PNG").decode("ascii")
        assert encode_photo(b"") == ""
        assert encode_photo(None) == ""

    async def test_finds_name_and_photo(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {
                    "lookup_key": "alice",
                    "display_name": "Alice",
                    "phone_number": "+15550100",
                    "photo": b"\xff\xd8\xff",
                }
            ],
        )
        info = await lookup_phone_number(source, access, schema, "+1 555 0100")
        assert info == {"name": "Alice", "photo": base64.b64encode(b"\xff\xd8\xff").decode()}

    async def test_first_match_only(
        self,
        db_engine: AsyncEngine,
        source: SqlTabularSource,
        access: ContactsAccess,
        schema: ContactsSchema,
    ) -> None:
        await insert_contacts(
            db_engine,
            [
                {"lookup_key": "alice", "display_name": "Alice", "phone_number": "5550100"},
                {"lookup_key": "bob", "display_name": "Bob", "phone_number": "5550100"},
            ],
        )
        info = await lookup_phone_number(source, access, schema, "5550100")
        assert info == {"name": "Alice"}

    async def test_no_match(
        self, source: SqlTabularSource, access: ContactsAccess, schema: ContactsSchema
    ) -> None:
        assert await lookup_phone_number(source, access, schema, "5550199") == {}

    async def test_missing_table_yields_empty(
        self, source: SqlTabularSource, access: ContactsAccess
    ) -> None:
        schema = ContactsSchema(table="no_such_table")
        assert await lookup_phone_number(source, access, schema, "5550100") == {}

    async def test_access_required(self, schema: ContactsSchema) -> None:
        with pytest.raises(PermissionDenied):
            await lookup_phone_number(MemorySource([]), None, schema, "5550100")
