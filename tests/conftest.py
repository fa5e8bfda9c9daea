"""Shared test fixtures for contactsync."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from contactsync.config import ContactsSchema, Settings
from contactsync.database import create_engine as create_db_engine
from contactsync.main import create_app, init_protocol
from contactsync.models.base import Base
from contactsync.models.contact import RawContact
from contactsync.services.projection_service import ContactsAccess
from contactsync.sources.sql_source import SqlTabularSource

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Mapping, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

TEST_DEVICE_ID = "test_device_0123"


def make_vcard(name: str, *extra_lines: str) -> str:
    """Build a minimal vCard 3.0 body for ``name``."""
    lines = ["BEGIN:VCARD", "VERSION:3.0", f"FN:{name}", *extra_lines, "END:VCARD"]
    return "\n".join(lines) + "\n"


async def insert_contacts(engine: AsyncEngine, rows: Sequence[Mapping[str, Any]]) -> None:
    """Insert raw contact rows; several rows may share a lookup_key."""
    async with engine.begin() as conn:
        for row in rows:
            await conn.execute(insert(RawContact).values(**row))


class MemoryRow:
    """In-memory row whose cells carry an explicit (tag, value) pair."""

    def __init__(self, cells: Mapping[str, tuple[str, Any]]) -> None:
        self.cells = dict(cells)

    def column_type(self, name: str) -> str | None:
        cell = self.cells.get(name)
        return cell[0] if cell is not None else None

    def get(self, name: str) -> Any:
        cell = self.cells.get(name)
        return cell[1] if cell is not None else None


class MemorySource:
    """Tabular source over a list of MemoryRows that records its usage."""

    def __init__(self, rows: Sequence[Mapping[str, tuple[str, Any]]] = ()) -> None:
        self.rows = [MemoryRow(cells) for cells in rows]
        self.queries: list[tuple[str, list[str]]] = []
        self.open_cursors = 0

    @asynccontextmanager
    async def query(
        self,
        table_name: str,
        columns: Sequence[str],
        filter: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[AsyncIterator[MemoryRow]]:
        self.queries.append((table_name, list(columns)))
        self.open_cursors += 1
        try:
            yield self._iter_rows(filter or {})
        finally:
            self.open_cursors -= 1

    async def _iter_rows(self, filter: Mapping[str, Any]) -> AsyncIterator[MemoryRow]:
        for row in self.rows:
            if all(row.get(key) == value for key, value in filter.items()):
                yield row


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    rows: Sequence[Mapping[str, Any]] = (),
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (schema, source,
    dispatcher) because ASGITransport does not trigger it.
    """
    app = create_app(settings)
    settings.validate_runtime()

    engine = create_db_engine(settings)
    app.state.engine = engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await insert_contacts(engine, rows)

    init_protocol(app, engine)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await engine.dispose()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        _env_file=None,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        device_id=TEST_DEVICE_ID,
    )


@pytest.fixture
def schema() -> ContactsSchema:
    return ContactsSchema()


@pytest.fixture
def access() -> ContactsAccess:
    return ContactsAccess()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the contacts schema."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def source(db_engine: AsyncEngine) -> SqlTabularSource:
    return SqlTabularSource(db_engine)
