"""Database engine for the contacts table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

if TYPE_CHECKING:
    from contactsync.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine the contacts source reads through.

    Each source query opens its own connection, so no session layer is needed.
    """
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
    )
