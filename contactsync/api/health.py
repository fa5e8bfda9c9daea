"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text

from contactsync import __version__
from contactsync.api.deps import get_source
from contactsync.sources.sql_source import SqlTabularSource

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    source: Annotated[SqlTabularSource, Depends(get_source)],
) -> HealthResponse:
    """Health check endpoint for monitoring."""
    db_status = "ok"
    try:
        async with source.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    return HealthResponse(
        status="ok" if db_status == "ok" else "degraded",
        version=__version__,
        database=db_status,
    )
