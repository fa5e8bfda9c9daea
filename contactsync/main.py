"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.middleware.trustedhost import TrustedHostMiddleware

from contactsync import __version__
from contactsync.api.contacts import router as contacts_router
from contactsync.api.health import router as health_router
from contactsync.api.packets import router as packets_router
from contactsync.config import Settings
from contactsync.database import create_engine
from contactsync.exceptions import (
    InternalServerError,
    MalformedRequestError,
    PermissionDenied,
    SourceUnavailableError,
    UnsupportedMessageType,
)
from contactsync.models.base import Base
from contactsync.protocol.contacts_plugin import ContactsPlugin
from contactsync.protocol.dispatcher import PacketDispatcher
from contactsync.sources.sql_source import SqlTabularSource

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def init_protocol(app: FastAPI, engine: AsyncEngine) -> None:
    """Wire the contacts source, plugin and dispatcher into app state."""
    settings: Settings = app.state.settings
    source = SqlTabularSource(engine)
    plugin = ContactsPlugin.from_settings(source, settings)
    if plugin.access is None:
        logger.warning("Contacts access not granted; contact requests will be refused")
    app.state.source = source
    app.state.contacts_plugin = plugin
    app.state.dispatcher = PacketDispatcher([plugin])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime()
    _configure_logging(settings.debug)
    logger.info("Starting contactsync (device=%s, debug=%s)", settings.device_id, settings.debug)

    # Ensure database directory exists
    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine = create_engine(settings)
        app.state.engine = engine
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    init_protocol(app, engine)

    yield

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("contactsync stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="contactsync",
        description="Incremental contact book synchronization between paired devices",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=500)

    trusted_hosts = settings.trusted_hosts or (
        ["localhost", "127.0.0.1", "::1", "test", "testserver"] if settings.debug else []
    )
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

    app.include_router(health_router)
    app.include_router(packets_router)
    app.include_router(contacts_router)

    # Global exception handlers: map transaction failures to HTTP statuses

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(UnsupportedMessageType)
    async def unsupported_message_handler(
        request: Request, exc: UnsupportedMessageType
    ) -> JSONResponse:
        logger.warning("UnsupportedMessageType in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(MalformedRequestError)
    async def malformed_request_handler(
        request: Request, exc: MalformedRequestError
    ) -> JSONResponse:
        logger.warning("MalformedRequestError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(PermissionDenied)
    async def permission_denied_handler(request: Request, exc: PermissionDenied) -> JSONResponse:
        logger.warning("PermissionDenied in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=403, content={"detail": "Contacts access not granted"})

    @app.exception_handler(SourceUnavailableError)
    async def source_unavailable_handler(
        request: Request, exc: SourceUnavailableError
    ) -> JSONResponse:
        logger.error(
            "SourceUnavailableError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(status_code=503, content={"detail": "Contacts source unavailable"})

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "contactsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
