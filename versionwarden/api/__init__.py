"""VersionWarden REST API — FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from versionwarden.api.deps import (
    close_engine_client,
    dispose_engine,
    get_registry,
    get_settings,
    init_engine_client,
    init_session_factory,
)
from versionwarden.api.errors import register_error_handlers
from versionwarden.api.middleware.request_id import RequestIDMiddleware
from versionwarden.api.routers import backups, plans, scans, session
from versionwarden.core.logging import setup_logging


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: DB engine + engine client. Shutdown: stop pollers, close both."""
    await init_session_factory()
    init_engine_client()
    yield
    await get_registry().close_all()
    await close_engine_client()
    await dispose_engine()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    setup_logging(get_settings())

    app = FastAPI(
        title="VersionWarden",
        docs_url="/api/v1/docs",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan,
    )

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health", tags=["ops"])
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(session.router, prefix="/api/v1/session", tags=["session"])
    app.include_router(scans.router, prefix="/api/v1/scans", tags=["scans"])
    app.include_router(plans.router, prefix="/api/v1/plans", tags=["plans"])
    app.include_router(backups.router, prefix="/api/v1/backups", tags=["backups"])

    return app
