"""Dependency injection — session factory, engine client, per-owner coordinators."""

from __future__ import annotations

import asyncio

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from versionwarden.coordinator import SessionCoordinator
from versionwarden.core.config import Settings
from versionwarden.core.database import build_engine, build_session_factory, create_schema
from versionwarden.dao.session_dao import WorkflowSessionDAO
from versionwarden.engines.remote_client import RemoteEngineClient
from versionwarden.scan_monitor import ScanMonitor
from versionwarden.services import ValidationError
from versionwarden.services.change_plan_service import ChangePlanService
from versionwarden.services.findings_service import FindingsService
from versionwarden.services.session_service import SessionService

# ---------------------------------------------------------------------------
# DAO / service singletons
# ---------------------------------------------------------------------------
_session_dao = WorkflowSessionDAO()
_session_service = SessionService(_session_dao)

# ---------------------------------------------------------------------------
# Engine / session factory / engine client (initialised by app lifespan)
# ---------------------------------------------------------------------------
_settings: Settings | None = None
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_engine_client: RemoteEngineClient | None = None


def get_settings() -> Settings:
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (for testing)."""
    global _settings  # noqa: PLW0603
    _settings = settings


async def init_session_factory(
    database_url: str | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory. Called once at startup."""
    global _engine, _session_factory  # noqa: PLW0603
    settings = get_settings()
    _engine = build_engine(database_url or settings.database_url)
    if settings.auto_create_schema:
        await create_schema(_engine)
    _session_factory = build_session_factory(_engine)
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the async engine, closing all pooled connections."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def set_session_factory(factory: async_sessionmaker[AsyncSession]) -> None:
    """Override session factory (for testing)."""
    global _session_factory  # noqa: PLW0603
    _session_factory = factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("call init_session_factory() before handling requests")
    return _session_factory


def init_engine_client() -> RemoteEngineClient:
    global _engine_client  # noqa: PLW0603
    settings = get_settings()
    _engine_client = RemoteEngineClient(settings.engine_url, settings.engine_token)
    return _engine_client


async def close_engine_client() -> None:
    global _engine_client  # noqa: PLW0603
    if _engine_client is not None:
        await _engine_client.close()
        _engine_client = None


def set_engine_client(client: RemoteEngineClient) -> None:
    """Override the engine client (for testing)."""
    global _engine_client  # noqa: PLW0603
    _engine_client = client


def get_engine_client() -> RemoteEngineClient:
    if _engine_client is None:
        raise RuntimeError("call init_engine_client() before handling requests")
    return _engine_client


def get_session_service() -> SessionService:
    return _session_service


# ---------------------------------------------------------------------------
# Coordinators, one per session owner
# ---------------------------------------------------------------------------


class CoordinatorRegistry:
    """Keeps one attached :class:`SessionCoordinator` per owner id."""

    def __init__(self) -> None:
        self._coordinators: dict[str, SessionCoordinator] = {}
        # First attach is serialized per owner only
        self._attach_locks: dict[str, asyncio.Lock] = {}

    def build(self, owner_id: str) -> SessionCoordinator:
        settings = get_settings()
        client = get_engine_client()
        return SessionCoordinator(
            owner_id,
            session_factory=get_session_factory(),
            session_service=_session_service,
            scan_monitor=ScanMonitor(client, interval=settings.poll_interval),
            findings_service=FindingsService(client),
            plan_service=ChangePlanService(client, client),
            backup_engine=client,
            retention_days=settings.backup_retention_days,
        )

    async def get(self, owner_id: str) -> SessionCoordinator:
        coordinator = self._coordinators.get(owner_id)
        if coordinator is not None:
            return coordinator
        lock = self._attach_locks.setdefault(owner_id, asyncio.Lock())
        async with lock:
            coordinator = self._coordinators.get(owner_id)
            if coordinator is None:
                coordinator = self.build(owner_id)
                await coordinator.attach()
                self._coordinators[owner_id] = coordinator
            return coordinator

    async def close_all(self) -> None:
        coordinators = list(self._coordinators.values())
        self._coordinators.clear()
        self._attach_locks.clear()
        for coordinator in coordinators:
            await coordinator.close()


_registry = CoordinatorRegistry()


def get_registry() -> CoordinatorRegistry:
    return _registry


async def get_owner_id(x_session_owner: str = Header(...)) -> str:
    owner_id = x_session_owner.strip()
    if not owner_id:
        raise ValidationError("X-Session-Owner header must not be empty")
    return owner_id


async def get_coordinator(
    owner_id: str = Depends(get_owner_id),
    registry: CoordinatorRegistry = Depends(get_registry),
) -> SessionCoordinator:
    return await registry.get(owner_id)
