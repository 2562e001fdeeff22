"""Runtime settings read from ``VERSIONWARDEN_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "postgresql+asyncpg://localhost/versionwarden"
DEFAULT_ENGINE_URL = "http://localhost:8080/api"
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_BACKUP_RETENTION_DAYS = 90


def _env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    engine_url: str = DEFAULT_ENGINE_URL
    engine_token: str | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    backup_retention_days: int = DEFAULT_BACKUP_RETENTION_DAYS
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    auto_create_schema: bool = True
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the environment, falling back to defaults."""
        cors = os.environ.get("VERSIONWARDEN_CORS_ORIGINS", "http://localhost:3000")
        return cls(
            database_url=os.environ.get("VERSIONWARDEN_DATABASE_URL", DEFAULT_DATABASE_URL),
            engine_url=os.environ.get("VERSIONWARDEN_ENGINE_URL", DEFAULT_ENGINE_URL),
            engine_token=os.environ.get("VERSIONWARDEN_ENGINE_TOKEN") or None,
            poll_interval=_env_float("VERSIONWARDEN_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            backup_retention_days=_env_int(
                "VERSIONWARDEN_BACKUP_RETENTION_DAYS", DEFAULT_BACKUP_RETENTION_DAYS
            ),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()],
            auto_create_schema=_env_bool("VERSIONWARDEN_AUTO_CREATE_SCHEMA", True),
            log_level=os.environ.get("VERSIONWARDEN_LOG_LEVEL", "INFO"),
            log_format=os.environ.get("VERSIONWARDEN_LOG_FORMAT", "console"),
        )
