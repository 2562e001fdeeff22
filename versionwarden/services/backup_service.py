"""BackupManager — browse, diff, restore and clean up one deployment run's backup."""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

import structlog

from versionwarden.engines.base import BackupEngine
from versionwarden.engines.models import (
    BackupItem,
    BackupSummary,
    DiffResult,
    RestoreResult,
    RestoreStatus,
)
from versionwarden.services import NotFoundError, RemoteExecutionError

log = structlog.get_logger("versionwarden.backup")

DEFAULT_RETENTION_DAYS = 90


class ExpirationLevel(str, Enum):
    URGENT = "urgent"
    WARNING = "warning"
    NORMAL = "normal"


def classify_expiration(days_left: int) -> ExpirationLevel:
    if days_left <= 7:
        return ExpirationLevel.URGENT
    if days_left <= 30:
        return ExpirationLevel.WARNING
    return ExpirationLevel.NORMAL


@dataclass
class RestoreAllOutcome:
    results: list[RestoreResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def partial(self) -> bool:
        return self.success_count > 0 and self.fail_count > 0


class BackupManager:
    """Operations scoped to the backup set of a single deployment run."""

    def __init__(
        self,
        engine: BackupEngine,
        deployment_run_id: str,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        on_cleared: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._engine = engine
        self.deployment_run_id = deployment_run_id
        self.retention_days = retention_days
        self._on_cleared = on_cleared
        self.summary: BackupSummary | None = None
        self.items: list[BackupItem] = []

    # ── reads ──────────────────────────────────────────────────────────────

    async def get_summary(self) -> BackupSummary:
        summary = await self._engine.get_backup_summary(self.deployment_run_id)
        if summary.expiration_date is None and summary.backup_created_at is not None:
            summary.expiration_date = summary.backup_created_at + timedelta(
                days=self.retention_days
            )
        self.summary = summary
        return summary

    def days_until_expiration(self, now: datetime | None = None) -> int | None:
        if self.summary is None or self.summary.expiration_date is None:
            return None
        now = now or datetime.now(timezone.utc)
        # Partial days count as a whole day left
        remaining = self.summary.expiration_date - now
        return math.ceil(remaining.total_seconds() / 86400)

    def expiration_level(self, now: datetime | None = None) -> ExpirationLevel | None:
        days_left = self.days_until_expiration(now)
        if days_left is None:
            return None
        return classify_expiration(days_left)

    async def list_items(self) -> list[BackupItem]:
        self.items = await self._engine.get_backup_items(self.deployment_run_id)
        return self.items

    @property
    def restorable_items(self) -> list[BackupItem]:
        return [i for i in self.items if i.restore_status is RestoreStatus.NOT_RESTORED]

    async def preview(self, backup_item_id: str) -> str:
        return await self._engine.get_backup_content(backup_item_id)

    async def diff(self, backup_item_id: str) -> DiffResult:
        return await self._engine.get_diff(backup_item_id)

    # ── restore ────────────────────────────────────────────────────────────

    async def restore_item(self, backup_item_id: str) -> RestoreResult:
        """Restore one item. Engine failures come back as an unsuccessful result."""
        try:
            result = await self._engine.restore_item(backup_item_id)
        except (NotFoundError, RemoteExecutionError) as exc:
            log.warning("backup.restore_failed", backup_item_id=backup_item_id, error=str(exc))
            return RestoreResult(
                success=False, backup_item_id=backup_item_id, error_message=str(exc)
            )
        log.info("backup.restored", backup_item_id=backup_item_id, success=result.success)
        return result

    async def restore_all(self) -> RestoreAllOutcome:
        """Restore every item of the set, summarizing partial success.

        When the engine's bulk restore itself fails, each restorable item is
        restored individually instead.
        """
        try:
            results = await self._engine.restore_all(self.deployment_run_id)
        except RemoteExecutionError:
            log.warning(
                "backup.restore_all_fallback",
                deployment_run_id=self.deployment_run_id,
                exc_info=True,
            )
            if not self.items:
                await self.list_items()
            results = []
            for item in self.restorable_items:
                result = await self.restore_item(item.id)
                if result.full_name is None:
                    result = RestoreResult(
                        success=result.success,
                        backup_item_id=item.id,
                        full_name=item.full_name,
                        error_message=result.error_message,
                    )
                results.append(result)

        outcome = RestoreAllOutcome(results=list(results))
        log.info(
            "backup.restore_all",
            deployment_run_id=self.deployment_run_id,
            succeeded=outcome.success_count,
            failed=outcome.fail_count,
        )
        return outcome

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def create_backup(self) -> list[BackupItem]:
        self.items = await self._engine.create_backup_for_deployment(self.deployment_run_id)
        log.info("backup.created", deployment_run_id=self.deployment_run_id, items=len(self.items))
        return self.items

    async def cleanup(self) -> None:
        """Irreversibly delete the backup set and signal that it is gone."""
        await self._engine.cleanup_backup(self.deployment_run_id)
        self.items = []
        self.summary = None
        log.info("backup.cleared", deployment_run_id=self.deployment_run_id)
        if self._on_cleared is not None:
            await self._on_cleared(self.deployment_run_id)
