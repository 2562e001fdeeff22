"""Backups router — summary, items, preview, diff, restore, create, cleanup."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from versionwarden.api.deps import get_coordinator
from versionwarden.api.schemas.backup import (
    BackupContentResponse,
    BackupItemResponse,
    BackupSummaryResponse,
    DiffResponse,
    RestoreAllResponse,
    RestoreResultResponse,
)
from versionwarden.coordinator import SessionCoordinator
from versionwarden.services.backup_service import BackupManager

router = APIRouter()


def summary_response(manager: BackupManager) -> BackupSummaryResponse:
    summary = manager.summary
    level = manager.expiration_level()
    return BackupSummaryResponse(
        deployment_run_id=manager.deployment_run_id,
        backup_created_at=summary.backup_created_at if summary else None,
        expiration_date=summary.expiration_date if summary else None,
        days_until_expiration=manager.days_until_expiration(),
        expiration_level=level.value if level else None,
        item_count=len(manager.items),
    )


@router.get("/current", response_model=BackupSummaryResponse)
async def get_summary(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BackupSummaryResponse:
    manager = coordinator.require_backup()
    await manager.get_summary()
    return summary_response(manager)


@router.post("/current", response_model=BackupSummaryResponse, status_code=201)
async def create_backup(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BackupSummaryResponse:
    manager = await coordinator.create_backup()
    return summary_response(manager)


@router.delete("/current", status_code=204)
async def cleanup_backup(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> None:
    await coordinator.cleanup_backup()


@router.get("/current/items", response_model=list[BackupItemResponse])
async def list_items(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[BackupItemResponse]:
    items = await coordinator.require_backup().list_items()
    return [BackupItemResponse.model_validate(i) for i in items]


@router.post("/current/restore-all", response_model=RestoreAllResponse)
async def restore_all(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> RestoreAllResponse:
    outcome = await coordinator.restore_all()
    return RestoreAllResponse(
        results=[RestoreResultResponse.model_validate(r) for r in outcome.results],
        success_count=outcome.success_count,
        fail_count=outcome.fail_count,
    )


@router.get("/items/{backup_item_id}/content", response_model=BackupContentResponse)
async def preview(
    backup_item_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> BackupContentResponse:
    content = await coordinator.require_backup().preview(backup_item_id)
    return BackupContentResponse(backup_item_id=backup_item_id, content=content)


@router.get("/items/{backup_item_id}/diff", response_model=DiffResponse)
async def diff(
    backup_item_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> DiffResponse:
    result = await coordinator.require_backup().diff(backup_item_id)
    return DiffResponse.model_validate(result)


@router.post("/items/{backup_item_id}/restore", response_model=RestoreResultResponse)
async def restore_item(
    backup_item_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> RestoreResultResponse:
    result = await coordinator.restore_item(backup_item_id)
    return RestoreResultResponse.model_validate(result)
