"""Backup and restore schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from versionwarden.engines.models import RestoreStatus


class BackupSummaryResponse(BaseModel):
    deployment_run_id: str
    backup_created_at: datetime | None
    expiration_date: datetime | None
    days_until_expiration: int | None
    expiration_level: str | None
    item_count: int


class BackupItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    deployment_run_id: str
    full_name: str
    artifact_type: str
    original_api_version: float | None
    backup_created_at: datetime | None
    expiration_date: datetime | None
    restore_status: RestoreStatus
    restored_at: datetime | None


class BackupContentResponse(BaseModel):
    backup_item_id: str
    content: str


class DiffResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    has_content_changes: bool
    has_metadata_changes: bool
    has_changes: bool
    content_diff: str | None


class RestoreResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    backup_item_id: str | None
    full_name: str | None
    error_message: str | None


class RestoreAllResponse(BaseModel):
    results: list[RestoreResultResponse]
    success_count: int
    fail_count: int
