"""Scan and findings schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from versionwarden.engines.models import (
    FindingCategory,
    NamespacePolicy,
    ScanStatus,
    Severity,
)


class StartScanRequest(BaseModel):
    types: list[str] = Field(
        default_factory=lambda: ["ApexClass", "ApexTrigger", "ApexPage", "ApexComponent"]
    )
    target_api_version: float = 65.0
    namespace_policy: NamespacePolicy = NamespacePolicy.CUSTOM_ONLY
    min_api_version: float | None = None
    max_api_version: float | None = None
    baseline_mode: str = "LastScan"
    include_content: bool = True


class StartScanResponse(BaseModel):
    scan_id: str


class ScanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ScanStatus
    target_api_version: float | None
    included_types: list[str]
    namespace_policy: str | None
    started_at: datetime | None
    total_artifacts: int
    processed_artifacts: int
    findings_count: int
    alerts_count: int
    progress: int
    is_running: bool
    tone: str


class ScanHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: ScanStatus
    display_name: str
    started_at: datetime | None
    findings_count: int


class FindingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    scan_id: str
    artifact_name: str
    category: FindingCategory
    severity: Severity
    is_blocking: bool
    summary: str
    rule_id: str


class FindingsResponse(BaseModel):
    scan_id: str
    total: int
    has_blocking: bool
    summary: dict[str, int]
    findings: list[FindingResponse]
