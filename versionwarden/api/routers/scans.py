"""Scans router — start, cancel, switch, poll state and findings."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from versionwarden.api.deps import get_coordinator
from versionwarden.api.schemas.scan import (
    FindingResponse,
    FindingsResponse,
    ScanHistoryItem,
    ScanResponse,
    StartScanRequest,
    StartScanResponse,
)
from versionwarden.coordinator import SessionCoordinator
from versionwarden.engines.models import FindingCategory, Scan, ScanConfig, Severity
from versionwarden.services import NotFoundError
from versionwarden.views import scan_status_tone

router = APIRouter()


def scan_response(scan: Scan) -> ScanResponse:
    return ScanResponse(
        id=scan.id,
        status=scan.status,
        target_api_version=scan.target_api_version,
        included_types=scan.included_types,
        namespace_policy=scan.namespace_policy,
        started_at=scan.started_at,
        total_artifacts=scan.total_artifacts,
        processed_artifacts=scan.processed_artifacts,
        findings_count=scan.findings_count,
        alerts_count=scan.alerts_count,
        progress=scan.progress,
        is_running=scan.is_running,
        tone=scan_status_tone(scan.status),
    )


@router.post("/", response_model=StartScanResponse, status_code=201)
async def start_scan(
    body: StartScanRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> StartScanResponse:
    config = ScanConfig(
        types=body.types,
        target_api_version=body.target_api_version,
        namespace_policy=body.namespace_policy,
        min_api_version=body.min_api_version,
        max_api_version=body.max_api_version,
        baseline_mode=body.baseline_mode,
        include_content=body.include_content,
    )
    scan_id = await coordinator.start_scan(config)
    return StartScanResponse(scan_id=scan_id)


@router.get("/history", response_model=list[ScanHistoryItem])
async def scan_history(
    limit: int = Query(10, ge=1, le=100),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[ScanHistoryItem]:
    entries = await coordinator.recent_scans(limit)
    return [ScanHistoryItem.model_validate(e) for e in entries]


@router.get("/current", response_model=ScanResponse)
async def current_scan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ScanResponse:
    scan = coordinator.ctx.scan
    if scan is None:
        raise NotFoundError("no scan is loaded")
    return scan_response(scan)


@router.post("/current/cancel", status_code=204)
async def cancel_scan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> None:
    await coordinator.cancel_scan()


@router.post("/{scan_id}/select", response_model=ScanResponse)
async def select_scan(
    scan_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ScanResponse:
    scan = await coordinator.select_scan(scan_id)
    return scan_response(scan)


@router.get("/current/findings", response_model=FindingsResponse)
async def current_findings(
    severity: Severity | None = Query(None),
    category: FindingCategory | None = Query(None),
    search: str | None = Query(None),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> FindingsResponse:
    ctx = coordinator.ctx
    if ctx.findings is None or ctx.scan_id is None:
        raise NotFoundError("no findings are loaded")
    result = ctx.findings
    matched = result.filter(severity=severity, category=category, search=search)
    return FindingsResponse(
        scan_id=ctx.scan_id,
        total=result.total,
        has_blocking=result.has_blocking,
        summary={s.value: n for s, n in result.summary.items()},
        findings=[FindingResponse.model_validate(f) for f in matched],
    )
