"""Plans router — create/select, selection, validate, deploy, recovery."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query

from versionwarden.api.deps import get_coordinator
from versionwarden.api.schemas.plan import (
    ChangeItemResponse,
    CreatePlanRequest,
    DeploymentRunResponse,
    DeployRequest,
    DeployResponse,
    FailureDetailResponse,
    PlanHistoryItem,
    PlanResponse,
    SelectionRequest,
    ValidationResponse,
)
from versionwarden.coordinator import SessionCoordinator
from versionwarden.engines.models import Eligibility
from versionwarden.views import plan_status_tone
from versionwarden.workspace import PlanWorkspace

router = APIRouter()

SortKey = Literal["unit_number", "full_name", "artifact_type", "current_api_version", "apply_status"]


def plan_response(ws: PlanWorkspace) -> PlanResponse:
    plan = ws.plan
    return PlanResponse(
        id=plan.id,
        source_scan_id=plan.source_scan_id,
        name=plan.name,
        target_api_version=plan.target_api_version,
        status=plan.status,
        tone=plan_status_tone(plan.status),
        increment_policy=plan.increment_policy,
        validate_only=plan.validate_only,
        test_policy=plan.test_policy,
        eligible_items=plan.eligible_items,
        eligible_count=ws.eligible_count,
        blocked_count=ws.blocked_count,
        selected_count=ws.selected_count,
        selected_ids=ws.eligible_selected_ids,
        applied_count=ws.applied_count,
        failed_count=ws.failed_count,
        skipped_count=ws.skipped_count,
        has_execution_results=ws.has_execution_results,
        can_validate=ws.can_validate,
        can_deploy=ws.can_deploy,
        validation_complete=ws.validation_complete,
        validation=ValidationResponse.model_validate(ws.validation) if ws.validation else None,
        failure_detail=ws.failure_detail,
        deployment_run=(
            DeploymentRunResponse.model_validate(ws.deployment_run) if ws.deployment_run else None
        ),
        items=[ChangeItemResponse.model_validate(i) for i in ws.items],
    )


@router.post("/", response_model=PlanResponse, status_code=201)
async def create_plan(
    body: CreatePlanRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    ws = await coordinator.create_plan(
        target_api_version=body.target_api_version,
        increment_policy=body.increment_policy,
        validate_only=body.validate_only,
        test_policy=body.test_policy,
    )
    return plan_response(ws)


@router.get("/history", response_model=list[PlanHistoryItem])
async def plan_history(
    limit: int = Query(10, ge=1, le=100),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[PlanHistoryItem]:
    entries = await coordinator.plan_history(limit)
    return [PlanHistoryItem.model_validate(e) for e in entries]


@router.get("/current", response_model=PlanResponse)
async def current_plan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(coordinator.require_plan())


@router.get("/current/items", response_model=list[ChangeItemResponse])
async def current_items(
    eligibility: Eligibility | None = Query(None),
    sort_by: SortKey = Query("unit_number"),
    descending: bool = Query(False),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[ChangeItemResponse]:
    items = coordinator.filtered_items(
        eligibility=eligibility, sort_by=sort_by, descending=descending
    )
    return [ChangeItemResponse.model_validate(i) for i in items]


@router.post("/{plan_id}/select", response_model=PlanResponse)
async def select_plan(
    plan_id: str,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(await coordinator.select_plan(plan_id))


# ── selection ─────────────────────────────────────────────────────────────


@router.put("/current/selection", response_model=PlanResponse)
async def select_items(
    body: SelectionRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(coordinator.select_items(body.item_ids))


@router.post("/current/selection/all", response_model=PlanResponse)
async def select_all(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(coordinator.select_all_eligible())


@router.delete("/current/selection", response_model=PlanResponse)
async def select_none(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(coordinator.select_none())


# ── validate / deploy ─────────────────────────────────────────────────────


@router.post("/current/validate", response_model=ValidationResponse)
async def validate(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ValidationResponse:
    result = await coordinator.validate()
    return ValidationResponse.model_validate(result)


@router.post("/current/deploy", response_model=DeployResponse)
async def deploy(
    body: DeployRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> DeployResponse:
    run_id = await coordinator.deploy(create_backup=body.create_backup)
    return DeployResponse(deployment_run_id=run_id)


# ── recovery ──────────────────────────────────────────────────────────────


@router.get("/current/failure", response_model=FailureDetailResponse)
async def failure_detail(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> FailureDetailResponse:
    return FailureDetailResponse(failure_detail=await coordinator.load_failure_detail())


@router.post("/current/reset", response_model=PlanResponse)
async def reset_plan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(await coordinator.reset_plan())


@router.post("/current/cancel", response_model=PlanResponse)
async def cancel_plan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(await coordinator.cancel_plan())


@router.post("/current/refresh", response_model=PlanResponse)
async def refresh_plan(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> PlanResponse:
    return plan_response(await coordinator.refresh_plan())
