"""Session router — workflow state, attach, clear."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from versionwarden.api.deps import get_coordinator
from versionwarden.api.schemas.session import NoticeSchema, SessionResponse, StepSchema
from versionwarden.coordinator import SessionCoordinator

router = APIRouter()


def session_response(coordinator: SessionCoordinator) -> SessionResponse:
    ctx = coordinator.ctx
    progress = ctx.progress
    return SessionResponse(
        owner_id=ctx.owner_id,
        workflow_step=ctx.workflow_step,
        completed_steps=list(ctx.completed_steps),
        progress_label=progress.label,
        progress_percentage=progress.percentage,
        steps=[StepSchema.model_validate(step) for step in progress.steps],
        current_scan_id=ctx.scan_id,
        current_change_plan_id=ctx.change_plan_id,
        current_deployment_run_id=ctx.deployment_run_id,
        has_backup=ctx.has_backup,
        has_findings=ctx.has_findings,
        is_polling=coordinator.is_polling,
        notices=[NoticeSchema.model_validate(n) for n in ctx.notices],
    )


@router.get("/", response_model=SessionResponse)
async def get_state(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionResponse:
    return session_response(coordinator)


@router.post("/attach", response_model=SessionResponse)
async def attach(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionResponse:
    await coordinator.attach()
    return session_response(coordinator)


@router.delete("/", response_model=SessionResponse)
async def clear_session(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionResponse:
    await coordinator.clear_session()
    return session_response(coordinator)


@router.post("/notices/drain", response_model=list[NoticeSchema])
async def drain_notices(
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> list[NoticeSchema]:
    return [NoticeSchema.model_validate(n) for n in coordinator.ctx.drain_notices()]
