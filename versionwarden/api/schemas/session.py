"""Session state schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class StepSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label: str
    description: str
    is_completed: bool
    is_current: bool
    is_disabled: bool


class NoticeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: str
    title: str
    message: str


class SessionResponse(BaseModel):
    owner_id: str
    workflow_step: int
    completed_steps: list[int]
    progress_label: str
    progress_percentage: int
    steps: list[StepSchema]
    current_scan_id: str | None
    current_change_plan_id: str | None
    current_deployment_run_id: str | None
    has_backup: bool
    has_findings: bool
    is_polling: bool
    notices: list[NoticeSchema]
