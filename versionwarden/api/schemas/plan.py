"""Change plan, validation and deployment schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from versionwarden.engines.models import (
    ApplyStatus,
    DeploymentStatus,
    Eligibility,
    IncrementPolicy,
    PlanStatus,
    TestPolicy,
    ValidationStatus,
)


class CreatePlanRequest(BaseModel):
    target_api_version: float = 65.0
    increment_policy: IncrementPolicy = IncrementPolicy.INCREMENTAL_ONLY
    validate_only: bool = False
    test_policy: TestPolicy = TestPolicy.RUN_SPECIFIED_TESTS


class SelectionRequest(BaseModel):
    item_ids: list[str]


class DeployRequest(BaseModel):
    create_backup: bool = False


class DeployResponse(BaseModel):
    deployment_run_id: str


class ChangeItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    unit_number: int
    full_name: str
    artifact_type: str
    current_api_version: float
    target_api_version: float
    eligibility: Eligibility
    apply_status: ApplyStatus
    block_reason: str | None
    validation_status: ValidationStatus
    error_details: str | None


class ValidationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    validated_ids: list[str]
    errors: dict[str, str]
    timestamp: datetime
    passed: bool


class DeploymentRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    plan_id: str
    status: DeploymentStatus
    error_message: str | None
    success_count: int
    fail_count: int
    total_processed: int


class PlanResponse(BaseModel):
    id: str
    source_scan_id: str
    name: str | None
    target_api_version: float
    status: PlanStatus
    tone: str
    increment_policy: IncrementPolicy
    validate_only: bool
    test_policy: TestPolicy
    eligible_items: int
    eligible_count: int
    blocked_count: int
    selected_count: int
    selected_ids: list[str]
    applied_count: int
    failed_count: int
    skipped_count: int
    has_execution_results: bool
    can_validate: bool
    can_deploy: bool
    validation_complete: bool
    validation: ValidationResponse | None
    failure_detail: str | None
    deployment_run: DeploymentRunResponse | None
    items: list[ChangeItemResponse]


class FailureDetailResponse(BaseModel):
    failure_detail: str | None


class PlanHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: PlanStatus
    display_name: str
    source_scan_id: str | None
    item_count: int
