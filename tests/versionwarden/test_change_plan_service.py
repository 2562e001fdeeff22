"""Tests for ChangePlanService — selection, validate/deploy gates, failure detail."""

from unittest.mock import AsyncMock

import pytest

from versionwarden.engines.base import DeployEngine, PlanEngine
from versionwarden.engines.models import (
    ApplyStatus,
    ChangeItem,
    ChangePlan,
    DeploymentError,
    DeploymentRun,
    DeploymentStatus,
    Eligibility,
    PlanStatus,
    ValidationResult,
    ValidationStatus,
)
from versionwarden.services import NotFoundError, RemoteExecutionError, ValidationError
from versionwarden.services.change_plan_service import (
    GENERIC_DEPLOY_FAILURE,
    ChangePlanService,
    transition,
)
from versionwarden.workspace import PlanWorkspace

ELIGIBLE_IDS = [f"item-{n}" for n in range(1, 11)]
BLOCKED_IDS = ["item-11", "item-12"]


def _plan(status: PlanStatus = PlanStatus.DRAFT, **kw) -> ChangePlan:
    defaults = {
        "id": "plan-1",
        "source_scan_id": "scan-1",
        "target_api_version": 65.0,
        "eligible_items": 10,
    }
    defaults.update(kw)
    return ChangePlan(status=status, **defaults)


def _items() -> list[ChangeItem]:
    items = []
    for n in range(12, 0, -1):
        blocked = n > 10
        items.append(
            ChangeItem(
                id=f"item-{n}",
                plan_id="plan-1",
                unit_number=n,
                full_name=f"Class{n:02d}",
                artifact_type="ApexClass",
                current_api_version=50.0 + n,
                target_api_version=65.0,
                eligibility=Eligibility.BLOCKED if blocked else Eligibility.ELIGIBLE,
                block_reason="managed package" if blocked else None,
            )
        )
    return items


def _make_service(plan: ChangePlan | None = None):
    plan_engine = AsyncMock(spec=PlanEngine)
    deploy_engine = AsyncMock(spec=DeployEngine)
    plan = plan or _plan()
    plan_engine.get_change_plan.return_value = plan
    plan_engine.get_change_items.return_value = _items()
    plan_engine.get_deployment_errors_for_plan.return_value = []
    plan_engine.get_deployment_run_details.return_value = None
    return ChangePlanService(plan_engine, deploy_engine), plan_engine, deploy_engine


async def _validated_workspace(svc, deploy_engine, ids=ELIGIBLE_IDS) -> PlanWorkspace:
    ws = await svc.load_plan("plan-1")
    svc.select_items(ws, ids)
    deploy_engine.validate_plan.return_value = ValidationResult(validated_ids=list(ids))
    await svc.validate_selected(ws)
    return ws


class TestLoad:
    async def test_items_sorted_and_counted(self):
        svc, _, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        assert [i.unit_number for i in ws.items] == list(range(1, 13))
        assert ws.eligible_count == 10
        assert ws.blocked_count == 2
        assert ws.selected_count == 0
        assert ws.plan.eligible_items == ws.eligible_count

    async def test_created_items_start_pending(self):
        svc, plan_engine, _ = _make_service()
        plan_engine.create_change_plan.return_value = "plan-1"
        ws = await svc.create_plan("scan-1", target_api_version=65.0)
        assert len(ws.items) == 12
        assert all(i.apply_status is ApplyStatus.PENDING for i in ws.items)
        assert ws.applied_count == 0
        assert not ws.has_execution_results

    async def test_missing_plan(self):
        svc, plan_engine, _ = _make_service()
        plan_engine.get_change_plan.return_value = None
        with pytest.raises(NotFoundError):
            await svc.load_plan("plan-1")

    async def test_create_requires_scan(self):
        svc, plan_engine, _ = _make_service()
        with pytest.raises(NotFoundError):
            await svc.create_plan(None, target_api_version=65.0)
        plan_engine.create_change_plan.assert_not_awaited()

    async def test_create_loads_new_plan(self):
        svc, plan_engine, _ = _make_service()
        plan_engine.create_change_plan.return_value = "plan-1"
        ws = await svc.create_plan("scan-1", target_api_version=65.0, validate_only=True)
        assert ws.plan.id == "plan-1"
        assert plan_engine.create_change_plan.await_args.kwargs["validate_only"] is True

    async def test_refresh_takes_engine_status_and_prunes_selection(self):
        svc, plan_engine, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_items(ws, ["item-1", "item-2"])
        items = _items()
        for item in items:
            if item.id == "item-2":
                item.eligibility = Eligibility.BLOCKED
        plan_engine.get_change_plan.return_value = _plan(PlanStatus.DEPLOYED)
        plan_engine.get_change_items.return_value = items

        await svc.refresh(ws)
        assert ws.plan.status is PlanStatus.DEPLOYED
        assert ws.selected_ids == {"item-1"}


class TestSelection:
    async def test_blocked_items_are_never_selected(self):
        svc, _, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_items(ws, ["item-1", "item-11"])
        assert ws.selected_ids == {"item-1"}
        assert ws.plan.status is PlanStatus.READY

    async def test_select_all_and_none(self):
        svc, _, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_all_eligible(ws)
        assert ws.selected_count == 10
        assert ws.eligible_selected_ids == ELIGIBLE_IDS
        svc.select_none(ws)
        assert ws.selected_count == 0
        assert ws.plan.status is PlanStatus.DRAFT
        assert not ws.can_validate

    async def test_changing_selection_resets_validation(self):
        svc, _, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        assert ws.can_deploy

        svc.select_items(ws, ELIGIBLE_IDS[:5])
        assert ws.validation is None
        assert not ws.validation_complete
        assert not ws.can_deploy
        assert ws.plan.status is PlanStatus.READY

    async def test_same_selection_keeps_validation(self):
        svc, _, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        svc.select_items(ws, ELIGIBLE_IDS)
        assert ws.validation_complete
        assert ws.plan.status is PlanStatus.VALIDATED

    async def test_selection_locked_while_executing(self):
        svc, _, _ = _make_service(_plan(PlanStatus.EXECUTING))
        ws = await svc.load_plan("plan-1")
        with pytest.raises(ValidationError):
            svc.select_items(ws, ["item-1"])


class TestValidate:
    async def test_gate_requires_selection(self):
        svc, _, deploy_engine = _make_service()
        ws = await svc.load_plan("plan-1")
        with pytest.raises(ValidationError):
            await svc.validate_selected(ws)
        deploy_engine.validate_plan.assert_not_awaited()

    async def test_records_item_results(self):
        svc, _, deploy_engine = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_items(ws, ["item-1", "item-2"])
        deploy_engine.validate_plan.return_value = ValidationResult(
            validated_ids=["item-1"], errors={"item-2": "Invalid type: Foo"}
        )

        result = await svc.validate_selected(ws)
        assert not result.passed
        deploy_engine.validate_plan.assert_awaited_once_with("plan-1", ["item-1", "item-2"])
        by_id = {i.id: i for i in ws.items}
        assert by_id["item-1"].validation_status is ValidationStatus.PASSED
        assert by_id["item-2"].validation_status is ValidationStatus.FAILED
        assert by_id["item-2"].error_details == "Invalid type: Foo"
        assert ws.validation_complete
        assert ws.plan.status is PlanStatus.VALIDATED

    async def test_engine_failure_moves_plan_to_failed(self):
        svc, _, deploy_engine = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_items(ws, ["item-1"])
        deploy_engine.validate_plan.side_effect = RemoteExecutionError("org unreachable")
        with pytest.raises(RemoteExecutionError):
            await svc.validate_selected(ws)
        assert ws.plan.status is PlanStatus.FAILED
        assert ws.failure_detail == "org unreachable"
        assert not ws.validation_complete


class TestDeploy:
    async def test_backup_without_selection_makes_no_remote_call(self):
        svc, _, deploy_engine = _make_service()
        ws = await svc.load_plan("plan-1")
        with pytest.raises(ValidationError):
            await svc.deploy(ws, create_backup=True)
        deploy_engine.execute_plan_with_backup.assert_not_awaited()

    async def test_requires_validation(self):
        svc, _, deploy_engine = _make_service()
        ws = await svc.load_plan("plan-1")
        svc.select_items(ws, ["item-1"])
        with pytest.raises(ValidationError):
            await svc.deploy(ws, create_backup=False)
        deploy_engine.execute_plan_with_backup.assert_not_awaited()

    async def test_success_moves_to_executing(self):
        svc, plan_engine, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine, ELIGIBLE_IDS[:3])
        deploy_engine.execute_plan_with_backup.return_value = "run-1"
        run = DeploymentRun(id="run-1", plan_id="plan-1", status=DeploymentStatus.RUNNING)
        plan_engine.get_deployment_run_details.return_value = run

        run_id = await svc.deploy(ws, create_backup=True)
        assert run_id == "run-1"
        deploy_engine.execute_plan_with_backup.assert_awaited_once_with(
            "plan-1", ELIGIBLE_IDS[:3], create_backup=True, validate_only=False
        )
        assert ws.plan.status is PlanStatus.EXECUTING
        assert ws.deployment_run is run
        assert not ws.validation_complete

    async def test_run_read_failure_keeps_started_run(self):
        svc, plan_engine, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine, ELIGIBLE_IDS[:3])
        deploy_engine.execute_plan_with_backup.return_value = "run-1"
        plan_engine.get_deployment_run_details.side_effect = RemoteExecutionError("timeout")

        assert await svc.deploy(ws, create_backup=True) == "run-1"
        assert ws.plan.status is PlanStatus.EXECUTING
        assert ws.deployment_run is None
        assert ws.failure_detail is None

    async def test_failure_reports_item_errors(self):
        svc, plan_engine, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        deploy_engine.execute_plan_with_backup.side_effect = RemoteExecutionError("HTTP 500")
        plan_engine.get_deployment_errors_for_plan.return_value = [
            DeploymentError(full_name="Class01", error_details="Variable does not exist: x"),
        ]

        with pytest.raises(RemoteExecutionError, match="Class01: Variable does not exist: x"):
            await svc.deploy(ws, create_backup=False)
        assert ws.plan.status is PlanStatus.FAILED

    async def test_failure_summarizes_first_three_item_errors(self):
        svc, plan_engine, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        deploy_engine.execute_plan_with_backup.side_effect = RemoteExecutionError("HTTP 500")
        plan_engine.get_deployment_errors_for_plan.return_value = [
            DeploymentError(full_name=f"Class0{n}", error_details=f"error {n}") for n in range(1, 6)
        ]

        with pytest.raises(RemoteExecutionError):
            await svc.deploy(ws, create_backup=False)
        assert ws.failure_detail == (
            "Class01: error 1; Class02: error 2; Class03: error 3 (+2 more)"
        )

    async def test_failure_falls_back_to_engine_message(self):
        svc, _, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        deploy_engine.execute_plan_with_backup.side_effect = RemoteExecutionError("quota exceeded")
        with pytest.raises(RemoteExecutionError, match="quota exceeded"):
            await svc.deploy(ws, create_backup=False)

    async def test_failure_generic_when_nothing_known(self):
        svc, _, deploy_engine = _make_service()
        ws = await _validated_workspace(svc, deploy_engine)
        deploy_engine.execute_plan_with_backup.side_effect = RemoteExecutionError("")
        with pytest.raises(RemoteExecutionError):
            await svc.deploy(ws, create_backup=False)
        assert ws.failure_detail == GENERIC_DEPLOY_FAILURE


class TestFailureDetail:
    async def test_run_level_message_preferred(self):
        svc, plan_engine, _ = _make_service(_plan(PlanStatus.FAILED))
        plan_engine.get_deployment_run_details.return_value = DeploymentRun(
            id="run-1",
            plan_id="plan-1",
            status=DeploymentStatus.FAILED,
            error_message="Test coverage below 75%",
        )
        ws = await svc.load_plan("plan-1", deployment_run_id="run-1")
        assert ws.failure_detail == "Test coverage below 75%"
        plan_engine.get_deployment_errors_for_plan.assert_not_awaited()

    async def test_cached_detail_makes_no_remote_call(self):
        svc, plan_engine, _ = _make_service(_plan(PlanStatus.FAILED))
        ws = await svc.load_plan("plan-1")
        calls = plan_engine.get_deployment_errors_for_plan.await_count

        assert await svc.load_failure_detail(ws) == GENERIC_DEPLOY_FAILURE
        assert plan_engine.get_deployment_errors_for_plan.await_count == calls

    async def test_not_failed_clears_detail(self):
        svc, plan_engine, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        ws.failure_detail = "stale"
        assert await svc.load_failure_detail(ws) is None
        assert ws.failure_detail is None
        plan_engine.get_deployment_errors_for_plan.assert_not_awaited()

    async def test_lookup_error_falls_back(self):
        svc, plan_engine, _ = _make_service(_plan(PlanStatus.FAILED))
        plan_engine.get_deployment_errors_for_plan.side_effect = RemoteExecutionError("down")
        ws = await svc.load_plan("plan-1")
        assert ws.failure_detail == GENERIC_DEPLOY_FAILURE


class TestResetAndCancel:
    async def test_reset_only_from_failed(self):
        svc, plan_engine, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        with pytest.raises(ValidationError):
            await svc.reset_for_retry(ws)
        plan_engine.reset_plan_for_retry.assert_not_awaited()

    async def test_reset_returns_to_draft(self):
        plan = _plan(PlanStatus.FAILED)
        svc, plan_engine, _ = _make_service(plan)
        ws = await svc.load_plan("plan-1")
        assert ws.failure_detail

        await svc.reset_for_retry(ws)
        plan_engine.reset_plan_for_retry.assert_awaited_once_with("plan-1")
        assert ws.plan.status is PlanStatus.DRAFT
        assert ws.failure_detail is None
        assert ws.deployment_run is None
        assert ws.eligible_count == 10

    async def test_cancel(self):
        svc, plan_engine, _ = _make_service()
        ws = await svc.load_plan("plan-1")
        await svc.cancel_plan(ws)
        plan_engine.cancel_change_plan.assert_awaited_once_with("plan-1")
        assert ws.plan.status is PlanStatus.CANCELLED

    async def test_cancel_terminal_plan_rejected(self):
        svc, plan_engine, _ = _make_service(_plan(PlanStatus.DEPLOYED))
        ws = await svc.load_plan("plan-1")
        with pytest.raises(ValidationError, match="terminal"):
            await svc.cancel_plan(ws)
        plan_engine.cancel_change_plan.assert_not_awaited()


class TestTransition:
    def test_invalid_transition(self):
        ws = PlanWorkspace(plan=_plan(PlanStatus.DRAFT))
        with pytest.raises(ValidationError, match="invalid transition"):
            transition(ws, PlanStatus.DEPLOYED)

    def test_leaving_failed_clears_detail(self):
        ws = PlanWorkspace(plan=_plan(PlanStatus.FAILED), failure_detail="boom")
        transition(ws, PlanStatus.DRAFT)
        assert ws.failure_detail is None

    def test_same_status_is_noop(self):
        ws = PlanWorkspace(plan=_plan(PlanStatus.DEPLOYED))
        transition(ws, PlanStatus.DEPLOYED)
        assert ws.plan.status is PlanStatus.DEPLOYED
