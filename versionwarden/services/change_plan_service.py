"""ChangePlanService — selection, validate-then-deploy protocol, failure detail."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from versionwarden.engines.base import DeployEngine, PlanEngine
from versionwarden.engines.models import (
    DeploymentRun,
    IncrementPolicy,
    PlanHistoryEntry,
    PlanStatus,
    TestPolicy,
    ValidationResult,
    ValidationStatus,
)
from versionwarden.services import (
    NotFoundError,
    RemoteExecutionError,
    ServiceError,
    ValidationError,
)
from versionwarden.workspace import PlanWorkspace

log = structlog.get_logger("versionwarden.plan")

GENERIC_DEPLOY_FAILURE = "Deployment failed"
MAX_ITEM_ERRORS = 3

# Deployed and Cancelled are terminal (absent from the table).
_VALID_TRANSITIONS: dict[PlanStatus, set[PlanStatus]] = {
    PlanStatus.DRAFT: {
        PlanStatus.READY,
        PlanStatus.VALIDATED,
        PlanStatus.FAILED,
        PlanStatus.CANCELLED,
    },
    PlanStatus.READY: {
        PlanStatus.DRAFT,
        PlanStatus.VALIDATED,
        PlanStatus.FAILED,
        PlanStatus.CANCELLED,
    },
    PlanStatus.VALIDATED: {
        PlanStatus.DRAFT,
        PlanStatus.READY,
        PlanStatus.DEPLOYING,
        PlanStatus.FAILED,
        PlanStatus.CANCELLED,
    },
    PlanStatus.DEPLOYING: {
        PlanStatus.EXECUTING,
        PlanStatus.DEPLOYED,
        PlanStatus.FAILED,
        PlanStatus.CANCELLED,
    },
    PlanStatus.EXECUTING: {PlanStatus.DEPLOYED, PlanStatus.FAILED, PlanStatus.CANCELLED},
    PlanStatus.FAILED: {PlanStatus.DRAFT, PlanStatus.CANCELLED},
}

_SELECTABLE = {PlanStatus.DRAFT, PlanStatus.READY, PlanStatus.VALIDATED, PlanStatus.FAILED}


def transition(ws: PlanWorkspace, status: PlanStatus) -> None:
    """Move the workspace's plan to *status*, enforcing the transition table."""
    current = ws.plan.status
    if current is status:
        return
    allowed = _VALID_TRANSITIONS.get(current)
    if allowed is None:
        raise ValidationError(f"cannot transition from terminal status '{current.value}'")
    if status not in allowed:
        raise ValidationError(f"invalid transition: '{current.value}' → '{status.value}'")
    ws.plan.status = status
    if status is not PlanStatus.FAILED:
        ws.failure_detail = None


class ChangePlanService:
    """Stateless service over :class:`PlanWorkspace` objects."""

    def __init__(self, plan_engine: PlanEngine, deploy_engine: DeployEngine) -> None:
        self._plans = plan_engine
        self._deployer = deploy_engine

    # ── load ───────────────────────────────────────────────────────────────

    async def create_plan(
        self,
        scan_id: str | None,
        *,
        target_api_version: float,
        increment_policy: IncrementPolicy = IncrementPolicy.INCREMENTAL_ONLY,
        validate_only: bool = False,
        test_policy: TestPolicy = TestPolicy.RUN_SPECIFIED_TESTS,
    ) -> PlanWorkspace:
        """Ask the engine to build a plan from *scan_id* and load it.

        Raises :class:`NotFoundError` if no scan is given.
        """
        if not scan_id:
            raise NotFoundError("no scan selected for the change plan")
        plan_id = await self._plans.create_change_plan(
            scan_id,
            target_api_version=target_api_version,
            increment_policy=increment_policy,
            validate_only=validate_only,
            test_policy=test_policy,
        )
        log.info("plan.created", plan_id=plan_id, scan_id=scan_id)
        return await self.load_plan(plan_id)

    async def load_plan(
        self, plan_id: str, deployment_run_id: str | None = None
    ) -> PlanWorkspace:
        """Load a plan, its items and (optionally) its latest deployment run.

        Raises :class:`NotFoundError` if the plan no longer exists.
        """
        plan = await self._plans.get_change_plan(plan_id)
        if plan is None:
            raise NotFoundError("change plan not found")
        items = await self._plans.get_change_items(plan_id)
        ws = PlanWorkspace(plan=plan, items=sorted(items, key=lambda i: i.unit_number))
        if deployment_run_id:
            ws.deployment_run = await self._plans.get_deployment_run_details(deployment_run_id)
        if plan.status is PlanStatus.FAILED:
            await self.load_failure_detail(ws)
        return ws

    async def refresh(self, ws: PlanWorkspace) -> PlanWorkspace:
        """Reload plan and items; the engine's status wins over the local one."""
        plan = await self._plans.get_change_plan(ws.plan.id)
        if plan is None:
            raise NotFoundError("change plan not found")
        ws.plan = plan
        ws.items = sorted(await self._plans.get_change_items(plan.id), key=lambda i: i.unit_number)
        ws.selected_ids &= ws.eligible_ids
        if plan.status is PlanStatus.FAILED:
            await self.load_failure_detail(ws)
        else:
            ws.failure_detail = None
        return ws

    # ── selection ──────────────────────────────────────────────────────────

    def select_items(self, ws: PlanWorkspace, ids: Iterable[str]) -> None:
        """Replace the selection with the eligible members of *ids*."""
        self._apply_selection(ws, set(ids) & ws.eligible_ids)

    def select_all_eligible(self, ws: PlanWorkspace) -> None:
        self._apply_selection(ws, ws.eligible_ids)

    def select_none(self, ws: PlanWorkspace) -> None:
        self._apply_selection(ws, set())

    def _apply_selection(self, ws: PlanWorkspace, selected: set[str]) -> None:
        if selected == ws.selected_ids:
            return
        if ws.plan.status not in _SELECTABLE:
            raise ValidationError(
                f"selection cannot change while the plan is {ws.plan.status.value}"
            )
        ws.selected_ids = selected
        ws.validation = None
        ws.validation_complete = False

        status = ws.plan.status
        if not selected and status in (PlanStatus.READY, PlanStatus.VALIDATED):
            transition(ws, PlanStatus.DRAFT)
        elif selected and status is PlanStatus.DRAFT:
            transition(ws, PlanStatus.READY)
        elif selected and status is PlanStatus.VALIDATED:
            transition(ws, PlanStatus.READY)

    # ── validate / deploy ──────────────────────────────────────────────────

    async def validate_selected(self, ws: PlanWorkspace) -> ValidationResult:
        """Run the engine's check-only pass over the eligible selection.

        Per-item errors are recorded on the result and still complete
        validation. A failure of the engine itself moves the plan to Failed.
        """
        if not ws.can_validate:
            raise ValidationError("select at least one eligible item in a Draft or Ready plan")
        item_ids = ws.eligible_selected_ids
        try:
            result = await self._deployer.validate_plan(ws.plan.id, item_ids)
        except RemoteExecutionError as exc:
            transition(ws, PlanStatus.FAILED)
            ws.failure_detail = str(exc) or "Validation failed"
            log.warning("plan.validate_failed", plan_id=ws.plan.id, error=str(exc))
            raise

        for item in ws.items:
            if item.id in result.errors:
                item.validation_status = ValidationStatus.FAILED
                item.error_details = result.errors[item.id]
            elif item.id in item_ids:
                item.validation_status = ValidationStatus.PASSED
        ws.validation = result
        ws.validation_complete = True
        transition(ws, PlanStatus.VALIDATED)
        log.info(
            "plan.validated",
            plan_id=ws.plan.id,
            validated=len(result.validated_ids),
            errors=len(result.errors),
        )
        return result

    async def deploy(self, ws: PlanWorkspace, *, create_backup: bool) -> str:
        """Deploy the validated selection and return the deployment run id.

        On engine failure the plan moves to Failed and the error re-raised
        carries the richest detail available. Once the engine has accepted
        the run, failing to read it back leaves the plan Executing and
        still returns the run id.
        """
        item_ids = ws.eligible_selected_ids
        if create_backup and not item_ids:
            raise ValidationError("select at least one item to back up before deploying")
        if not ws.can_deploy:
            raise ValidationError("validate an eligible selection before deploying")
        transition(ws, PlanStatus.DEPLOYING)

        try:
            run_id = await self._deployer.execute_plan_with_backup(
                ws.plan.id,
                item_ids,
                create_backup=create_backup,
                validate_only=ws.plan.validate_only,
            )
        except RemoteExecutionError as exc:
            transition(ws, PlanStatus.FAILED)
            ws.failure_detail = await self._collect_failure_detail(
                ws.plan.id, None, fallback=str(exc) or None
            )
            log.warning("plan.deploy_failed", plan_id=ws.plan.id, error=ws.failure_detail)
            raise RemoteExecutionError(ws.failure_detail) from exc

        transition(ws, PlanStatus.EXECUTING)
        ws.validation_complete = False
        log.info(
            "plan.deploy_started",
            plan_id=ws.plan.id,
            deployment_run_id=run_id,
            items=len(item_ids),
            create_backup=create_backup,
        )
        # The run exists from here on; a failed read must not hide its id
        try:
            ws.deployment_run = await self._plans.get_deployment_run_details(run_id)
            await self.refresh(ws)
        except ServiceError:
            log.warning(
                "plan.deploy_refresh_failed",
                plan_id=ws.plan.id,
                deployment_run_id=run_id,
                exc_info=True,
            )
        return run_id

    # ── failure handling ───────────────────────────────────────────────────

    async def load_failure_detail(
        self, ws: PlanWorkspace, deployment_run_id: str | None = None
    ) -> str | None:
        """Fetch and cache the failure message of a Failed plan.

        Makes no remote call when the plan is not Failed or a detail is
        already cached.
        """
        if ws.plan.status is not PlanStatus.FAILED:
            ws.failure_detail = None
            return None
        if ws.failure_detail:
            return ws.failure_detail
        if deployment_run_id is None and ws.deployment_run is not None:
            deployment_run_id = ws.deployment_run.id
        ws.failure_detail = await self._collect_failure_detail(ws.plan.id, deployment_run_id)
        return ws.failure_detail

    async def _collect_failure_detail(
        self, plan_id: str, deployment_run_id: str | None, *, fallback: str | None = None
    ) -> str:
        """Run-level message, else the first item errors, else *fallback*."""
        try:
            if deployment_run_id:
                run = await self._plans.get_deployment_run_details(deployment_run_id)
                if run is not None and run.error_message:
                    return run.error_message
            errors = await self._plans.get_deployment_errors_for_plan(plan_id)
        except ServiceError:
            log.warning("plan.failure_detail_unavailable", plan_id=plan_id, exc_info=True)
            return fallback or GENERIC_DEPLOY_FAILURE

        details = [
            f"{e.full_name}: {e.error_details}" if e.full_name else e.error_details
            for e in errors
            if e.error_details
        ]
        if not details:
            return fallback or GENERIC_DEPLOY_FAILURE
        message = "; ".join(details[:MAX_ITEM_ERRORS])
        if len(details) > MAX_ITEM_ERRORS:
            message += f" (+{len(details) - MAX_ITEM_ERRORS} more)"
        return message

    async def reset_for_retry(self, ws: PlanWorkspace) -> PlanWorkspace:
        """Failed → Draft. Eligibility and the selection are left alone."""
        if ws.plan.status is not PlanStatus.FAILED:
            raise ValidationError("only a Failed plan can be reset for retry")
        await self._plans.reset_plan_for_retry(ws.plan.id)
        transition(ws, PlanStatus.DRAFT)
        ws.validation = None
        ws.validation_complete = False
        ws.deployment_run = None
        log.info("plan.reset", plan_id=ws.plan.id)
        return await self.refresh(ws)

    async def cancel_plan(self, ws: PlanWorkspace) -> None:
        if ws.plan.status.is_terminal:
            raise ValidationError(
                f"cannot transition from terminal status '{ws.plan.status.value}'"
            )
        await self._plans.cancel_change_plan(ws.plan.id)
        transition(ws, PlanStatus.CANCELLED)
        ws.validation_complete = False
        log.info("plan.cancelled", plan_id=ws.plan.id)

    # ── history ────────────────────────────────────────────────────────────

    async def get_deployment_run(self, deployment_run_id: str) -> DeploymentRun | None:
        return await self._plans.get_deployment_run_details(deployment_run_id)

    async def plan_history(self, limit: int = 10) -> list[PlanHistoryEntry]:
        return await self._plans.get_plan_history(limit)
