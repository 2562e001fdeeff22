"""SessionCoordinator — the resumable workflow state machine of one session owner.

The coordinator binds the scan monitor, findings aggregation, change plan
service and backup manager together, and persists every step transition
through :class:`~versionwarden.services.session_service.SessionService` so a
client attaching later (``attach()``) reconstructs the same state.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from versionwarden.engines.base import BackupEngine
from versionwarden.engines.models import (
    ChangeItem,
    DeploymentRun,
    IncrementPolicy,
    PlanHistoryEntry,
    RestoreResult,
    Scan,
    ScanConfig,
    ScanHistoryEntry,
    ScanStatus,
    TestPolicy,
    ValidationResult,
)
from versionwarden.models.workflow_session import WorkflowSession
from versionwarden.scan_monitor import ScanMonitor
from versionwarden.services import (
    ConflictError,
    NotFoundError,
    RemoteExecutionError,
    TransientPollError,
    ValidationError,
)
from versionwarden.services.backup_service import (
    DEFAULT_RETENTION_DAYS,
    BackupManager,
    RestoreAllOutcome,
)
from versionwarden.services.change_plan_service import ChangePlanService
from versionwarden.services.findings_service import FindingsResult, FindingsService
from versionwarden.services.session_service import SessionService
from versionwarden.workflow import WorkflowProgress, WorkflowStep, advance
from versionwarden.workspace import PlanWorkspace

log = structlog.get_logger("versionwarden.coordinator")

SCAN_FAILED_MESSAGE = "The scan did not complete. Review the engine logs and start a new scan."


@dataclass(frozen=True)
class Notice:
    level: str
    title: str
    message: str


@dataclass
class WorkflowContext:
    """Everything the coordinator knows about its session, in one place."""

    owner_id: str
    workflow_step: int = 0
    completed_steps: list[int] = field(default_factory=list)
    scan_id: str | None = None
    change_plan_id: str | None = None
    deployment_run_id: str | None = None
    has_backup: bool = False

    scan: Scan | None = None
    findings: FindingsResult | None = None
    plan: PlanWorkspace | None = None
    deployment_run: DeploymentRun | None = None
    backup: BackupManager | None = None
    notices: list[Notice] = field(default_factory=list)

    @property
    def progress(self) -> WorkflowProgress:
        return WorkflowProgress(self.workflow_step, tuple(self.completed_steps))

    @property
    def has_findings(self) -> bool:
        if self.findings is not None and self.findings.total:
            return True
        return self.scan is not None and self.scan.findings_count > 0

    def notify(self, level: str, title: str, message: str) -> None:
        self.notices.append(Notice(level, title, message))

    def drain_notices(self) -> list[Notice]:
        notices, self.notices = self.notices, []
        return notices

    def drop_scan(self) -> None:
        self.scan = None
        self.findings = None
        self.drop_plan()

    def drop_plan(self) -> None:
        self.plan = None
        self.drop_deployment()

    def drop_deployment(self) -> None:
        self.deployment_run = None
        self.backup = None


class SessionCoordinator:
    """Owns one :class:`WorkflowContext`; dependent operations never overlap."""

    def __init__(
        self,
        owner_id: str,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        session_service: SessionService,
        scan_monitor: ScanMonitor,
        findings_service: FindingsService,
        plan_service: ChangePlanService,
        backup_engine: BackupEngine,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self.ctx = WorkflowContext(owner_id=owner_id)
        self._session_factory = session_factory
        self._sessions = session_service
        self._monitor = scan_monitor
        self._findings = findings_service
        self._plans = plan_service
        self._backup_engine = backup_engine
        self._retention_days = retention_days
        self._lock = asyncio.Lock()

    @property
    def owner_id(self) -> str:
        return self.ctx.owner_id

    @property
    def is_polling(self) -> bool:
        return self._monitor.is_polling

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise ConflictError("another operation is still in progress")
        async with self._lock:
            yield

    def _require_idle(self) -> None:
        if self._lock.locked():
            raise ConflictError("another operation is still in progress")

    # ── persistence ────────────────────────────────────────────────────────

    async def _persist(self, write: Callable[[AsyncSession], Awaitable[WorkflowSession]]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                record = await write(session)
                self._apply_record(record)

    def _apply_record(self, record: WorkflowSession) -> None:
        ctx = self.ctx
        ctx.workflow_step = record.workflow_step
        ctx.completed_steps = sorted(record.completed_steps or [])
        ctx.scan_id = record.current_scan_id
        ctx.change_plan_id = record.current_change_plan_id
        ctx.deployment_run_id = record.current_deployment_run_id
        ctx.has_backup = record.has_backup

    async def _reach(self, target: WorkflowStep, *, has_backup: bool | None = None) -> None:
        step, completed = advance(self.ctx.workflow_step, self.ctx.completed_steps, target)
        await self._persist(
            lambda s: self._sessions.update_step(
                s,
                self.owner_id,
                workflow_step=step,
                completed_steps=completed,
                has_backup=has_backup,
            )
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def attach(self) -> WorkflowContext:
        """Load (or create) the saved session and rebuild every derived view."""
        async with self._exclusive():
            async with self._session_factory() as session:
                async with session.begin():
                    record = await self._sessions.get_or_create(session, self.owner_id)
                    self._apply_record(record)
            ctx = self.ctx
            log.info(
                "session.attached",
                owner_id=self.owner_id,
                workflow_step=ctx.workflow_step,
                scan_id=ctx.scan_id,
                plan_id=ctx.change_plan_id,
            )

            if ctx.scan_id:
                await self._resolve_scan(ctx.scan_id)
            if ctx.change_plan_id:
                await self._resolve_plan(ctx.change_plan_id, ctx.deployment_run_id)
            return ctx

    async def close(self) -> None:
        await self._monitor.stop()

    async def clear_session(self) -> WorkflowContext:
        async with self._exclusive():
            await self._monitor.stop()
            await self._persist(lambda s: self._sessions.clear(s, self.owner_id))
            self.ctx.drop_scan()
            self.ctx.notices.clear()
            self.ctx.notify("info", "Session cleared", "Start a new scan to begin again.")
            return self.ctx

    async def _resolve_scan(self, scan_id: str) -> None:
        try:
            scan = await self._monitor.poll_status(scan_id)
        except RemoteExecutionError as exc:
            log.warning("session.scan_unavailable", scan_id=scan_id, error=str(exc))
            self.ctx.notify("error", "Scan unavailable", str(exc))
            return
        if scan is None:
            self.ctx.scan_id = None
            self.ctx.drop_scan()
            self.ctx.notify("warning", "Scan not found", "The saved scan no longer exists.")
            return
        self.ctx.scan = scan
        if scan.is_running:
            self._watch(scan_id)
        elif (
            scan.status in (ScanStatus.COMPLETED, ScanStatus.FAILED)
            and self.ctx.workflow_step < WorkflowStep.SCAN_REVIEWED
        ):
            # Settled while no client was attached
            await self._handle_scan_settled(scan)
        elif scan.status is ScanStatus.COMPLETED:
            await self._load_findings(scan_id)

    async def _resolve_plan(self, plan_id: str, run_id: str | None) -> None:
        ctx = self.ctx
        try:
            ctx.plan = await self._plans.load_plan(plan_id, run_id)
        except NotFoundError:
            ctx.change_plan_id = None
            ctx.drop_plan()
            ctx.notify("warning", "Plan not found", "The saved change plan no longer exists.")
            return
        except RemoteExecutionError as exc:
            ctx.notify("error", "Plan unavailable", str(exc))
            return
        ctx.deployment_run = ctx.plan.deployment_run
        if run_id and ctx.has_backup:
            ctx.backup = self._backup_manager(run_id)
            await self._load_backup(ctx.backup)

    # ── scan ───────────────────────────────────────────────────────────────

    async def start_scan(self, config: ScanConfig) -> str:
        async with self._exclusive():
            scan_id = await self._monitor.start_scan(config)
            step, completed = advance(
                self.ctx.workflow_step, self.ctx.completed_steps, WorkflowStep.SCAN_RUNNING
            )
            await self._persist(
                lambda s: self._sessions.update_scan(
                    s, self.owner_id, scan_id, workflow_step=step, completed_steps=completed
                )
            )
            self.ctx.drop_scan()
            self._watch(scan_id)
            self.ctx.notify("info", "Scan started", f"Scanning {', '.join(config.types)}.")
            return scan_id

    async def select_scan(self, scan_id: str) -> Scan:
        """Switch to another existing scan, dropping everything derived from the old one."""
        async with self._exclusive():
            scan = await self._monitor.poll_status(scan_id)
            if scan is None:
                raise NotFoundError("scan not found")
            await self._monitor.stop()

            target = WorkflowStep.SCAN_RUNNING
            if scan.status in (ScanStatus.COMPLETED, ScanStatus.FAILED):
                target = WorkflowStep.SCAN_REVIEWED
            step, completed = advance(self.ctx.workflow_step, self.ctx.completed_steps, target)
            if scan_id != self.ctx.scan_id:
                self.ctx.drop_scan()
            await self._persist(
                lambda s: self._sessions.update_scan(
                    s, self.owner_id, scan_id, workflow_step=step, completed_steps=completed
                )
            )
            self.ctx.scan = scan
            if scan.is_running:
                self._watch(scan_id)
            elif scan.status is ScanStatus.COMPLETED:
                await self._load_findings(scan_id)
            return scan

    async def cancel_scan(self) -> None:
        async with self._exclusive():
            scan_id = self.ctx.scan_id
            if not scan_id:
                raise ValidationError("no scan is active")
            try:
                await self._monitor.cancel_scan(scan_id)
            except RemoteExecutionError as exc:
                self.ctx.notify("error", "Cancel failed", str(exc))
                raise
            if self.ctx.scan is not None:
                self.ctx.scan.status = ScanStatus.CANCELLED
            self.ctx.notify("info", "Scan cancelled", "Polling stopped.")

    async def recent_scans(self, limit: int = 10) -> list[ScanHistoryEntry]:
        return await self._monitor.recent_scans(limit)

    def _watch(self, scan_id: str) -> None:
        self._monitor.watch(
            scan_id,
            on_update=self._on_scan_update,
            on_terminal=self._on_scan_terminal,
            on_error=self._on_poll_error,
        )

    async def _on_scan_update(self, scan: Scan) -> None:
        if scan.id == self.ctx.scan_id:
            self.ctx.scan = scan

    async def _on_scan_terminal(self, scan: Scan) -> None:
        async with self._lock:
            if scan.id != self.ctx.scan_id:
                return
            try:
                await self._handle_scan_settled(scan)
            except Exception:
                log.exception("session.scan_settle_failed", scan_id=scan.id)
                self.ctx.notify("error", "Session update failed", "Reload the session to retry.")

    async def _handle_scan_settled(self, scan: Scan) -> None:
        match scan.status:
            case ScanStatus.COMPLETED:
                await self._load_findings(scan.id)
                await self._reach(WorkflowStep.SCAN_REVIEWED)
                self.ctx.notify(
                    "success", "Scan completed", f"{scan.findings_count} findings detected."
                )
            case ScanStatus.FAILED:
                await self._reach(WorkflowStep.SCAN_REVIEWED)
                self.ctx.notify("error", "Scan failed", SCAN_FAILED_MESSAGE)
            case ScanStatus.CANCELLED:
                self.ctx.notify("info", "Scan cancelled", "The scan was cancelled.")
            case ScanStatus.QUEUED | ScanStatus.RUNNING:
                pass

    async def _on_poll_error(self, exc: TransientPollError) -> None:
        self.ctx.notify("error", "Lost track of scan", str(exc))

    async def _load_findings(self, scan_id: str) -> None:
        try:
            self.ctx.findings = await self._findings.load_results(scan_id)
        except RemoteExecutionError as exc:
            log.warning("session.findings_failed", scan_id=scan_id, error=str(exc))
            self.ctx.notify("error", "Failed to load findings", str(exc))

    # ── plan ───────────────────────────────────────────────────────────────

    async def create_plan(
        self,
        *,
        target_api_version: float,
        increment_policy: IncrementPolicy = IncrementPolicy.INCREMENTAL_ONLY,
        validate_only: bool = False,
        test_policy: TestPolicy = TestPolicy.RUN_SPECIFIED_TESTS,
    ) -> PlanWorkspace:
        async with self._exclusive():
            ws = await self._plans.create_plan(
                self.ctx.scan_id,
                target_api_version=target_api_version,
                increment_policy=increment_policy,
                validate_only=validate_only,
                test_policy=test_policy,
            )
            await self._enter_plan(ws)
            self.ctx.notify(
                "success",
                "Change plan created",
                f"{ws.eligible_count} eligible, {ws.blocked_count} blocked.",
            )
            return ws

    async def select_plan(self, plan_id: str) -> PlanWorkspace:
        async with self._exclusive():
            ws = await self._plans.load_plan(plan_id)
            await self._enter_plan(ws)
            return ws

    async def plan_history(self, limit: int = 10) -> list[PlanHistoryEntry]:
        return await self._plans.plan_history(limit)

    async def _enter_plan(self, ws: PlanWorkspace) -> None:
        ctx = self.ctx
        source_scan_id = ws.plan.source_scan_id or ctx.scan_id
        scan_changed = source_scan_id != ctx.scan_id
        if ws.plan.id != ctx.change_plan_id:
            ctx.drop_plan()
        step, completed = advance(ctx.workflow_step, ctx.completed_steps, WorkflowStep.PLAN_CREATED)
        await self._persist(
            lambda s: self._sessions.update_plan(
                s,
                self.owner_id,
                ws.plan.id,
                workflow_step=step,
                completed_steps=completed,
                scan_id=source_scan_id,
            )
        )
        if scan_changed and source_scan_id:
            await self._monitor.stop()
            ctx.scan = None
            ctx.findings = None
            await self._resolve_scan(source_scan_id)
        ctx.plan = ws
        ws.deployment_run = ws.deployment_run or ctx.deployment_run

    def require_plan(self) -> PlanWorkspace:
        if self.ctx.plan is None:
            raise ValidationError("no change plan is loaded")
        return self.ctx.plan

    def select_items(self, ids: list[str]) -> PlanWorkspace:
        self._require_idle()
        ws = self.require_plan()
        self._plans.select_items(ws, ids)
        return ws

    def select_all_eligible(self) -> PlanWorkspace:
        self._require_idle()
        ws = self.require_plan()
        self._plans.select_all_eligible(ws)
        return ws

    def select_none(self) -> PlanWorkspace:
        self._require_idle()
        ws = self.require_plan()
        self._plans.select_none(ws)
        return ws

    async def validate(self) -> ValidationResult:
        async with self._exclusive():
            ws = self.require_plan()
            try:
                result = await self._plans.validate_selected(ws)
            except RemoteExecutionError as exc:
                self.ctx.notify("error", "Validation failed", str(exc))
                raise
            if result.passed:
                self.ctx.notify(
                    "success", "Validation passed", f"{len(result.validated_ids)} items validated."
                )
            else:
                self.ctx.notify(
                    "warning",
                    "Validation finished with errors",
                    f"{len(result.errors)} of {len(result.validated_ids)} items reported errors.",
                )
            return result

    async def deploy(self, *, create_backup: bool) -> str:
        async with self._exclusive():
            ws = self.require_plan()
            try:
                run_id = await self._plans.deploy(ws, create_backup=create_backup)
            except RemoteExecutionError as exc:
                self.ctx.notify("error", "Deployment failed", str(exc))
                raise

            step, completed = advance(
                self.ctx.workflow_step, self.ctx.completed_steps, WorkflowStep.DEPLOYED
            )
            await self._persist(
                lambda s: self._sessions.update_deployment_run(
                    s,
                    self.owner_id,
                    run_id,
                    has_backup=create_backup,
                    workflow_step=step,
                    completed_steps=completed,
                )
            )
            self.ctx.deployment_run = ws.deployment_run
            self.ctx.backup = None
            if create_backup:
                self.ctx.backup = self._backup_manager(run_id)
                await self._load_backup(self.ctx.backup)
            self.ctx.notify("success", "Deployment started", f"Deployment run {run_id}.")
            if ws.deployment_run is None:
                self.ctx.notify(
                    "warning",
                    "Deployment status unavailable",
                    "Refresh the plan to load the run status.",
                )
            return run_id

    async def load_failure_detail(self) -> str | None:
        async with self._exclusive():
            ws = self.require_plan()
            return await self._plans.load_failure_detail(ws, self.ctx.deployment_run_id)

    async def reset_plan(self) -> PlanWorkspace:
        async with self._exclusive():
            ws = await self._plans.reset_for_retry(self.require_plan())
            await self._persist(lambda s: self._sessions.clear_deployment(s, self.owner_id))
            self.ctx.drop_deployment()
            self.ctx.notify("info", "Plan reset", "The plan is back in Draft and can be retried.")
            return ws

    async def cancel_plan(self) -> PlanWorkspace:
        async with self._exclusive():
            ws = self.require_plan()
            await self._plans.cancel_plan(ws)
            self.ctx.notify("info", "Plan cancelled", "No further changes will be deployed.")
            return ws

    async def refresh_plan(self) -> PlanWorkspace:
        async with self._exclusive():
            ws = await self._plans.refresh(self.require_plan())
            run_id = ws.deployment_run.id if ws.deployment_run else self.ctx.deployment_run_id
            if run_id:
                ws.deployment_run = await self._plans.get_deployment_run(run_id)
                self.ctx.deployment_run = ws.deployment_run
            return ws

    def filtered_items(self, **kwargs) -> list[ChangeItem]:
        return self.require_plan().filtered_items(**kwargs)

    # ── backup ─────────────────────────────────────────────────────────────

    def _backup_manager(self, run_id: str) -> BackupManager:
        return BackupManager(
            self._backup_engine,
            run_id,
            retention_days=self._retention_days,
            on_cleared=self._on_backup_cleared,
        )

    async def _load_backup(self, manager: BackupManager) -> None:
        try:
            await manager.get_summary()
            await manager.list_items()
        except (NotFoundError, RemoteExecutionError) as exc:
            log.warning(
                "session.backup_unavailable",
                deployment_run_id=manager.deployment_run_id,
                error=str(exc),
            )
            self.ctx.notify("warning", "Backup unavailable", str(exc))

    def require_backup(self) -> BackupManager:
        if self.ctx.backup is None:
            raise ValidationError("no backup exists for the current deployment")
        return self.ctx.backup

    async def _on_backup_cleared(self, deployment_run_id: str) -> None:
        if deployment_run_id == self.ctx.deployment_run_id:
            self.ctx.backup = None
            self.ctx.notify("info", "Backup deleted", "The backup set was permanently removed.")

    async def restore_item(self, backup_item_id: str) -> RestoreResult:
        async with self._exclusive():
            manager = self.require_backup()
            result = await manager.restore_item(backup_item_id)
            await manager.list_items()
            await self._reach(WorkflowStep.BACKUP_MANAGED)
            if result.success:
                self.ctx.notify("success", "Item restored", result.full_name or backup_item_id)
            else:
                self.ctx.notify(
                    "error", "Restore failed", result.error_message or "Restore failed"
                )
            return result

    async def restore_all(self) -> RestoreAllOutcome:
        async with self._exclusive():
            manager = self.require_backup()
            outcome = await manager.restore_all()
            await manager.list_items()
            await self._reach(WorkflowStep.BACKUP_MANAGED)
            message = f"{outcome.success_count} restored, {outcome.fail_count} failed."
            if outcome.fail_count == 0:
                self.ctx.notify("success", "Restore complete", message)
            elif outcome.success_count == 0:
                self.ctx.notify("error", "Restore failed", message)
            else:
                self.ctx.notify("warning", "Restore partially succeeded", message)
            return outcome

    async def create_backup(self) -> BackupManager:
        async with self._exclusive():
            run_id = self.ctx.deployment_run_id
            if not run_id:
                raise ValidationError("no deployment run to back up")
            manager = self.ctx.backup or self._backup_manager(run_id)
            await manager.create_backup()
            await manager.get_summary()
            self.ctx.backup = manager
            await self._reach(WorkflowStep.BACKUP_MANAGED, has_backup=True)
            self.ctx.notify("success", "Backup created", f"{len(manager.items)} items backed up.")
            return manager

    async def cleanup_backup(self) -> None:
        async with self._exclusive():
            manager = self.require_backup()
            await manager.cleanup()
            await self._reach(WorkflowStep.BACKUP_MANAGED, has_backup=False)
