"""SessionService — durable per-owner workflow session store."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from versionwarden.dao.session_dao import WorkflowSessionDAO
from versionwarden.models.workflow_session import WorkflowSession
from versionwarden.services import ConflictError, NotFoundError, ValidationError

log = structlog.get_logger("versionwarden.session")


class SessionService:
    """Stateless store for workflow session records.

    Every write replaces the full set of workflow columns in a single UPDATE,
    so a client attaching mid-transition sees either the old or the new
    record, never a mix.
    """

    def __init__(self, session_dao: WorkflowSessionDAO) -> None:
        self._dao = session_dao

    # ── reads ──────────────────────────────────────────────────────────────

    async def get_current(self, session: AsyncSession, owner_id: str) -> WorkflowSession | None:
        return await self._dao.get_by_owner(session, owner_id)

    async def _require(self, session: AsyncSession, owner_id: str) -> WorkflowSession:
        record = await self._dao.get_by_owner(session, owner_id)
        if record is None:
            raise NotFoundError("workflow session not found")
        return record

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def create(self, session: AsyncSession, owner_id: str) -> WorkflowSession:
        """Create an empty session at step 0.

        Raises :class:`ConflictError` if the owner already has one.
        """
        if await self._dao.get_by_owner(session, owner_id) is not None:
            raise ConflictError("workflow session already exists")
        record = await self._dao.create(
            session, owner_id=owner_id, workflow_step=0, completed_steps=[], has_backup=False
        )
        log.info("session.created", owner_id=owner_id)
        return record

    async def get_or_create(self, session: AsyncSession, owner_id: str) -> WorkflowSession:
        record = await self._dao.get_by_owner(session, owner_id)
        if record is None:
            record = await self.create(session, owner_id)
        return record

    async def clear(self, session: AsyncSession, owner_id: str) -> WorkflowSession:
        """Reset every pointer and the step to 0; the only backwards move."""
        await self._require(session, owner_id)
        record = await self._dao.write_state(
            session,
            owner_id,
            workflow_step=0,
            completed_steps=[],
            current_scan_id=None,
            current_change_plan_id=None,
            current_deployment_run_id=None,
            has_backup=False,
        )
        log.info("session.cleared", owner_id=owner_id)
        return record

    # ── transitions ────────────────────────────────────────────────────────

    async def update_scan(
        self,
        session: AsyncSession,
        owner_id: str,
        scan_id: str,
        *,
        workflow_step: int,
        completed_steps: Iterable[int],
    ) -> WorkflowSession:
        """Point the session at *scan_id*.

        A different scan invalidates the plan, deployment and backup
        pointers that were derived from the previous one.
        """
        record = await self._require(session, owner_id)
        plan_id = record.current_change_plan_id
        run_id = record.current_deployment_run_id
        has_backup = record.has_backup
        if scan_id != record.current_scan_id:
            plan_id, run_id, has_backup = None, None, False
        return await self._write(
            session,
            record,
            workflow_step=workflow_step,
            completed_steps=completed_steps,
            current_scan_id=scan_id,
            current_change_plan_id=plan_id,
            current_deployment_run_id=run_id,
            has_backup=has_backup,
        )

    async def update_plan(
        self,
        session: AsyncSession,
        owner_id: str,
        plan_id: str,
        *,
        workflow_step: int,
        completed_steps: Iterable[int],
        scan_id: str | None = None,
    ) -> WorkflowSession:
        """Point the session at *plan_id* (and its source scan, when given).

        A different plan invalidates the deployment and backup pointers.
        """
        record = await self._require(session, owner_id)
        run_id = record.current_deployment_run_id
        has_backup = record.has_backup
        if plan_id != record.current_change_plan_id:
            run_id, has_backup = None, False
        return await self._write(
            session,
            record,
            workflow_step=workflow_step,
            completed_steps=completed_steps,
            current_scan_id=scan_id or record.current_scan_id,
            current_change_plan_id=plan_id,
            current_deployment_run_id=run_id,
            has_backup=has_backup,
        )

    async def update_deployment_run(
        self,
        session: AsyncSession,
        owner_id: str,
        deployment_run_id: str,
        *,
        has_backup: bool,
        workflow_step: int,
        completed_steps: Iterable[int],
    ) -> WorkflowSession:
        record = await self._require(session, owner_id)
        return await self._write(
            session,
            record,
            workflow_step=workflow_step,
            completed_steps=completed_steps,
            current_scan_id=record.current_scan_id,
            current_change_plan_id=record.current_change_plan_id,
            current_deployment_run_id=deployment_run_id,
            has_backup=has_backup,
        )

    async def clear_deployment(self, session: AsyncSession, owner_id: str) -> WorkflowSession:
        """Drop the deployment run and backup pointers, keeping step progress."""
        record = await self._require(session, owner_id)
        return await self._write(
            session,
            record,
            workflow_step=record.workflow_step,
            completed_steps=record.completed_steps or [],
            current_scan_id=record.current_scan_id,
            current_change_plan_id=record.current_change_plan_id,
            current_deployment_run_id=None,
            has_backup=False,
        )

    async def update_step(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        workflow_step: int,
        completed_steps: Iterable[int],
        has_backup: bool | None = None,
    ) -> WorkflowSession:
        """Advance the step without moving any pointer."""
        record = await self._require(session, owner_id)
        return await self._write(
            session,
            record,
            workflow_step=workflow_step,
            completed_steps=completed_steps,
            current_scan_id=record.current_scan_id,
            current_change_plan_id=record.current_change_plan_id,
            current_deployment_run_id=record.current_deployment_run_id,
            has_backup=record.has_backup if has_backup is None else has_backup,
        )

    # ── internal ───────────────────────────────────────────────────────────

    async def _write(
        self,
        session: AsyncSession,
        record: WorkflowSession,
        *,
        workflow_step: int,
        completed_steps: Iterable[int],
        **pointers: object,
    ) -> WorkflowSession:
        """Write the whole record after checking the progress invariants.

        Raises :class:`ValidationError` if the step would decrease, leave the
        0..5 range, or drop a completed step.
        """
        completed = sorted(set(completed_steps))
        if not 0 <= workflow_step <= 5:
            raise ValidationError(f"workflow step out of range: {workflow_step}")
        if workflow_step < record.workflow_step:
            raise ValidationError(
                f"workflow step cannot decrease: {record.workflow_step} → {workflow_step}"
            )
        missing = set(record.completed_steps or []) - set(completed)
        if missing:
            raise ValidationError(f"completed steps cannot be dropped: {sorted(missing)}")

        owner_id = record.owner_id
        updated = await self._dao.write_state(
            session,
            owner_id,
            workflow_step=workflow_step,
            completed_steps=completed,
            **pointers,
        )
        log.info("session.updated", owner_id=owner_id, workflow_step=workflow_step)
        return updated
