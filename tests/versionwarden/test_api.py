"""Tests for the API layer.

Routers are mounted on a bare FastAPI app; the per-owner coordinator is a
mock carrying a real WorkflowContext so response building is exercised.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from versionwarden.coordinator import SessionCoordinator, WorkflowContext
from versionwarden.engines.models import (
    ChangeItem,
    ChangePlan,
    Eligibility,
    Finding,
    FindingCategory,
    PlanStatus,
    RestoreResult,
    Scan,
    ScanStatus,
    Severity,
    ValidationResult,
)
from versionwarden.services import (
    ConflictError,
    NotFoundError,
    RemoteExecutionError,
    ValidationError,
)
from versionwarden.services.backup_service import RestoreAllOutcome
from versionwarden.services.findings_service import FindingsResult
from versionwarden.workspace import PlanWorkspace

OWNER = {"X-Session-Owner": "owner-1"}


def _workspace(status: PlanStatus = PlanStatus.READY) -> PlanWorkspace:
    plan = ChangePlan(id="plan-1", source_scan_id="scan-1", target_api_version=65.0, status=status)
    items = [
        ChangeItem(
            id=f"item-{n}",
            plan_id="plan-1",
            unit_number=n,
            full_name=f"Class{n}",
            artifact_type="ApexClass",
            current_api_version=40.0 + n,
            target_api_version=65.0,
            eligibility=Eligibility.ELIGIBLE if n < 3 else Eligibility.BLOCKED,
        )
        for n in range(1, 4)
    ]
    return PlanWorkspace(plan=plan, items=items, selected_ids={"item-1"})


def _coordinator() -> MagicMock:
    coordinator = MagicMock(spec=SessionCoordinator)
    coordinator.ctx = WorkflowContext(owner_id="owner-1")
    coordinator.is_polling = False
    return coordinator


@pytest.fixture
def coordinator():
    return _coordinator()


@pytest.fixture
def app(coordinator):
    from fastapi import FastAPI

    from versionwarden.api import deps
    from versionwarden.api.errors import register_error_handlers
    from versionwarden.api.routers import backups, plans, scans, session

    application = FastAPI()
    register_error_handlers(application)
    application.include_router(session.router, prefix="/api/v1/session")
    application.include_router(scans.router, prefix="/api/v1/scans")
    application.include_router(plans.router, prefix="/api/v1/plans")
    application.include_router(backups.router, prefix="/api/v1/backups")

    registry = MagicMock()
    registry.get = AsyncMock(return_value=coordinator)
    application.dependency_overrides[deps.get_registry] = lambda: registry
    return application


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestSessionRouter:
    async def test_state(self, client, coordinator):
        coordinator.ctx.workflow_step = 3
        coordinator.ctx.completed_steps = [1, 2]
        coordinator.ctx.scan_id = "scan-1"

        resp = await client.get("/api/v1/session/", headers=OWNER)
        assert resp.status_code == 200
        data = resp.json()
        assert data["workflow_step"] == 3
        assert data["progress_label"] == "Step 3 of 5: Plan"
        assert data["progress_percentage"] == 50
        assert [s["is_completed"] for s in data["steps"]] == [True, True, False, False, False]
        assert data["current_scan_id"] == "scan-1"

    async def test_owner_header_required(self, client):
        resp = await client.get("/api/v1/session/")
        assert resp.status_code == 422

    async def test_blank_owner_rejected(self, client):
        resp = await client.get("/api/v1/session/", headers={"X-Session-Owner": "  "})
        assert resp.status_code == 422

    async def test_clear(self, client, coordinator):
        resp = await client.delete("/api/v1/session/", headers=OWNER)
        assert resp.status_code == 200
        coordinator.clear_session.assert_awaited_once()

    async def test_drain_notices(self, client, coordinator):
        coordinator.ctx.notify("success", "Scan completed", "3 findings detected.")
        resp = await client.post("/api/v1/session/notices/drain", headers=OWNER)
        assert resp.json() == [
            {"level": "success", "title": "Scan completed", "message": "3 findings detected."}
        ]
        assert coordinator.ctx.notices == []


class TestScansRouter:
    async def test_start(self, client, coordinator):
        coordinator.start_scan.return_value = "scan-1"
        resp = await client.post("/api/v1/scans/", json={"types": ["ApexClass"]}, headers=OWNER)
        assert resp.status_code == 201
        assert resp.json() == {"scan_id": "scan-1"}
        config = coordinator.start_scan.await_args.args[0]
        assert config.types == ["ApexClass"]

    async def test_start_validation_error(self, client, coordinator):
        coordinator.start_scan.side_effect = ValidationError("select at least one artifact type")
        resp = await client.post("/api/v1/scans/", json={"types": []}, headers=OWNER)
        assert resp.status_code == 422
        assert "artifact type" in resp.json()["detail"]

    async def test_start_conflict(self, client, coordinator):
        coordinator.start_scan.side_effect = ConflictError("another operation is still in progress")
        resp = await client.post("/api/v1/scans/", json={}, headers=OWNER)
        assert resp.status_code == 409
        assert resp.headers["Retry-After"] == "1"
        assert resp.json()["error"] == "ConflictError"

    async def test_current_scan(self, client, coordinator):
        coordinator.ctx.scan = Scan(
            id="scan-1", status=ScanStatus.RUNNING, total_artifacts=4, processed_artifacts=1
        )
        resp = await client.get("/api/v1/scans/current", headers=OWNER)
        data = resp.json()
        assert data["progress"] == 25
        assert data["tone"] == "info"
        assert data["is_running"] is True

    async def test_current_scan_missing(self, client):
        resp = await client.get("/api/v1/scans/current", headers=OWNER)
        assert resp.status_code == 404

    async def test_cancel_remote_failure(self, client, coordinator):
        coordinator.cancel_scan.side_effect = RemoteExecutionError("engine said no")
        resp = await client.post("/api/v1/scans/current/cancel", headers=OWNER)
        assert resp.status_code == 502
        assert resp.json()["detail"] == "engine said no"

    async def test_findings_filtered(self, client, coordinator):
        coordinator.ctx.scan_id = "scan-1"
        coordinator.ctx.findings = FindingsResult(
            findings=[
                Finding(
                    id="f1",
                    scan_id="scan-1",
                    artifact_name="AccountService",
                    category=FindingCategory.DEPRECATION,
                    severity=Severity.CRITICAL,
                    is_blocking=True,
                ),
                Finding(
                    id="f2",
                    scan_id="scan-1",
                    artifact_name="LeadTrigger",
                    category=FindingCategory.DRIFT,
                    severity=Severity.INFO,
                ),
            ],
            summary={Severity.CRITICAL: 1, Severity.WARNING: 0, Severity.INFO: 1},
        )
        resp = await client.get(
            "/api/v1/scans/current/findings", params={"severity": "Critical"}, headers=OWNER
        )
        data = resp.json()
        assert data["total"] == 2
        assert data["has_blocking"] is True
        assert data["summary"] == {"Critical": 1, "Warning": 0, "Info": 1}
        assert [f["id"] for f in data["findings"]] == ["f1"]


class TestPlansRouter:
    async def test_current_plan(self, client, coordinator):
        coordinator.require_plan.return_value = _workspace()
        resp = await client.get("/api/v1/plans/current", headers=OWNER)
        data = resp.json()
        assert data["eligible_count"] == 2
        assert data["blocked_count"] == 1
        assert data["selected_ids"] == ["item-1"]
        assert data["can_validate"] is True
        assert data["can_deploy"] is False
        assert data["tone"] == "info"

    async def test_no_plan(self, client, coordinator):
        coordinator.require_plan.side_effect = ValidationError("no change plan is loaded")
        resp = await client.get("/api/v1/plans/current", headers=OWNER)
        assert resp.status_code == 422

    async def test_select_items(self, client, coordinator):
        coordinator.select_items.return_value = _workspace()
        resp = await client.put(
            "/api/v1/plans/current/selection", json={"item_ids": ["item-1"]}, headers=OWNER
        )
        assert resp.status_code == 200
        coordinator.select_items.assert_called_once_with(["item-1"])

    async def test_items_sorted(self, client, coordinator):
        ws = _workspace()
        coordinator.filtered_items.side_effect = lambda **kw: ws.filtered_items(**kw)
        resp = await client.get(
            "/api/v1/plans/current/items",
            params={"sort_by": "current_api_version", "descending": "true"},
            headers=OWNER,
        )
        assert [i["id"] for i in resp.json()] == ["item-3", "item-2", "item-1"]

    async def test_unknown_sort_key_rejected(self, client):
        resp = await client.get(
            "/api/v1/plans/current/items", params={"sort_by": "colour"}, headers=OWNER
        )
        assert resp.status_code == 422

    async def test_validate(self, client, coordinator):
        coordinator.validate.return_value = ValidationResult(
            validated_ids=["item-1"], errors={"item-1": "bad"}
        )
        resp = await client.post("/api/v1/plans/current/validate", headers=OWNER)
        data = resp.json()
        assert data["passed"] is False
        assert data["errors"] == {"item-1": "bad"}

    async def test_deploy(self, client, coordinator):
        coordinator.deploy.return_value = "run-1"
        resp = await client.post(
            "/api/v1/plans/current/deploy", json={"create_backup": True}, headers=OWNER
        )
        assert resp.json() == {"deployment_run_id": "run-1"}
        coordinator.deploy.assert_awaited_once_with(create_backup=True)

    async def test_deploy_failure(self, client, coordinator):
        coordinator.deploy.side_effect = RemoteExecutionError("Class1: bad; Class2: bad")
        resp = await client.post("/api/v1/plans/current/deploy", json={}, headers=OWNER)
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Class1: bad; Class2: bad"

    async def test_select_missing_plan(self, client, coordinator):
        coordinator.select_plan.side_effect = NotFoundError("change plan not found")
        resp = await client.post("/api/v1/plans/plan-x/select", headers=OWNER)
        assert resp.status_code == 404


class TestBackupsRouter:
    async def test_no_backup(self, client, coordinator):
        coordinator.require_backup.side_effect = ValidationError("no backup exists")
        resp = await client.get("/api/v1/backups/current/items", headers=OWNER)
        assert resp.status_code == 422

    async def test_restore_all(self, client, coordinator):
        coordinator.restore_all.return_value = RestoreAllOutcome(
            results=[
                RestoreResult(success=True, backup_item_id="bk-1", full_name="Class1"),
                RestoreResult(success=False, backup_item_id="bk-2", error_message="locked"),
            ]
        )
        resp = await client.post("/api/v1/backups/current/restore-all", headers=OWNER)
        data = resp.json()
        assert data["success_count"] == 1
        assert data["fail_count"] == 1

    async def test_cleanup(self, client, coordinator):
        resp = await client.delete("/api/v1/backups/current", headers=OWNER)
        assert resp.status_code == 204
        coordinator.cleanup_backup.assert_awaited_once()


class TestErrorMapping:
    def test_subclass_uses_nearest_mapping(self):
        from versionwarden.api.errors import status_for
        from versionwarden.services import ServiceError, TransientPollError

        assert status_for(TransientPollError("timed out")) == 502
        assert status_for(ServiceError("unmapped")) == 500


class TestRequestIDMiddleware:
    @pytest.fixture
    async def mw_client(self, app):
        from versionwarden.api.middleware.request_id import RequestIDMiddleware

        app.add_middleware(RequestIDMiddleware)
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c

    async def test_echoes_valid_request_id(self, mw_client):
        rid = "2f1c0d8e-4b1a-4f6e-9a53-1d2b3c4d5e6f"
        resp = await mw_client.get(
            "/api/v1/session/", headers={**OWNER, "X-Request-ID": rid}
        )
        assert resp.headers["X-Request-ID"] == rid

    async def test_replaces_malformed_request_id(self, mw_client):
        resp = await mw_client.get(
            "/api/v1/session/", headers={**OWNER, "X-Request-ID": "not-a-uuid"}
        )
        assert resp.headers["X-Request-ID"] != "not-a-uuid"
        assert len(resp.headers["X-Request-ID"]) == 36


class TestCoordinatorRegistry:
    @staticmethod
    def _registry(coordinators):
        from versionwarden.api.deps import CoordinatorRegistry

        registry = CoordinatorRegistry()
        registry.build = lambda owner_id: coordinators[owner_id]
        return registry

    async def test_slow_attach_does_not_block_other_owners(self):
        release = asyncio.Event()
        slow, fast = _coordinator(), _coordinator()

        async def wait_for_release():
            await release.wait()

        slow.attach.side_effect = wait_for_release
        registry = self._registry({"owner-1": slow, "owner-2": fast})

        pending = asyncio.create_task(registry.get("owner-1"))
        await asyncio.sleep(0)
        assert await asyncio.wait_for(registry.get("owner-2"), timeout=1) is fast
        assert not pending.done()

        release.set()
        assert await pending is slow

    async def test_concurrent_gets_attach_once(self):
        coordinator = _coordinator()
        registry = self._registry({"owner-1": coordinator})
        first, second = await asyncio.gather(registry.get("owner-1"), registry.get("owner-1"))
        assert first is second is coordinator
        coordinator.attach.assert_awaited_once()

    async def test_close_all_closes_each_coordinator(self):
        coordinator = _coordinator()
        registry = self._registry({"owner-1": coordinator})
        await registry.get("owner-1")
        await registry.close_all()
        coordinator.close.assert_awaited_once()
