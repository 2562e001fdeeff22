"""Async HTTP+JSON client for the remote remediation engines."""

from __future__ import annotations

import asyncio
import os
from typing import Any

import httpx
import structlog

from versionwarden.engines.base import BackupEngine, DeployEngine, PlanEngine, ScanEngine
from versionwarden.engines.models import (
    BackupItem,
    BackupSummary,
    ChangeItem,
    ChangePlan,
    DeploymentError,
    DeploymentRun,
    DiffResult,
    Finding,
    IncrementPolicy,
    PlanHistoryEntry,
    RestoreResult,
    Scan,
    ScanConfig,
    ScanHistoryEntry,
    Severity,
    TestPolicy,
    ValidationResult,
)
from versionwarden.services import NotFoundError, RemoteExecutionError

log = structlog.get_logger("versionwarden.engine")

_MAX_RETRIES = 3
_IDEMPOTENT_METHODS = frozenset({"GET", "DELETE"})
_RETRY_BASE_DELAY = 1.0  # seconds
_GENERIC_ERROR = "An unexpected error occurred"


def extract_error_message(response: httpx.Response) -> str:
    """Best available message from an engine error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "detail", "errorMessage"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    text = response.text.strip() if response.text else ""
    return text or _GENERIC_ERROR


class RemoteEngineClient(ScanEngine, PlanEngine, DeployEngine, BackupEngine):
    """One transport for every engine the orchestrator consumes."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
        retry_base_delay: float = _RETRY_BASE_DELAY,
    ) -> None:
        resolved_url = base_url or os.environ.get(
            "VERSIONWARDEN_ENGINE_URL", "http://localhost:8080/api"
        )
        resolved_token = token or os.environ.get("VERSIONWARDEN_ENGINE_TOKEN")
        headers: dict[str, str] = {"Accept": "application/json"}
        if resolved_token:
            headers["Authorization"] = f"Bearer {resolved_token}"
        self._retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            base_url=resolved_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RemoteEngineClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── scan engine ────────────────────────────────────────────────────────

    async def start_scan(self, config: ScanConfig) -> str:
        data = await self._json("POST", "/scans", json=config.to_dict())
        return data["scanId"]

    async def get_scan_status(self, scan_id: str) -> Scan | None:
        # A failed poll stops the watch loop, so it is never retried here
        data = await self._json("GET", f"/scans/{scan_id}", allow_404=True, retry=False)
        return Scan.from_dict(data) if data is not None else None

    async def cancel_scan(self, scan_id: str) -> None:
        await self._json("POST", f"/scans/{scan_id}/cancel")

    async def get_findings_by_scan(self, scan_id: str) -> list[Finding]:
        data = await self._json("GET", f"/scans/{scan_id}/findings")
        return [Finding.from_dict(row) for row in data or []]

    async def get_findings_summary(self, scan_id: str) -> dict[Severity, int]:
        data = await self._json("GET", f"/scans/{scan_id}/findings/summary")
        summary: dict[Severity, int] = {}
        for key, count in (data or {}).items():
            try:
                summary[Severity(key)] = int(count)
            except ValueError:
                log.warning("engine.unknown_severity", scan_id=scan_id, severity=key)
        return summary

    async def get_recent_scans(self, limit: int = 10) -> list[ScanHistoryEntry]:
        data = await self._json("GET", "/scans", params={"limit": limit})
        return [ScanHistoryEntry.from_dict(row) for row in data or []]

    # ── plan engine ────────────────────────────────────────────────────────

    async def create_change_plan(
        self,
        scan_id: str,
        *,
        target_api_version: float,
        increment_policy: IncrementPolicy,
        validate_only: bool,
        test_policy: TestPolicy,
    ) -> str:
        payload = {
            "scanId": scan_id,
            "targetApiVersion": target_api_version,
            "incrementPolicy": increment_policy.value,
            "validateOnly": validate_only,
            "testPolicy": test_policy.value,
        }
        data = await self._json("POST", "/plans", json=payload)
        return data["planId"]

    async def get_change_plan(self, plan_id: str) -> ChangePlan | None:
        data = await self._json("GET", f"/plans/{plan_id}", allow_404=True)
        return ChangePlan.from_dict(data) if data is not None else None

    async def get_change_items(self, plan_id: str) -> list[ChangeItem]:
        data = await self._json("GET", f"/plans/{plan_id}/items")
        return [ChangeItem.from_dict(row) for row in data or []]

    async def reset_plan_for_retry(self, plan_id: str) -> None:
        await self._json("POST", f"/plans/{plan_id}/reset")

    async def cancel_change_plan(self, plan_id: str) -> None:
        await self._json("POST", f"/plans/{plan_id}/cancel")

    async def get_deployment_errors_for_plan(self, plan_id: str) -> list[DeploymentError]:
        data = await self._json("GET", f"/plans/{plan_id}/deployment-errors")
        return [DeploymentError.from_dict(row) for row in data or []]

    async def get_deployment_run_details(self, deployment_run_id: str) -> DeploymentRun | None:
        data = await self._json("GET", f"/deployment-runs/{deployment_run_id}", allow_404=True)
        return DeploymentRun.from_dict(data) if data is not None else None

    async def get_plan_history(self, limit: int = 10) -> list[PlanHistoryEntry]:
        data = await self._json("GET", "/plans", params={"limit": limit})
        return [PlanHistoryEntry.from_dict(row) for row in data or []]

    # ── deploy engine ──────────────────────────────────────────────────────

    async def validate_plan(self, plan_id: str, item_ids: list[str]) -> ValidationResult:
        data = await self._json("POST", f"/plans/{plan_id}/validate", json={"itemIds": item_ids})
        return ValidationResult.from_dict(data or {})

    async def execute_plan_with_backup(
        self,
        plan_id: str,
        item_ids: list[str],
        *,
        create_backup: bool,
        validate_only: bool = False,
    ) -> str:
        payload = {
            "itemIds": item_ids,
            "createBackup": create_backup,
            "validateOnly": validate_only,
        }
        data = await self._json("POST", f"/plans/{plan_id}/execute", json=payload)
        return data["deploymentRunId"]

    # ── backup engine ──────────────────────────────────────────────────────

    async def get_backup_summary(self, deployment_run_id: str) -> BackupSummary:
        data = await self._json("GET", f"/deployment-runs/{deployment_run_id}/backup")
        return BackupSummary.from_dict(data or {})

    async def get_backup_items(self, deployment_run_id: str) -> list[BackupItem]:
        data = await self._json(
            "GET", f"/deployment-runs/{deployment_run_id}/backup/items", allow_404=True
        )
        return [BackupItem.from_dict(row) for row in data or []]

    async def get_backup_content(self, backup_item_id: str) -> str:
        data = await self._json("GET", f"/backup-items/{backup_item_id}/content")
        return (data or {}).get("content") or ""

    async def get_diff(self, backup_item_id: str) -> DiffResult:
        data = await self._json("GET", f"/backup-items/{backup_item_id}/diff")
        return DiffResult.from_dict(data or {})

    async def restore_item(self, backup_item_id: str) -> RestoreResult:
        data = await self._json("POST", f"/backup-items/{backup_item_id}/restore")
        return RestoreResult.from_dict(data or {})

    async def restore_all(self, deployment_run_id: str) -> list[RestoreResult]:
        data = await self._json(
            "POST", f"/deployment-runs/{deployment_run_id}/backup/restore-all"
        )
        return [RestoreResult.from_dict(row) for row in data or []]

    async def cleanup_backup(self, deployment_run_id: str) -> None:
        await self._json("DELETE", f"/deployment-runs/{deployment_run_id}/backup")

    async def create_backup_for_deployment(self, deployment_run_id: str) -> list[BackupItem]:
        data = await self._json("POST", f"/deployment-runs/{deployment_run_id}/backup")
        return [BackupItem.from_dict(row) for row in data or []]

    # ── internal ───────────────────────────────────────────────────────────

    async def _json(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        allow_404: bool = False,
        retry: bool = True,
    ) -> Any:
        """Send a request and return the decoded body.

        404 returns ``None`` when *allow_404* is set and raises
        :class:`NotFoundError` otherwise. Other 4xx responses and exhausted
        retries raise :class:`RemoteExecutionError` carrying the engine's
        own message. *retry* set to False limits the call to one attempt.
        """
        resp = await self._request_with_retry(
            method, path, json=json, params=params, retry=retry
        )
        if resp.status_code == 404:
            if allow_404:
                return None
            raise NotFoundError(extract_error_message(resp))
        if resp.status_code >= 400:
            message = extract_error_message(resp)
            log.warning("engine.request_failed", method=method, path=path, status=resp.status_code)
            raise RemoteExecutionError(message)
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> httpx.Response:
        """Send with exponential backoff on 5xx and timeout errors.

        Only idempotent methods are retried; a POST gets exactly one attempt.
        """
        attempts = _MAX_RETRIES if retry and method in _IDEMPOTENT_METHODS else 1
        last_error = _GENERIC_ERROR
        for attempt in range(attempts):
            try:
                resp = await self._client.request(method, path, json=json, params=params)
                if resp.status_code < 500:
                    return resp

                last_error = extract_error_message(resp)
                log.warning(
                    "engine.server_error",
                    method=method,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt + 1,
                    max_retries=attempts,
                )
            except httpx.TimeoutException:
                log.warning(
                    "engine.timeout",
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                    max_retries=attempts,
                )
                last_error = f"engine request timed out: {method} {path}"
            except httpx.TransportError as exc:
                raise RemoteExecutionError(f"engine unreachable: {exc}") from exc

            if attempt < attempts - 1:
                await asyncio.sleep(self._retry_base_delay * (2**attempt))

        raise RemoteExecutionError(last_error)
