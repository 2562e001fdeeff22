"""Abstract interfaces of the external engines the orchestrator drives.

Scanning, plan building, deployment and backup all execute outside this
process. The orchestrator only sequences and gates them, so every engine is
consumed through one of these ABCs. Implementations raise
:class:`~versionwarden.services.RemoteExecutionError` when the engine
reports failure and :class:`~versionwarden.services.NotFoundError` when a
referenced record is gone (except where a method documents ``None``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

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


class ScanEngine(ABC):
    @abstractmethod
    async def start_scan(self, config: ScanConfig) -> str:
        """Queue a scan and return its id."""

    @abstractmethod
    async def get_scan_status(self, scan_id: str) -> Scan | None:
        """Return the scan, or ``None`` when it no longer exists."""

    @abstractmethod
    async def cancel_scan(self, scan_id: str) -> None: ...

    @abstractmethod
    async def get_findings_by_scan(self, scan_id: str) -> list[Finding]: ...

    @abstractmethod
    async def get_findings_summary(self, scan_id: str) -> dict[Severity, int]: ...

    @abstractmethod
    async def get_recent_scans(self, limit: int = 10) -> list[ScanHistoryEntry]: ...


class PlanEngine(ABC):
    @abstractmethod
    async def create_change_plan(
        self,
        scan_id: str,
        *,
        target_api_version: float,
        increment_policy: IncrementPolicy,
        validate_only: bool,
        test_policy: TestPolicy,
    ) -> str:
        """Build a plan from a scan and return its id.

        Item eligibility is decided here, once, by the engine.
        """

    @abstractmethod
    async def get_change_plan(self, plan_id: str) -> ChangePlan | None: ...

    @abstractmethod
    async def get_change_items(self, plan_id: str) -> list[ChangeItem]: ...

    @abstractmethod
    async def reset_plan_for_retry(self, plan_id: str) -> None: ...

    @abstractmethod
    async def cancel_change_plan(self, plan_id: str) -> None: ...

    @abstractmethod
    async def get_deployment_errors_for_plan(self, plan_id: str) -> list[DeploymentError]: ...

    @abstractmethod
    async def get_deployment_run_details(self, deployment_run_id: str) -> DeploymentRun | None: ...

    @abstractmethod
    async def get_plan_history(self, limit: int = 10) -> list[PlanHistoryEntry]: ...


class DeployEngine(ABC):
    @abstractmethod
    async def validate_plan(self, plan_id: str, item_ids: list[str]) -> ValidationResult:
        """Check-only deploy of *item_ids*; per-item problems land in ``errors``."""

    @abstractmethod
    async def execute_plan_with_backup(
        self,
        plan_id: str,
        item_ids: list[str],
        *,
        create_backup: bool,
        validate_only: bool = False,
    ) -> str:
        """Start a deployment of *item_ids* and return the deployment run id."""


class BackupEngine(ABC):
    @abstractmethod
    async def get_backup_summary(self, deployment_run_id: str) -> BackupSummary: ...

    @abstractmethod
    async def get_backup_items(self, deployment_run_id: str) -> list[BackupItem]: ...

    @abstractmethod
    async def get_backup_content(self, backup_item_id: str) -> str: ...

    @abstractmethod
    async def get_diff(self, backup_item_id: str) -> DiffResult: ...

    @abstractmethod
    async def restore_item(self, backup_item_id: str) -> RestoreResult: ...

    @abstractmethod
    async def restore_all(self, deployment_run_id: str) -> list[RestoreResult]: ...

    @abstractmethod
    async def cleanup_backup(self, deployment_run_id: str) -> None: ...

    @abstractmethod
    async def create_backup_for_deployment(self, deployment_run_id: str) -> list[BackupItem]: ...
