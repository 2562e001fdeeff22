"""Records exchanged with the external scan / plan / deploy / backup engines.

These are pure data structures with no DB dependencies. Each record can be
built from the engine's camelCase JSON shape via ``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ScanStatus(str, Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED)


class FindingCategory(str, Enum):
    BREAKING_CHANGE = "BreakingChange"
    DEPRECATION = "Deprecation"
    VERSION_RISK = "VersionRisk"
    DRIFT = "Drift"
    CODE_QUALITY = "CodeQuality"


class Severity(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"


class NamespacePolicy(str, Enum):
    CUSTOM_ONLY = "CustomOnly"
    PACKAGE_ONLY = "PackageOnly"
    ALL = "All"


class IncrementPolicy(str, Enum):
    INCREMENTAL_ONLY = "IncrementalOnly"
    ALLOW_JUMPS = "AllowJumps"


class TestPolicy(str, Enum):
    __test__ = False  # not a pytest class

    RUN_SPECIFIED_TESTS = "RunSpecifiedTests"
    RUN_LOCAL_TESTS = "RunLocalTests"
    RUN_ALL_TESTS_IN_ORG = "RunAllTestsInOrg"
    NO_TEST_RUN = "NoTestRun"


class PlanStatus(str, Enum):
    DRAFT = "Draft"
    READY = "Ready"
    VALIDATED = "Validated"
    DEPLOYING = "Deploying"
    EXECUTING = "Executing"
    DEPLOYED = "Deployed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.DEPLOYED, PlanStatus.CANCELLED)


class Eligibility(str, Enum):
    ELIGIBLE = "Eligible"
    BLOCKED = "Blocked"


class ApplyStatus(str, Enum):
    PENDING = "Pending"
    APPLIED = "Applied"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class ValidationStatus(str, Enum):
    NOT_VALIDATED = "NotValidated"
    PASSED = "Passed"
    FAILED = "Failed"


class DeploymentStatus(str, Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class RestoreStatus(str, Enum):
    NOT_RESTORED = "NotRestored"
    RESTORED = "Restored"


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


# ── scan ───────────────────────────────────────────────────────────────────


@dataclass
class ScanConfig:
    """Parameters for a scan start request."""

    types: list[str] = field(
        default_factory=lambda: ["ApexClass", "ApexTrigger", "ApexPage", "ApexComponent"]
    )
    target_api_version: float = 65.0
    namespace_policy: NamespacePolicy = NamespacePolicy.CUSTOM_ONLY
    min_api_version: float | None = None
    max_api_version: float | None = None
    baseline_mode: str = "LastScan"
    include_content: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "types": list(self.types),
            "targetApiVersion": f"{self.target_api_version:.1f}",
            "namespacePolicy": self.namespace_policy.value,
            "minApiVersion": self.min_api_version,
            "maxApiVersion": self.max_api_version,
            "baselineMode": self.baseline_mode,
            "includeContent": self.include_content,
        }


@dataclass
class Scan:
    id: str
    status: ScanStatus
    target_api_version: float | None = None
    included_types: list[str] = field(default_factory=list)
    namespace_policy: str | None = None
    started_at: datetime | None = None
    total_artifacts: int = 0
    processed_artifacts: int = 0
    findings_count: int = 0
    alerts_count: int = 0

    @property
    def progress(self) -> int:
        """Percentage of artifacts processed (0 when the total is unknown)."""
        if not self.total_artifacts:
            return 0
        return round(self.processed_artifacts / self.total_artifacts * 100)

    @property
    def is_running(self) -> bool:
        return self.status in (ScanStatus.QUEUED, ScanStatus.RUNNING)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scan:
        return cls(
            id=data.get("id") or data["scanId"],
            status=ScanStatus(data["status"]),
            target_api_version=_float(data.get("targetApiVersion")),
            included_types=list(data.get("includedTypes") or []),
            namespace_policy=data.get("namespacePolicy"),
            started_at=parse_datetime(data.get("startedAt")),
            total_artifacts=int(data.get("totalArtifacts") or 0),
            processed_artifacts=int(data.get("processedArtifacts") or 0),
            findings_count=int(data.get("findingsCount") or 0),
            alerts_count=int(data.get("alertsCount") or 0),
        )


@dataclass
class ScanHistoryEntry:
    """A row of the recent-scans selector."""

    id: str
    status: ScanStatus
    display_name: str
    started_at: datetime | None = None
    findings_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanHistoryEntry:
        summary = data.get("summary") or {}
        return cls(
            id=data.get("id") or data["scanId"],
            status=ScanStatus(data["status"]),
            display_name=data.get("displayName") or data.get("name") or "",
            started_at=parse_datetime(data.get("startedAt")),
            findings_count=int(data.get("findingsCount") or summary.get("findingsCount") or 0),
        )


@dataclass(frozen=True)
class Finding:
    id: str
    scan_id: str
    artifact_name: str
    category: FindingCategory
    severity: Severity
    is_blocking: bool = False
    summary: str = ""
    rule_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        return cls(
            id=data["id"],
            scan_id=data["scanId"],
            artifact_name=data.get("artifactName") or "",
            category=FindingCategory(data["category"]),
            severity=Severity(data["severity"]),
            is_blocking=bool(data.get("isBlocking", False)),
            summary=data.get("summary") or "",
            rule_id=data.get("ruleId") or "",
        )


# ── change plan ────────────────────────────────────────────────────────────


@dataclass
class ChangePlan:
    id: str
    source_scan_id: str
    target_api_version: float
    status: PlanStatus
    increment_policy: IncrementPolicy = IncrementPolicy.INCREMENTAL_ONLY
    validate_only: bool = False
    test_policy: TestPolicy = TestPolicy.RUN_SPECIFIED_TESTS
    eligible_items: int = 0
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangePlan:
        return cls(
            id=data["id"],
            source_scan_id=data.get("sourceScanId") or "",
            target_api_version=float(data["targetApiVersion"]),
            status=PlanStatus(data["status"]),
            increment_policy=IncrementPolicy(data.get("incrementPolicy") or "IncrementalOnly"),
            validate_only=bool(data.get("validateOnly", False)),
            test_policy=TestPolicy(data.get("testPolicy") or "RunSpecifiedTests"),
            eligible_items=int(data.get("eligibleItems") or 0),
            name=data.get("name"),
        )


@dataclass
class ChangeItem:
    id: str
    plan_id: str
    unit_number: int
    full_name: str
    artifact_type: str
    current_api_version: float
    target_api_version: float
    eligibility: Eligibility
    apply_status: ApplyStatus = ApplyStatus.PENDING
    block_reason: str | None = None
    validation_status: ValidationStatus = ValidationStatus.NOT_VALIDATED
    error_details: str | None = None

    @property
    def is_eligible(self) -> bool:
        return self.eligibility is Eligibility.ELIGIBLE

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeItem:
        return cls(
            id=data["id"],
            plan_id=data.get("planId") or "",
            unit_number=int(data.get("unitNumber") or 0),
            full_name=data["fullName"],
            artifact_type=data.get("artifactType") or "",
            current_api_version=float(data.get("currentApiVersion") or 0),
            target_api_version=float(data.get("targetApiVersion") or 0),
            eligibility=Eligibility(data["eligibility"]),
            apply_status=ApplyStatus(data.get("applyStatus") or "Pending"),
            block_reason=data.get("blockReason"),
            validation_status=ValidationStatus(data.get("validationStatus") or "NotValidated"),
            error_details=data.get("errorDetails"),
        )


@dataclass
class PlanHistoryEntry:
    """A row of the plan selector."""

    id: str
    status: PlanStatus
    display_name: str
    source_scan_id: str | None = None
    item_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanHistoryEntry:
        return cls(
            id=data["id"],
            status=PlanStatus(data["status"]),
            display_name=data.get("displayName") or data.get("name") or "",
            source_scan_id=data.get("sourceScanId"),
            item_count=int(data.get("itemCount") or 0),
        )


@dataclass
class ValidationResult:
    validated_ids: list[str]
    errors: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def passed(self) -> bool:
        return not self.errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationResult:
        return cls(
            validated_ids=list(data.get("validatedIds") or []),
            errors=dict(data.get("errors") or {}),
            timestamp=parse_datetime(data.get("timestamp")) or datetime.now(timezone.utc),
        )


# ── deployment ─────────────────────────────────────────────────────────────


@dataclass
class DeploymentRun:
    id: str
    plan_id: str
    status: DeploymentStatus
    error_message: str | None = None
    success_count: int = 0
    fail_count: int = 0
    backup_enabled: bool = False

    @property
    def total_processed(self) -> int:
        return self.success_count + self.fail_count

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentRun:
        return cls(
            id=data["id"],
            plan_id=data.get("planId") or "",
            status=DeploymentStatus(data["status"]),
            error_message=data.get("errorMessage") or None,
            success_count=int(data.get("successCount") or 0),
            fail_count=int(data.get("failCount") or 0),
            backup_enabled=bool(data.get("backupEnabled", False)),
        )


@dataclass(frozen=True)
class DeploymentError:
    """Item-level failure detail reported for a deployment attempt."""

    full_name: str
    error_details: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentError:
        return cls(
            full_name=data.get("fullName") or "",
            error_details=data.get("errorDetails") or "",
        )


# ── backup ─────────────────────────────────────────────────────────────────


@dataclass
class BackupItem:
    id: str
    deployment_run_id: str
    full_name: str
    artifact_type: str
    original_api_version: float | None = None
    backup_created_at: datetime | None = None
    expiration_date: datetime | None = None
    restore_status: RestoreStatus = RestoreStatus.NOT_RESTORED
    restored_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupItem:
        return cls(
            id=data["id"],
            deployment_run_id=data.get("deploymentRunId") or "",
            full_name=data["fullName"],
            artifact_type=data.get("artifactType") or "",
            original_api_version=_float(data.get("originalApiVersion")),
            backup_created_at=parse_datetime(data.get("backupCreatedAt")),
            expiration_date=parse_datetime(data.get("expirationDate")),
            restore_status=RestoreStatus(data.get("restoreStatus") or "NotRestored"),
            restored_at=parse_datetime(data.get("restoredAt")),
        )


@dataclass
class BackupSummary:
    backup_created_at: datetime | None = None
    expiration_date: datetime | None = None
    item_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupSummary:
        return cls(
            backup_created_at=parse_datetime(data.get("backupCreatedAt")),
            expiration_date=parse_datetime(data.get("expirationDate")),
            item_count=int(data.get("itemCount") or 0),
        )


@dataclass(frozen=True)
class DiffResult:
    has_content_changes: bool = False
    has_metadata_changes: bool = False
    content_diff: str | None = None

    @property
    def has_changes(self) -> bool:
        return self.has_content_changes or self.has_metadata_changes

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiffResult:
        return cls(
            has_content_changes=bool(data.get("hasContentChanges", False)),
            has_metadata_changes=bool(data.get("hasMetadataChanges", False)),
            content_diff=data.get("contentDiff"),
        )


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    backup_item_id: str | None = None
    full_name: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RestoreResult:
        return cls(
            success=bool(data.get("success", False)),
            backup_item_id=data.get("backupItemId"),
            full_name=data.get("fullName"),
            error_message=data.get("errorMessage"),
        )
