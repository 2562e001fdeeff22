"""Badge tones for statuses shown by the presentation layer."""

from __future__ import annotations

from typing import assert_never

from versionwarden.engines.models import (
    ApplyStatus,
    DeploymentStatus,
    Eligibility,
    PlanStatus,
    RestoreStatus,
    ScanStatus,
    Severity,
)
from versionwarden.services.backup_service import ExpirationLevel

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"
INFO = "info"
NEUTRAL = "neutral"


def scan_status_tone(status: ScanStatus) -> str:
    match status:
        case ScanStatus.COMPLETED:
            return SUCCESS
        case ScanStatus.RUNNING | ScanStatus.QUEUED:
            return INFO
        case ScanStatus.FAILED:
            return ERROR
        case ScanStatus.CANCELLED:
            return NEUTRAL
        case _:
            assert_never(status)


def plan_status_tone(status: PlanStatus) -> str:
    match status:
        case PlanStatus.DEPLOYED | PlanStatus.VALIDATED:
            return SUCCESS
        case PlanStatus.DEPLOYING | PlanStatus.EXECUTING | PlanStatus.READY:
            return INFO
        case PlanStatus.FAILED:
            return ERROR
        case PlanStatus.DRAFT | PlanStatus.CANCELLED:
            return NEUTRAL
        case _:
            assert_never(status)


def apply_status_tone(status: ApplyStatus) -> str:
    match status:
        case ApplyStatus.APPLIED:
            return SUCCESS
        case ApplyStatus.FAILED:
            return ERROR
        case ApplyStatus.SKIPPED:
            return WARNING
        case ApplyStatus.PENDING:
            return NEUTRAL
        case _:
            assert_never(status)


def eligibility_tone(eligibility: Eligibility) -> str:
    match eligibility:
        case Eligibility.ELIGIBLE:
            return SUCCESS
        case Eligibility.BLOCKED:
            return WARNING
        case _:
            assert_never(eligibility)


def deployment_status_tone(status: DeploymentStatus) -> str:
    match status:
        case DeploymentStatus.SUCCEEDED:
            return SUCCESS
        case DeploymentStatus.QUEUED | DeploymentStatus.RUNNING:
            return INFO
        case DeploymentStatus.FAILED:
            return ERROR
        case _:
            assert_never(status)


def restore_status_tone(status: RestoreStatus) -> str:
    match status:
        case RestoreStatus.RESTORED:
            return SUCCESS
        case RestoreStatus.NOT_RESTORED:
            return NEUTRAL
        case _:
            assert_never(status)


def severity_tone(severity: Severity) -> str:
    match severity:
        case Severity.CRITICAL:
            return ERROR
        case Severity.WARNING:
            return WARNING
        case Severity.INFO:
            return INFO
        case _:
            assert_never(severity)


def expiration_tone(level: ExpirationLevel) -> str:
    match level:
        case ExpirationLevel.URGENT:
            return ERROR
        case ExpirationLevel.WARNING:
            return WARNING
        case ExpirationLevel.NORMAL:
            return SUCCESS
        case _:
            assert_never(level)
