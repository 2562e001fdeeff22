"""Client-side working state of one change plan: selection, validation, failure detail."""

from __future__ import annotations

from dataclasses import dataclass, field

from versionwarden.engines.models import (
    ApplyStatus,
    ChangeItem,
    ChangePlan,
    DeploymentRun,
    Eligibility,
    PlanStatus,
    ValidationResult,
)

_SORT_KEYS = {
    "unit_number": lambda item: item.unit_number,
    "full_name": lambda item: item.full_name.lower(),
    "artifact_type": lambda item: (item.artifact_type, item.unit_number),
    "current_api_version": lambda item: (item.current_api_version, item.unit_number),
    "apply_status": lambda item: (item.apply_status.value, item.unit_number),
}


@dataclass
class PlanWorkspace:
    plan: ChangePlan
    items: list[ChangeItem] = field(default_factory=list)
    selected_ids: set[str] = field(default_factory=set)
    validation: ValidationResult | None = None
    validation_complete: bool = False
    failure_detail: str | None = None
    deployment_run: DeploymentRun | None = None

    # ── counts ─────────────────────────────────────────────────────────────

    @property
    def eligible_ids(self) -> set[str]:
        return {item.id for item in self.items if item.is_eligible}

    @property
    def eligible_count(self) -> int:
        return len(self.eligible_ids)

    @property
    def blocked_count(self) -> int:
        return sum(1 for item in self.items if item.eligibility is Eligibility.BLOCKED)

    @property
    def eligible_selected_ids(self) -> list[str]:
        """Selected ids that are eligible, in plan order."""
        return [item.id for item in self.items if item.is_eligible and item.id in self.selected_ids]

    @property
    def selected_count(self) -> int:
        return len(self.eligible_selected_ids)

    @property
    def applied_count(self) -> int:
        return self._count_apply(ApplyStatus.APPLIED)

    @property
    def failed_count(self) -> int:
        return self._count_apply(ApplyStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        """Items that were never attempted: blocked by policy or skipped at execution."""
        return sum(
            1
            for item in self.items
            if item.eligibility is Eligibility.BLOCKED or item.apply_status is ApplyStatus.SKIPPED
        )

    @property
    def has_execution_results(self) -> bool:
        return any(item.apply_status is not ApplyStatus.PENDING for item in self.items)

    def _count_apply(self, status: ApplyStatus) -> int:
        return sum(1 for item in self.items if item.apply_status is status)

    # ── gates ──────────────────────────────────────────────────────────────

    @property
    def can_validate(self) -> bool:
        match self.plan.status:
            case PlanStatus.DRAFT | PlanStatus.READY:
                return self.selected_count > 0
            case (
                PlanStatus.VALIDATED
                | PlanStatus.DEPLOYING
                | PlanStatus.EXECUTING
                | PlanStatus.DEPLOYED
                | PlanStatus.FAILED
                | PlanStatus.CANCELLED
            ):
                return False

    @property
    def can_deploy(self) -> bool:
        return self.validation_complete and self.selected_count > 0

    # ── views ──────────────────────────────────────────────────────────────

    def filtered_items(
        self,
        *,
        eligibility: Eligibility | None = None,
        sort_by: str = "unit_number",
        descending: bool = False,
    ) -> list[ChangeItem]:
        if sort_by not in _SORT_KEYS:
            raise ValueError(f"unknown sort key: {sort_by}")
        items = [i for i in self.items if eligibility is None or i.eligibility is eligibility]
        return sorted(items, key=_SORT_KEYS[sort_by], reverse=descending)
