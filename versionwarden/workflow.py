"""Workflow steps of a remediation session and the stepper view derived from them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum


class WorkflowStep(IntEnum):
    NOT_STARTED = 0
    SCAN_RUNNING = 1
    SCAN_REVIEWED = 2
    PLAN_CREATED = 3
    DEPLOYED = 4
    BACKUP_MANAGED = 5


STEP_LABELS: dict[WorkflowStep, tuple[str, str]] = {
    WorkflowStep.SCAN_RUNNING: ("Scan", "Run compliance scan"),
    WorkflowStep.SCAN_REVIEWED: ("Review", "Review findings"),
    WorkflowStep.PLAN_CREATED: ("Plan", "Create change plan"),
    WorkflowStep.DEPLOYED: ("Deploy", "Deploy changes"),
    WorkflowStep.BACKUP_MANAGED: ("Backup", "Backup & restore"),
}


def advance(
    current: int, completed: Iterable[int], target: WorkflowStep
) -> tuple[int, list[int]]:
    """Return ``(step, completed_steps)`` after reaching *target*.

    The step never moves backwards and reaching step N marks 1..N-1 complete.
    """
    step = max(int(current), int(target))
    done = set(completed) | set(range(1, int(target)))
    return step, sorted(done)


@dataclass(frozen=True)
class StepView:
    id: int
    label: str
    description: str
    is_completed: bool
    is_current: bool
    is_disabled: bool


@dataclass(frozen=True)
class WorkflowProgress:
    """Read-only progress view for one session."""

    current_step: int
    completed_steps: tuple[int, ...]

    def is_completed(self, step: int) -> bool:
        return step in self.completed_steps or step < self.current_step

    def can_navigate(self, step: int) -> bool:
        """A step can be revisited once completed, or if it is the current one."""
        return step in self.completed_steps or 0 < step <= self.current_step

    @property
    def steps(self) -> list[StepView]:
        views = []
        for step, (label, description) in STEP_LABELS.items():
            completed = self.is_completed(step)
            views.append(
                StepView(
                    id=int(step),
                    label=label,
                    description=description,
                    is_completed=completed,
                    is_current=step == self.current_step,
                    is_disabled=step > self.current_step and not completed,
                )
            )
        return views

    @property
    def percentage(self) -> int:
        if self.current_step == 0:
            return 0
        return round((self.current_step - 1) / (len(STEP_LABELS) - 1) * 100)

    @property
    def label(self) -> str:
        if self.current_step == 0:
            return "Not Started"
        name, _ = STEP_LABELS[WorkflowStep(self.current_step)]
        return f"Step {self.current_step} of {len(STEP_LABELS)}: {name}"
