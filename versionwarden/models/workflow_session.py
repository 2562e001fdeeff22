"""workflow_sessions table."""

import uuid
from typing import Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from versionwarden.core.database import Base, TimestampMixin


class WorkflowSession(TimestampMixin, Base):
    __tablename__ = "workflow_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    workflow_step: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    # sorted list of step ids already passed
    completed_steps: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)

    # pointers into the external engines
    current_scan_id: Mapped[Optional[str]] = mapped_column(Text)
    current_change_plan_id: Mapped[Optional[str]] = mapped_column(Text)
    current_deployment_run_id: Mapped[Optional[str]] = mapped_column(Text)
    has_backup: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )

    __table_args__ = (
        CheckConstraint("workflow_step BETWEEN 0 AND 5", name="workflow_step_range"),
    )
