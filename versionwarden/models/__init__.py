"""SQLAlchemy ORM models — one file per table."""

from versionwarden.models.workflow_session import WorkflowSession

__all__ = [
    "WorkflowSession",
]
