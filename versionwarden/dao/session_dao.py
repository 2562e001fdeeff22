"""WorkflowSessionDAO — workflow_sessions table operations."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from versionwarden.dao.base import BaseDAO
from versionwarden.models.workflow_session import WorkflowSession


class WorkflowSessionDAO(BaseDAO[WorkflowSession]):
    model = WorkflowSession

    async def get_by_owner(self, session: AsyncSession, owner_id: str) -> WorkflowSession | None:
        """Return the owner's session record, re-reading any cached instance."""
        return await self.first_by(session, fresh=True, owner_id=owner_id)

    async def write_state(
        self, session: AsyncSession, owner_id: str, **values: Any
    ) -> WorkflowSession | None:
        """Overwrite the given columns of the owner's record in one UPDATE.

        Callers pass the complete set of workflow columns so that a reader
        never observes a half-applied transition. Returns the refreshed
        record, or None if the owner has no session.
        """
        if not await self.update_where(session, {"owner_id": owner_id}, **values):
            return None
        return await self.get_by_owner(session, owner_id)
