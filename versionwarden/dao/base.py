"""Generic base DAO — insert, filtered lookup and bulk column writes."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from versionwarden.core.database import Base

ModelT = TypeVar("ModelT", bound=Base)

_IMMUTABLE = frozenset({"id", "created_at", "updated_at"})


class BaseDAO(Generic[ModelT]):
    """Base data-access object. Subclasses set ``model`` class attribute."""

    model: type[ModelT]

    def _check_columns(self, values: dict[str, Any]) -> None:
        """Raise AttributeError for immutable or unknown column names."""
        column_keys = set(self.model.__mapper__.column_attrs.keys())
        for key in values:
            if key in _IMMUTABLE:
                raise AttributeError(f"'{key}' is immutable and cannot be updated")
            if key not in column_keys:
                raise AttributeError(f"{self.model.__name__} has no column '{key}'")

    async def create(self, session: AsyncSession, **values: Any) -> ModelT:
        obj = self.model(**values)
        session.add(obj)
        await session.flush()
        await session.refresh(obj)
        return obj

    async def first_by(
        self, session: AsyncSession, *, fresh: bool = False, **filters: Any
    ) -> ModelT | None:
        """Return the first row matching all *filters*, or None.

        With *fresh* set, an instance already in the identity map is
        overwritten from the row just read.

        Raises ``ValueError`` if called without any filters.
        """
        if not filters:
            raise ValueError("first_by() requires at least one filter")
        stmt = select(self.model)
        for key, val in filters.items():
            stmt = stmt.where(getattr(self.model, key) == val)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        return result.scalars().first()

    async def update_where(
        self, session: AsyncSession, filters: dict[str, Any], **values: Any
    ) -> int:
        """Write *values* to every row matching *filters* in one UPDATE.

        Returns the number of rows matched.
        """
        if not filters:
            raise ValueError("update_where() requires at least one filter")
        self._check_columns(values)
        stmt = update(self.model)
        for key, val in filters.items():
            stmt = stmt.where(getattr(self.model, key) == val)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        result = await session.execute(stmt)
        return result.rowcount
