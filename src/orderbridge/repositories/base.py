"""Base repository with owner-scoped CRUD operations."""

from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository:
    """Generic async repository for SQLAlchemy models.

    Every row carries an ``owner_id``; lookups through the scoped helpers
    never return another tenant's rows.
    """

    pk_field: str = "id"

    def __init__(self, session: AsyncSession, model_class: type[T]):
        self.session = session
        self.model_class = model_class

    def _owned(self, owner_id: str):
        return select(self.model_class).where(self.model_class.owner_id == owner_id)

    async def get_owned(self, owner_id: str, pk_value: str, for_update: bool = False) -> T | None:
        """Get a single record by primary key inside an owner scope."""
        stmt = self._owned(owner_id).where(
            getattr(self.model_class, self.pk_field) == pk_value
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, **kwargs: Any) -> T:
        """Create and persist a new record."""
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: T, **kwargs: Any) -> T:
        """Update an existing record."""
        for key, value in kwargs.items():
            setattr(row, key, value)
        await self.session.flush()
        return row

    async def delete(self, row: T) -> None:
        await self.session.delete(row)
        await self.session.flush()

    async def list_owned(self, owner_id: str, **filters: Any) -> list[T]:
        """List an owner's records, filtered by exact field matches (None skips)."""
        stmt = self._owned(owner_id)
        for field, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(self.model_class, field) == value)
        stmt = stmt.order_by(self.model_class.created_at.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
