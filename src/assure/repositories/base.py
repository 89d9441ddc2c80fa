"""Base repository shared by the version store, audit and job tables."""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from assure.db.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Async repository over one table.

    Subclasses set ``model_class`` and, when the primary key is not ``id``,
    ``pk_field``. Writes only flush; the caller owns the transaction.
    """

    model_class: type[T]
    pk_field = "id"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, pk_value: str) -> T | None:
        stmt = select(self.model_class).where(getattr(self.model_class, self.pk_field) == pk_value)
        return await self._first(stmt)

    async def create(self, **kwargs: Any) -> T:
        """Create and persist a new record."""
        row = self.model_class(**kwargs)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: T, **kwargs: Any) -> T:
        for key, value in kwargs.items():
            setattr(row, key, value)
        await self.session.flush()
        return row

    async def _first(self, stmt: Select) -> T | None:
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _all(self, stmt: Select) -> list[T]:
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
