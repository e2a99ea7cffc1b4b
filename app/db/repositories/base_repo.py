"""
Generic async CRUD repository base class.

Provides the data access methods shared by the account and credential
repositories. Repositories only flush; committing is the caller's call.
"""

from typing import Generic, TypeVar

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with common CRUD operations keyed by string id."""

    def __init__(self, session: AsyncSession, model: type[ModelType]):
        self.session = session
        self.model = model

    async def get_by_id(self, record_id: str) -> ModelType | None:
        """Get a single record by primary key."""
        return await self.session.get(self.model, record_id)

    async def create(self, **kwargs) -> ModelType:
        """Create a new record."""
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def update(self, record_id: str, **kwargs) -> ModelType | None:
        """Update an existing record by ID. Unknown attributes are ignored."""
        instance = await self.get_by_id(record_id)
        if instance is None:
            return None
        for key, value in kwargs.items():
            if hasattr(instance, key):
                setattr(instance, key, value)
        await self.session.flush()
        return instance

    async def delete(self, record_id: str) -> bool:
        """Delete a record by ID. Returns True if deleted, False if not found."""
        stmt = delete(self.model).where(self.model.id == record_id)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount > 0
