"""
Credential (identity record) repository.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Credential
from app.db.repositories.base_repo import BaseRepository


class CredentialRepository(BaseRepository[Credential]):
    """Repository for identity credential records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Credential)
