"""
Account-specific database repository.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Account
from app.db.repositories.base_repo import BaseRepository


class AccountRepository(BaseRepository[Account]):
    """Repository for account records and processor-reference lookups."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Account)

    async def find_by_customer_id(self, customer_id: str) -> Account | None:
        """Find an account by its Stripe customer ID."""
        stmt = select(Account).where(Account.customer_id == customer_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_subscription_id(self, subscription_id: str) -> Account | None:
        """Find an account by its Stripe subscription ID."""
        stmt = select(Account).where(Account.subscription_id == subscription_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
