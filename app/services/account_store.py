"""
Account record store — the single source of truth for billing state.

Wraps the account repository with the rules every writer must obey:
- the invariants of the record are checked before each write;
- each write is committed on its own (one authoritative write per
  transition, last-write-wins between concurrent writers);
- every committed change is published to real-time subscribers.
"""

import logging
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AccountNotFoundError, InvariantViolationError
from app.core.models import AccountSnapshot, Plan, SubscriptionStatus
from app.db.models import Account
from app.db.repositories.account_repo import AccountRepository
from app.services.account_sync import AccountSyncHub, get_sync_hub

logger = logging.getLogger(__name__)

WRITABLE_FIELDS = frozenset({
    "email",
    "name",
    "plan",
    "billing_cycle",
    "subscription_id",
    "customer_id",
    "subscription_status",
    "cancel_at_period_end",
    "current_period_end",
    "payment_warning",
    "has_used_trial",
})


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class AccountStore:
    """Read/write access to account records with publish-on-write."""

    def __init__(
        self,
        session: AsyncSession,
        sync_hub: AccountSyncHub | None = None,
    ):
        self._session = session
        self._repo = AccountRepository(session)
        self._hub = sync_hub or get_sync_hub()

    # ─── Reads ────────────────────────────────────────────────

    async def get(self, account_id: str) -> AccountSnapshot | None:
        account = await self._repo.get_by_id(account_id)
        return AccountSnapshot.model_validate(account) if account else None

    async def require(self, account_id: str) -> AccountSnapshot:
        """Get an account or raise AccountNotFoundError."""
        snapshot = await self.get(account_id)
        if snapshot is None:
            raise AccountNotFoundError("User not found")
        return snapshot

    async def find_by_customer_id(self, customer_id: str) -> AccountSnapshot | None:
        account = await self._repo.find_by_customer_id(customer_id)
        return AccountSnapshot.model_validate(account) if account else None

    async def find_by_subscription_id(self, subscription_id: str) -> AccountSnapshot | None:
        account = await self._repo.find_by_subscription_id(subscription_id)
        return AccountSnapshot.model_validate(account) if account else None

    # ─── Writes ───────────────────────────────────────────────

    async def create(self, account_id: str, email: str = "", name: str = "") -> AccountSnapshot:
        """Create the signup-default record: free plan, no subscription."""
        account = await self._repo.create(
            id=account_id,
            email=email,
            name=name or (email.split("@")[0] if email else ""),
            plan=Plan.FREE.value,
            subscription_status=SubscriptionStatus.NONE.value,
            cancel_at_period_end=False,
            payment_warning=False,
        )
        await self._session.commit()
        snapshot = AccountSnapshot.model_validate(account)
        logger.info(f"Created account {account_id}")
        await self._hub.publish(snapshot)
        return snapshot

    async def write(self, account_id: str, **fields: Any) -> AccountSnapshot:
        """
        Apply one authoritative write to an account record.

        Raises:
            AccountNotFoundError: The record does not exist (e.g. deleted
                concurrently).
            InvariantViolationError: The merged record would be invalid.
        """
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable: {', '.join(sorted(unknown))}")

        account = await self._repo.get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError("User not found")

        self._check_invariants(account, fields)

        values = {key: _column_value(value) for key, value in fields.items()}
        await self._repo.update(account_id, **values)
        await self._session.commit()

        snapshot = AccountSnapshot.model_validate(account)
        await self._hub.publish(snapshot)
        return snapshot

    async def delete(self, account_id: str) -> bool:
        """Delete the record and tell subscribers it is gone."""
        deleted = await self._repo.delete(account_id)
        await self._session.commit()
        if deleted:
            await self._hub.publish_deleted(account_id)
        return deleted

    @staticmethod
    def _check_invariants(account: Account, fields: dict[str, Any]) -> None:
        subscription_id = fields.get("subscription_id", account.subscription_id)
        cancel_at_period_end = fields.get("cancel_at_period_end", account.cancel_at_period_end)
        if cancel_at_period_end and subscription_id is None:
            raise InvariantViolationError(
                "cancel_at_period_end requires a subscription",
                details={"account_id": account.id},
            )

        if "customer_id" in fields and account.customer_id is not None:
            if fields["customer_id"] != account.customer_id:
                raise InvariantViolationError(
                    "customer_id is set once and never replaced or cleared",
                    details={"account_id": account.id},
                )
