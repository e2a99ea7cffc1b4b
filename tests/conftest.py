"""
Shared test fixtures for the GhostNote billing test suite.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.interfaces import IBillingProcessor, IIdentityProvider
from app.core.models import Plan, SubscriptionStatus
from app.db.models import Account, Base, Credential
from app.services.account_store import AccountStore
from app.services.account_sync import AccountSyncHub
from app.services.notification_service import NotificationDispatcher
from tests.factories import PAID_FIELDS, checkout_session, processor_subscription


# ─── Database ────────────────────────────────────────────────


@pytest.fixture
async def session_factory():
    """In-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def sync_hub() -> AccountSyncHub:
    return AccountSyncHub()


@pytest.fixture
def store(session, sync_hub) -> AccountStore:
    return AccountStore(session, sync_hub=sync_hub)


@pytest.fixture
def seed_account(session_factory):
    """Insert an account and its credential directly, bypassing the store."""

    async def _seed(account_id: str = "user-1", **fields) -> None:
        values = {
            "email": f"{account_id}@example.com",
            "name": "Ada",
            "plan": Plan.FREE.value,
            "subscription_status": SubscriptionStatus.NONE.value,
        }
        values.update({k: getattr(v, "value", v) for k, v in fields.items()})
        async with session_factory() as s:
            s.add(Account(id=account_id, **values))
            s.add(Credential(id=account_id, email=values["email"]))
            await s.commit()

    return _seed


@pytest.fixture
def seed_paid_account(seed_account):
    """Insert an account on an active monthly Clone subscription."""

    async def _seed(account_id: str = "user-1", **fields) -> None:
        await seed_account(account_id, **{**PAID_FIELDS, **fields})

    return _seed


# ─── Collaborator doubles ────────────────────────────────────


@pytest.fixture
def processor() -> AsyncMock:
    """Processor double that echoes the requested cancel flag."""
    mock = AsyncMock(spec=IBillingProcessor)

    async def _set_cancel(subscription_id, cancel):
        return processor_subscription(cancel_at_period_end=cancel, subscription_id=subscription_id)

    mock.set_cancel_at_period_end.side_effect = _set_cancel
    mock.cancel_immediately.return_value = None
    mock.list_subscriptions.return_value = [processor_subscription()]
    mock.retrieve_subscription.return_value = processor_subscription()
    mock.retrieve_checkout_session.return_value = checkout_session()
    return mock


@pytest.fixture
def identity() -> AsyncMock:
    mock = AsyncMock(spec=IIdentityProvider)
    mock.delete_credential.return_value = True
    return mock


@pytest.fixture
def email_transport() -> AsyncMock:
    transport = AsyncMock()
    transport.deliver.return_value = "msg_1"
    return transport


@pytest.fixture
def dispatcher(email_transport) -> NotificationDispatcher:
    return NotificationDispatcher(transport=email_transport, support_email="support@example.com")
