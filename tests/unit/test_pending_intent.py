"""
Tests for pending-intent reconciliation.

Verifies:
- An intent already reflected in the record is confirmed without a processor call
- A live processor subscription is applied from processor-sourced fields
- A first purchase is confirmed through the checkout session the client returned from
- Nothing is applied on the client's word alone (pending)
- Unknown or free plans are discarded
"""

from unittest.mock import patch

import pytest

from app.core.exceptions import AccountNotFoundError, ProcessorError, ProcessorTimeoutError
from app.core.models import BillingCycle, Plan, SubscriptionStatus
from app.services.pending_intent import PendingIntentReconciler, ReconcileOutcome
from tests.factories import NEXT_PERIOD_END, checkout_session, processor_subscription


@pytest.fixture
def reconciler(store, processor) -> PendingIntentReconciler:
    return PendingIntentReconciler(store=store, processor=processor)


class TestReconcile:
    @pytest.mark.asyncio
    async def test_confirmed_when_record_matches(self, reconciler, seed_paid_account, processor):
        await seed_paid_account()

        result = await reconciler.reconcile("user-1", "clone", "monthly")

        assert result.outcome == ReconcileOutcome.CONFIRMED
        assert result.to_response()["clearIntent"] is True
        processor.list_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_applied_from_processor(self, reconciler, seed_account, processor, store):
        await seed_account(customer_id="cus_123")
        processor.list_subscriptions.return_value = [
            processor_subscription(subscription_id="sub_new", status="trialing", period_end=NEXT_PERIOD_END)
        ]

        result = await reconciler.reconcile("user-1", "Clone", "yearly")

        assert result.outcome == ReconcileOutcome.APPLIED
        account = await store.require("user-1")
        assert account.plan == Plan.CLONE
        assert account.subscription_id == "sub_new"
        assert account.subscription_status == SubscriptionStatus.TRIALING
        assert account.current_period_end == NEXT_PERIOD_END
        assert account.billing_cycle == BillingCycle.YEARLY
        response = result.to_response()
        assert response["outcome"] == "applied"
        assert response["account"]["subscriptionId"] == "sub_new"

    @pytest.mark.asyncio
    async def test_processor_price_wins_over_intent(self, reconciler, seed_account, processor, store):
        await seed_account(customer_id="cus_123")
        processor.list_subscriptions.return_value = [processor_subscription(price_id="price_synd")]

        with patch("app.services.pending_intent.plan_for_price_id", return_value=Plan.SYNDICATE):
            result = await reconciler.reconcile("user-1", "clone")

        assert result.outcome == ReconcileOutcome.APPLIED
        assert (await store.require("user-1")).plan == Plan.SYNDICATE

    @pytest.mark.asyncio
    async def test_pending_without_customer(self, reconciler, seed_account, processor, store):
        await seed_account()

        result = await reconciler.reconcile("user-1", "syndicate")

        assert result.outcome == ReconcileOutcome.PENDING
        assert result.to_response()["clearIntent"] is False
        processor.list_subscriptions.assert_not_awaited()
        processor.retrieve_checkout_session.assert_not_awaited()
        assert (await store.require("user-1")).plan == Plan.FREE

    @pytest.mark.asyncio
    async def test_pending_when_processor_shows_nothing_live(self, reconciler, seed_account, processor, store):
        await seed_account(customer_id="cus_123")
        processor.list_subscriptions.return_value = [processor_subscription(status="incomplete")]

        result = await reconciler.reconcile("user-1", "clone")

        assert result.outcome == ReconcileOutcome.PENDING
        assert (await store.require("user-1")).subscription_id is None

    @pytest.mark.asyncio
    async def test_pending_on_processor_error(self, reconciler, seed_account, processor):
        await seed_account(customer_id="cus_123")
        processor.list_subscriptions.side_effect = ProcessorTimeoutError("timed out")

        result = await reconciler.reconcile("user-1", "clone")

        assert result.outcome == ReconcileOutcome.PENDING

    @pytest.mark.asyncio
    async def test_plan_mismatch_checks_processor(self, reconciler, seed_paid_account, processor):
        """Record on Clone, intent for Syndicate: ask the processor."""
        await seed_paid_account()
        processor.list_subscriptions.return_value = []

        result = await reconciler.reconcile("user-1", "syndicate")

        assert result.outcome == ReconcileOutcome.PENDING
        processor.list_subscriptions.assert_awaited_once_with("cus_123")

    @pytest.mark.parametrize("intent", ["free", "platinum", "", None])
    @pytest.mark.asyncio
    async def test_discards_unpurchasable_intent(self, reconciler, seed_account, processor, intent):
        await seed_account()

        result = await reconciler.reconcile("user-1", intent)

        assert result.outcome == ReconcileOutcome.DISCARDED
        assert result.outcome.clears_intent
        processor.list_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_account(self, reconciler):
        with pytest.raises(AccountNotFoundError):
            await reconciler.reconcile("ghost", "clone")


# ─── First purchase ──────────────────────────────────────────


class TestReconcileFromCheckoutSession:
    """No customer on record yet: the checkout session is the only handle."""

    @pytest.mark.asyncio
    async def test_first_purchase_applied(self, reconciler, seed_account, processor, store):
        await seed_account()
        processor.retrieve_checkout_session.return_value = checkout_session(subscription_id="sub_first")
        processor.retrieve_subscription.return_value = processor_subscription(
            subscription_id="sub_first", period_end=NEXT_PERIOD_END
        )

        result = await reconciler.reconcile("user-1", "clone", "monthly", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.APPLIED
        assert result.to_response()["clearIntent"] is True
        account = await store.require("user-1")
        assert account.plan == Plan.CLONE
        assert account.customer_id == "cus_123"
        assert account.subscription_id == "sub_first"
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.current_period_end == NEXT_PERIOD_END
        assert account.billing_cycle == BillingCycle.MONTHLY
        processor.retrieve_checkout_session.assert_awaited_once_with("cs_123")
        processor.retrieve_subscription.assert_awaited_once_with("sub_first")
        processor.list_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_of_another_account_is_ignored(self, reconciler, seed_account, processor, store):
        await seed_account()
        processor.retrieve_checkout_session.return_value = checkout_session(account_id="user-2")

        result = await reconciler.reconcile("user-1", "clone", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.PENDING
        processor.retrieve_subscription.assert_not_awaited()
        account = await store.require("user-1")
        assert account.customer_id is None
        assert account.plan == Plan.FREE

    @pytest.mark.asyncio
    async def test_unpaid_session_stays_pending(self, reconciler, seed_account, processor):
        await seed_account()
        processor.retrieve_checkout_session.return_value = checkout_session(subscription_id=None)

        result = await reconciler.reconcile("user-1", "clone", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.PENDING
        processor.retrieve_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_subscription_not_live_stays_pending(self, reconciler, seed_account, processor, store):
        await seed_account()
        processor.retrieve_subscription.return_value = processor_subscription(status="incomplete")

        result = await reconciler.reconcile("user-1", "clone", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.PENDING
        assert (await store.require("user-1")).subscription_id is None

    @pytest.mark.asyncio
    async def test_lookup_error_stays_pending(self, reconciler, seed_account, processor):
        await seed_account()
        processor.retrieve_checkout_session.side_effect = ProcessorError("No such checkout.session")

        result = await reconciler.reconcile("user-1", "clone", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.PENDING

    @pytest.mark.asyncio
    async def test_customer_on_record_takes_precedence(self, reconciler, seed_account, processor):
        await seed_account(customer_id="cus_123")

        result = await reconciler.reconcile("user-1", "clone", checkout_session_id="cs_123")

        assert result.outcome == ReconcileOutcome.APPLIED
        processor.list_subscriptions.assert_awaited_once_with("cus_123")
        processor.retrieve_checkout_session.assert_not_awaited()
