"""
Tests for the subscription lifecycle service.

Uses the real account store (SQLite) with a processor double and a
dispatcher over a mocked email transport.

Verifies:
- cancel/resume make exactly one processor call and one record write
- the period end always comes from the processor
- refusals touch neither the processor nor the record
- a processor failure leaves the record untouched
- notification failures never affect the response
- status view refinement and fallback
"""

import pytest

from app.core.exceptions import (
    AccountNotFoundError,
    AlreadyCancelingError,
    NoSubscriptionError,
    NotCancelingError,
    ProcessorError,
    ProcessorTimeoutError,
)
from app.core.models import SubscriptionStatus
from app.services.subscription_service import SubscriptionService
from tests.factories import NEXT_PERIOD_END, processor_subscription


@pytest.fixture
def service(store, processor, dispatcher) -> SubscriptionService:
    return SubscriptionService(store=store, processor=processor, dispatcher=dispatcher)


# ─── Cancel ──────────────────────────────────────────────────


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_active_subscription(self, service, seed_paid_account, processor, store):
        await seed_paid_account()

        result = await service.cancel("user-1")

        assert result == {
            "success": True,
            "message": "Your subscription will end on March 1, 2026. You have full access until then.",
            "subscription": {
                "id": "sub_123",
                "cancelAtPeriodEnd": True,
                "currentPeriodEnd": "2026-03-01T00:00:00Z",
            },
        }
        processor.set_cancel_at_period_end.assert_awaited_once_with("sub_123", True)
        account = await store.require("user-1")
        assert account.cancel_at_period_end is True
        assert account.subscription_status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_period_end_comes_from_processor(self, service, seed_paid_account, processor, store):
        await seed_paid_account()
        processor.set_cancel_at_period_end.side_effect = None
        processor.set_cancel_at_period_end.return_value = processor_subscription(
            cancel_at_period_end=True, period_end=NEXT_PERIOD_END
        )

        result = await service.cancel("user-1")

        assert result["subscription"]["currentPeriodEnd"] == "2026-04-01T00:00:00Z"
        assert "April 1, 2026" in result["message"]
        assert (await store.require("user-1")).current_period_end == NEXT_PERIOD_END

    @pytest.mark.asyncio
    async def test_missing_processor_period_end_keeps_stored(self, service, seed_paid_account, processor, store):
        await seed_paid_account()
        processor.set_cancel_at_period_end.side_effect = None
        processor.set_cancel_at_period_end.return_value = processor_subscription(
            cancel_at_period_end=True, period_end=None
        )

        result = await service.cancel("user-1")

        assert result["subscription"]["currentPeriodEnd"] == "2026-03-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_cancel_past_due_keeps_status(self, service, seed_paid_account, store):
        await seed_paid_account(subscription_status=SubscriptionStatus.PAST_DUE)

        await service.cancel("user-1")

        account = await store.require("user-1")
        assert account.cancel_at_period_end is True
        assert account.subscription_status == SubscriptionStatus.PAST_DUE

    @pytest.mark.asyncio
    async def test_already_canceling_makes_no_processor_call(
        self, service, seed_paid_account, processor, sync_hub
    ):
        await seed_paid_account(cancel_at_period_end=True)
        watcher = sync_hub.subscribe("user-1")

        with pytest.raises(AlreadyCancelingError) as exc_info:
            await service.cancel("user-1")

        assert exc_info.value.details["currentPeriodEnd"] == "2026-03-01T00:00:00Z"
        processor.set_cancel_at_period_end.assert_not_awaited()
        assert watcher._queue.empty()

    @pytest.mark.asyncio
    async def test_no_subscription(self, service, seed_account, processor):
        await seed_account()
        with pytest.raises(NoSubscriptionError):
            await service.cancel("user-1")
        processor.set_cancel_at_period_end.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_account(self, service, processor):
        with pytest.raises(AccountNotFoundError):
            await service.cancel("ghost")
        processor.set_cancel_at_period_end.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_failure_leaves_record_untouched(
        self, service, seed_paid_account, processor, store, email_transport, dispatcher
    ):
        await seed_paid_account()
        processor.set_cancel_at_period_end.side_effect = ProcessorTimeoutError("timed out")

        with pytest.raises(ProcessorTimeoutError):
            await service.cancel("user-1")

        assert (await store.require("user-1")).cancel_at_period_end is False
        await dispatcher.drain()
        email_transport.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sends_cancellation_email(self, service, seed_paid_account, email_transport, dispatcher):
        await seed_paid_account()

        await service.cancel("user-1")
        await dispatcher.drain()

        message = email_transport.deliver.await_args.args[0]
        assert message.to == "user-1@example.com"
        assert "March 1, 2026" in message.subject

    @pytest.mark.asyncio
    async def test_email_failure_does_not_affect_response(
        self, service, seed_paid_account, email_transport, dispatcher, store
    ):
        await seed_paid_account()
        email_transport.deliver.side_effect = RuntimeError("resend down")

        result = await service.cancel("user-1")
        await dispatcher.drain()

        assert result["success"] is True
        assert (await store.require("user-1")).cancel_at_period_end is True

    @pytest.mark.asyncio
    async def test_publishes_new_record(self, service, seed_paid_account, sync_hub):
        await seed_paid_account()
        watcher = sync_hub.subscribe("user-1")

        await service.cancel("user-1")

        message = await watcher.next_message()
        assert message.snapshot.cancel_at_period_end is True


# ─── Resume ──────────────────────────────────────────────────


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_scheduled_cancellation(self, service, seed_paid_account, processor, store):
        await seed_paid_account(cancel_at_period_end=True)

        result = await service.resume("user-1")

        assert result["success"] is True
        assert result["message"] == (
            "Welcome back! Your subscription is now active. "
            "You have full access until March 1, 2026."
        )
        assert result["subscription"]["cancelAtPeriodEnd"] is False
        processor.set_cancel_at_period_end.assert_awaited_once_with("sub_123", False)
        assert (await store.require("user-1")).cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_resume_without_scheduled_cancel(self, service, seed_paid_account, processor):
        await seed_paid_account()
        with pytest.raises(NotCancelingError):
            await service.resume("user-1")
        processor.set_cancel_at_period_end.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_then_resume_round_trip(self, service, seed_paid_account, processor, store):
        await seed_paid_account()

        await service.cancel("user-1")
        await service.resume("user-1")

        assert processor.set_cancel_at_period_end.await_count == 2
        account = await store.require("user-1")
        assert account.cancel_at_period_end is False
        assert account.subscription_status == SubscriptionStatus.ACTIVE


# ─── Status ──────────────────────────────────────────────────


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_status_of_free_account(self, service, seed_account, processor):
        await seed_account()

        result = await service.get_status("user-1")

        assert result["subscription"]["status"] == "none"
        assert result["subscription"]["plan"] == "free"
        assert result["paymentWarning"] is False
        processor.list_subscriptions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_live_status_refines_stored(self, service, seed_paid_account, processor):
        await seed_paid_account()
        processor.list_subscriptions.return_value = [
            processor_subscription(subscription_id="sub_other", status="canceled"),
            processor_subscription(status="past_due"),
        ]

        result = await service.get_status("user-1")

        processor.list_subscriptions.assert_awaited_once_with("cus_123")
        assert result["subscription"] == {
            "id": "sub_123",
            "status": "past_due",
            "plan": "clone",
            "cancelAtPeriodEnd": False,
            "currentPeriodEnd": "2026-03-01T00:00:00Z",
            "billingCycle": "monthly",
            "customerId": "cus_123",
        }

    @pytest.mark.asyncio
    async def test_cancel_scheduled_uses_stored_status(self, service, seed_paid_account, processor):
        await seed_paid_account(cancel_at_period_end=True)

        result = await service.get_status("user-1")

        processor.list_subscriptions.assert_not_awaited()
        assert result["subscription"]["status"] == "active"
        assert result["subscription"]["cancelAtPeriodEnd"] is True

    @pytest.mark.asyncio
    async def test_processor_error_falls_back(self, service, seed_paid_account, processor):
        await seed_paid_account(payment_warning=True)
        processor.list_subscriptions.side_effect = ProcessorError("stripe down")

        result = await service.get_status("user-1")

        assert result["subscription"]["status"] == "active"
        assert result["paymentWarning"] is True

    @pytest.mark.asyncio
    async def test_no_processor_subscriptions_keeps_stored(self, service, seed_paid_account, processor):
        await seed_paid_account()
        processor.list_subscriptions.return_value = []

        result = await service.get_status("user-1")

        assert result["subscription"]["status"] == "active"

    @pytest.mark.asyncio
    async def test_status_never_writes(self, service, seed_paid_account, processor, sync_hub):
        await seed_paid_account()
        processor.list_subscriptions.return_value = [processor_subscription(status="past_due")]
        watcher = sync_hub.subscribe("user-1")

        await service.get_status("user-1")

        assert watcher._queue.empty()
