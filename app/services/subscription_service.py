"""
Subscription lifecycle service — cancel, resume, and status.

Orchestrates one user-initiated transition:
    record read → state machine decision → processor call → single record
    write (which publishes to sync subscribers) → detached notification.

If the processor call fails nothing is written. If the write fails after a
successful processor call the error propagates; a retried request converges
because the processor side is idempotent and the record is rewritten from
the processor's response.
"""

import logging

from app.core.exceptions import ProcessorError
from app.core.interfaces import IBillingProcessor
from app.core.models import AccountSnapshot, format_display_date, to_iso
from app.services.account_store import AccountStore
from app.services.notification_service import NotificationDispatcher
from app.services.subscription_state import (
    LifecycleAction,
    SubscriptionState,
    TransitionPlan,
    derive_state,
    plan_transition,
)

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    User-facing subscription lifecycle operations.

    Usage:
        service = SubscriptionService(store, processor, dispatcher)
        result = await service.cancel(account_id)
    """

    def __init__(
        self,
        store: AccountStore,
        processor: IBillingProcessor,
        dispatcher: NotificationDispatcher,
    ):
        self._store = store
        self._processor = processor
        self._dispatcher = dispatcher

    async def cancel(self, account_id: str) -> dict:
        """Schedule cancellation at the end of the current billing period."""
        snapshot = await self._store.require(account_id)
        plan = plan_transition(snapshot, LifecycleAction.CANCEL)
        updated = await self._apply(snapshot, plan)

        end_date = format_display_date(updated.current_period_end)
        return {
            "success": True,
            "message": f"Your subscription will end on {end_date}. You have full access until then.",
            "subscription": self._transition_body(updated),
        }

    async def resume(self, account_id: str) -> dict:
        """Undo a scheduled cancellation."""
        snapshot = await self._store.require(account_id)
        plan = plan_transition(snapshot, LifecycleAction.RESUME)
        updated = await self._apply(snapshot, plan)

        end_date = format_display_date(updated.current_period_end)
        return {
            "success": True,
            "message": (
                f"Welcome back! Your subscription is now active. "
                f"You have full access until {end_date}."
            ),
            "subscription": self._transition_body(updated),
        }

    async def _apply(self, snapshot: AccountSnapshot, plan: TransitionPlan) -> AccountSnapshot:
        # Processor first; a failure here leaves the record untouched
        result = await self._processor.set_cancel_at_period_end(
            plan.subscription_id, plan.cancel_at_period_end
        )

        fields = {"cancel_at_period_end": plan.cancel_at_period_end}
        if result.current_period_end is not None:
            fields["current_period_end"] = result.current_period_end

        updated = await self._store.write(snapshot.id, **fields)
        logger.info(
            f"Subscription {plan.subscription_id} for account {snapshot.id}: "
            f"{plan.from_state} → {plan.to_state} "
            f"(period end {to_iso(updated.current_period_end)})"
        )

        self._dispatcher.send(
            plan.notification,
            updated.email,
            {
                "name": updated.name,
                "plan": updated.plan.value,
                "end_date": updated.current_period_end,
            },
        )
        return updated

    @staticmethod
    def _transition_body(snapshot: AccountSnapshot) -> dict:
        return {
            "id": snapshot.subscription_id,
            "cancelAtPeriodEnd": snapshot.cancel_at_period_end,
            "currentPeriodEnd": to_iso(snapshot.current_period_end),
        }

    async def get_status(self, account_id: str) -> dict:
        """
        Current subscription view for the account.

        The processor's live status refines the stored one when the record
        has a customer and is not scheduled to cancel; processor errors
        fall back to the stored status.
        """
        snapshot = await self._store.require(account_id)
        state = derive_state(snapshot)
        status = snapshot.subscription_status.value

        if (
            state not in (SubscriptionState.NONE, SubscriptionState.CANCEL_SCHEDULED)
            and snapshot.customer_id
        ):
            try:
                subscriptions = await self._processor.list_subscriptions(snapshot.customer_id)
            except ProcessorError as e:
                logger.warning(
                    f"Could not fetch live subscription status for account {account_id}, "
                    f"using stored data: {e}"
                )
            else:
                current = next(
                    (sub for sub in subscriptions if sub.id == snapshot.subscription_id),
                    subscriptions[0] if subscriptions else None,
                )
                if current is not None:
                    status = current.normalized_status.value

        return {
            "subscription": {
                "id": snapshot.subscription_id,
                "status": status,
                "plan": snapshot.plan.value,
                "cancelAtPeriodEnd": snapshot.cancel_at_period_end,
                "currentPeriodEnd": to_iso(snapshot.current_period_end),
                "billingCycle": snapshot.billing_cycle.value if snapshot.billing_cycle else None,
                "customerId": snapshot.customer_id,
            },
            "paymentWarning": snapshot.payment_warning,
        }
