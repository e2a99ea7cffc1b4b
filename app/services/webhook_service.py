"""
Stripe webhook handlers — the processor's side of the lifecycle.

Webhooks own the transitions users cannot request themselves:

    checkout.session.completed      NONE → ACTIVE (plan purchased)
    customer.subscription.updated   sync status / cancel flag / period end
    customer.subscription.deleted   CANCEL_SCHEDULED → CANCELED (plan → free)
    invoice.payment_failed          ACTIVE → PAST_DUE (+ payment warning)
    invoice.payment_succeeded       PAST_DUE → ACTIVE (warning cleared)

Every field written is copied from the event or fetched from the
processor; each handler performs a single store write, which publishes the
new record to real-time subscribers.
"""

import logging
from typing import Any

from app.core.interfaces import IBillingProcessor
from app.core.models import (
    TRIAL_PLANS,
    AccountSnapshot,
    BillingCycle,
    Plan,
    SubscriptionStatus,
)
from app.services.account_store import AccountStore
from app.services.notification_service import NotificationDispatcher
from app.services.processor_client import plan_for_price_id, to_processor_subscription

logger = logging.getLogger(__name__)

# Plan used when a checkout carries neither plan metadata nor a known price
DEFAULT_CHECKOUT_PLAN = Plan.SYNDICATE

HANDLED_STRIPE_EVENTS = frozenset({
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_failed",
    "invoice.payment_succeeded",
    "invoice.paid",
})


def _metadata(obj: Any) -> dict:
    return obj.get("metadata") or {}


def _parse_plan(raw: str | None) -> Plan | None:
    try:
        return Plan((raw or "").strip().lower())
    except ValueError:
        return None


def _parse_cycle(raw: str | None) -> BillingCycle | None:
    try:
        return BillingCycle((raw or "").strip().lower())
    except ValueError:
        return None


def _truthy(raw: Any) -> bool:
    return str(raw).strip().lower() in ("true", "1", "yes")


class StripeWebhookService:
    """Applies verified Stripe events to account records."""

    def __init__(
        self,
        store: AccountStore,
        processor: IBillingProcessor,
        dispatcher: NotificationDispatcher,
    ):
        self._store = store
        self._processor = processor
        self._dispatcher = dispatcher

    async def handle(self, event_type: str, obj: Any) -> AccountSnapshot | None:
        """
        Route one event to its handler.

        Returns the updated account, or None if the event was ignored.
        """
        handlers = {
            "checkout.session.completed": self.handle_checkout_completed,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
            "invoice.payment_failed": self.handle_payment_failed,
            "invoice.payment_succeeded": self.handle_payment_succeeded,
            "invoice.paid": self.handle_payment_succeeded,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.debug(f"Ignoring unhandled Stripe event type: {event_type}")
            return None
        return await handler(obj)

    # ─── Lookups ──────────────────────────────────────────────

    async def _account_for_subscription(self, subscription: Any) -> AccountSnapshot | None:
        account = await self._store.find_by_subscription_id(subscription["id"])
        if account is None and subscription.get("customer"):
            account = await self._store.find_by_customer_id(subscription["customer"])
        return account

    # ─── Checkout ─────────────────────────────────────────────

    async def handle_checkout_completed(self, session: Any) -> AccountSnapshot | None:
        metadata = _metadata(session)
        account_id = session.get("client_reference_id") or metadata.get("userId")
        if not account_id:
            logger.warning("Checkout session missing client_reference_id")
            return None

        account = await self._store.get(account_id)
        if account is None:
            logger.warning(f"Checkout completed for unknown account {account_id}")
            return None

        subscription_id = session.get("subscription")
        if not subscription_id:
            logger.info(f"Checkout session {session.get('id')} has no subscription, skipping")
            return None

        if account.subscription_id == subscription_id and account.subscription_status.is_live:
            logger.info(f"Checkout for subscription {subscription_id} already applied")
            return account

        subscription = await self._processor.retrieve_subscription(subscription_id)

        plan = (
            _parse_plan(metadata.get("planName"))
            or plan_for_price_id(subscription.price_id)
            or DEFAULT_CHECKOUT_PLAN
        )
        status = subscription.normalized_status
        if not status.is_live:
            status = SubscriptionStatus.ACTIVE

        fields = {
            "plan": plan,
            "subscription_id": subscription_id,
            "subscription_status": status,
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "current_period_end": subscription.current_period_end,
            "payment_warning": False,
        }
        cycle = _parse_cycle(metadata.get("billingCycle"))
        if cycle is not None:
            fields["billing_cycle"] = cycle
        customer_id = session.get("customer")
        if customer_id and account.customer_id is None:
            fields["customer_id"] = customer_id
        if plan in TRIAL_PLANS and not account.has_used_trial:
            fields["has_used_trial"] = True

        updated = await self._store.write(account_id, **fields)
        logger.info(f"Checkout completed: account {account_id} → {plan} ({status})")

        if _truthy(metadata.get("trial_forfeited")):
            self._dispatcher.send(
                "trial_adjusted",
                updated.email,
                {"name": updated.name, "plan": plan.value},
            )
        return updated

    # ─── Subscription changes ─────────────────────────────────

    async def handle_subscription_updated(self, data: Any) -> AccountSnapshot | None:
        subscription = to_processor_subscription(data)
        account = await self._account_for_subscription(data)
        if account is None:
            logger.warning(f"Subscription {subscription.id} updated for unknown customer")
            return None

        if account.subscription_id not in (None, subscription.id):
            logger.info(
                f"Ignoring update of superseded subscription {subscription.id} "
                f"for account {account.id}"
            )
            return account

        status = subscription.normalized_status
        fields: dict[str, Any] = {
            "subscription_id": subscription.id,
            "subscription_status": status,
            "cancel_at_period_end": subscription.cancel_at_period_end,
        }
        if subscription.current_period_end is not None:
            fields["current_period_end"] = subscription.current_period_end

        plan = plan_for_price_id(subscription.price_id)
        if status == SubscriptionStatus.CANCELED:
            # Nothing left to bill: entitlements end with the subscription
            fields["plan"] = Plan.FREE
            fields["cancel_at_period_end"] = False
        elif plan is not None and status.is_live:
            fields["plan"] = plan

        updated = await self._store.write(account.id, **fields)
        logger.info(
            f"Subscription {subscription.id} synced for account {account.id}: "
            f"status={subscription.normalized_status} "
            f"cancel_at_period_end={subscription.cancel_at_period_end}"
        )
        return updated

    async def handle_subscription_deleted(self, data: Any) -> AccountSnapshot | None:
        subscription = to_processor_subscription(data)
        account = await self._account_for_subscription(data)
        if account is None:
            logger.warning(f"Subscription {subscription.id} deleted for unknown customer")
            return None

        if account.subscription_id not in (None, subscription.id):
            logger.info(
                f"Ignoring end of superseded subscription {subscription.id} "
                f"for account {account.id}"
            )
            return account

        updated = await self._store.write(
            account.id,
            subscription_id=subscription.id,
            subscription_status=SubscriptionStatus.CANCELED,
            cancel_at_period_end=False,
            plan=Plan.FREE,
        )
        logger.info(f"Subscription {subscription.id} ended: account {account.id} → free")
        return updated

    # ─── Invoices ─────────────────────────────────────────────

    async def _account_for_invoice(self, invoice: Any) -> AccountSnapshot | None:
        customer_id = invoice.get("customer")
        if not customer_id:
            return None
        return await self._store.find_by_customer_id(customer_id)

    async def handle_payment_failed(self, invoice: Any) -> AccountSnapshot | None:
        account = await self._account_for_invoice(invoice)
        if account is None:
            logger.warning(f"Payment failed for unknown customer (invoice: {invoice.get('id')})")
            return None

        fields: dict[str, Any] = {"payment_warning": True}
        if account.subscription_id and account.subscription_status != SubscriptionStatus.CANCELED:
            fields["subscription_status"] = SubscriptionStatus.PAST_DUE

        updated = await self._store.write(account.id, **fields)
        logger.warning(f"Payment failed for account {account.id} (invoice: {invoice.get('id')})")

        self._dispatcher.send(
            "payment_failed",
            updated.email,
            {"name": updated.name, "plan": updated.plan.value},
        )
        return updated

    async def handle_payment_succeeded(self, invoice: Any) -> AccountSnapshot | None:
        account = await self._account_for_invoice(invoice)
        if account is None:
            logger.debug(f"Payment succeeded for unknown customer (invoice: {invoice.get('id')})")
            return None

        fields: dict[str, Any] = {"payment_warning": False}
        if account.subscription_id and account.subscription_status in (
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.TRIALING,
        ):
            fields["subscription_status"] = SubscriptionStatus.ACTIVE

        if not account.payment_warning and len(fields) == 1:
            return account

        updated = await self._store.write(account.id, **fields)
        logger.info(f"Payment succeeded for account {account.id}, warning cleared")
        return updated
