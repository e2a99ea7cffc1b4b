"""
Pending-intent reconciliation.

Before redirecting to checkout the client records the plan it asked for.
Once per session it sends that intent here. If the processor's webhook has
already landed the intent is simply confirmed; if not, the processor is
asked directly (through the customer on record, or for a first purchase
through the checkout session the client returned from) and, only when it
shows a live subscription, the record is brought up to date with
processor-sourced fields. Nothing is ever applied on the client's word
alone.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

from app.core.exceptions import ProcessorError
from app.core.interfaces import IBillingProcessor
from app.core.models import (
    PAID_PLANS,
    AccountSnapshot,
    BillingCycle,
    Plan,
    ProcessorSubscription,
    SubscriptionStatus,
)
from app.services.account_store import AccountStore
from app.services.processor_client import plan_for_price_id

logger = logging.getLogger(__name__)


class ReconcileOutcome(StrEnum):
    CONFIRMED = "confirmed"  # record already shows the plan; clear intent
    APPLIED = "applied"  # processor confirmed; record updated; clear intent
    PENDING = "pending"  # nothing live yet; keep intent, wait for the stream
    DISCARDED = "discarded"  # intent names no purchasable plan; clear it

    @property
    def clears_intent(self) -> bool:
        return self != ReconcileOutcome.PENDING


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    account: AccountSnapshot

    def to_response(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "clearIntent": self.outcome.clears_intent,
            "account": self.account.to_public(),
        }


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


def _is_purchased(sub: ProcessorSubscription) -> bool:
    return sub.normalized_status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class PendingIntentReconciler:
    """Reconciles a client-held plan intent against the authoritative record."""

    def __init__(self, store: AccountStore, processor: IBillingProcessor):
        self._store = store
        self._processor = processor

    async def reconcile(
        self,
        account_id: str,
        pending_plan: str | None,
        pending_billing: str | None = None,
        checkout_session_id: str | None = None,
    ) -> ReconcileResult:
        """
        Reconcile one pending intent.

        ``checkout_session_id`` is the hosted checkout session the client
        was redirected from. It is the only processor handle a first-time
        buyer has before the webhook records a customer id.
        """
        snapshot = await self._store.require(account_id)
        plan = _parse_plan(pending_plan)

        if plan is None or plan not in PAID_PLANS:
            logger.info(f"Discarding pending intent '{pending_plan}' for account {account_id}")
            return ReconcileResult(ReconcileOutcome.DISCARDED, snapshot)

        if snapshot.plan == plan and snapshot.subscription_status.is_live:
            return ReconcileResult(ReconcileOutcome.CONFIRMED, snapshot)

        if snapshot.customer_id:
            live = await self._find_live_subscription(snapshot)
        elif checkout_session_id:
            live = await self._subscription_from_checkout(snapshot, checkout_session_id)
        else:
            live = None
        if live is None:
            return ReconcileResult(ReconcileOutcome.PENDING, snapshot)

        # The processor's price wins over the client's hint when it is known
        confirmed_plan = plan_for_price_id(live.price_id) or plan
        fields = {
            "plan": confirmed_plan,
            "subscription_id": live.id,
            "subscription_status": live.normalized_status,
            "cancel_at_period_end": live.cancel_at_period_end,
            "current_period_end": live.current_period_end,
        }
        cycle = _parse_cycle(pending_billing)
        if cycle is not None:
            fields["billing_cycle"] = cycle
        if snapshot.customer_id is None and live.customer_id:
            fields["customer_id"] = live.customer_id

        updated = await self._store.write(account_id, **fields)
        logger.info(
            f"Applied pending intent for account {account_id}: "
            f"{snapshot.plan} → {confirmed_plan} (subscription {live.id})"
        )
        return ReconcileResult(ReconcileOutcome.APPLIED, updated)

    async def _find_live_subscription(self, snapshot: AccountSnapshot) -> ProcessorSubscription | None:
        try:
            subscriptions = await self._processor.list_subscriptions(snapshot.customer_id)
        except ProcessorError as e:
            logger.warning(
                f"Could not check processor for account {snapshot.id}, keeping intent pending: {e}"
            )
            return None
        for sub in subscriptions:
            if _is_purchased(sub):
                return sub
        return None

    async def _subscription_from_checkout(
        self, snapshot: AccountSnapshot, session_id: str
    ) -> ProcessorSubscription | None:
        try:
            session = await self._processor.retrieve_checkout_session(session_id)
            if session.account_id != snapshot.id:
                logger.warning(
                    f"Checkout session {session_id} does not belong to account {snapshot.id}"
                )
                return None
            if not session.subscription_id:
                return None
            sub = await self._processor.retrieve_subscription(session.subscription_id)
        except ProcessorError as e:
            logger.warning(
                f"Could not check checkout session for account {snapshot.id}, "
                f"keeping intent pending: {e}"
            )
            return None

        if not _is_purchased(sub):
            return None
        if sub.customer_id is None and session.customer_id:
            sub = sub.model_copy(update={"customer_id": session.customer_id})
        return sub