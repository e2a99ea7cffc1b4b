"""
Stripe processor client — the only module that talks to the Stripe API.

Every call runs the synchronous Stripe SDK in a worker thread and is bounded
by ``PROCESSOR_TIMEOUT_SECONDS``. Mutations carry an idempotency key built
from the subscription id and a per-request nonce. Retries of one request
share the key, so a retried request can never apply twice on the processor side.

Retries (timeouts and connection errors only) apply to cancel/resume. An
immediate cancellation is never retried: the deletion flow must see the
first failure and keep the account.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from functools import partial
from typing import Any

import stripe

from app.config import Settings, get_settings
from app.core.exceptions import ProcessorError, ProcessorTimeoutError
from app.core.interfaces import IBillingProcessor
from app.core.models import Plan, ProcessorCheckoutSession, ProcessorSubscription
from app.core.resilience import retry_with_backoff

logger = logging.getLogger(__name__)

# Stripe statuses that mean there is nothing left to cancel
_TERMINAL_STATUSES = frozenset({"canceled", "incomplete_expired"})


def _from_timestamp(ts: int | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC)


def _id_of(value: Any) -> str | None:
    # Expandable fields arrive as an id or as the expanded object
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


def _first_item(subscription: Any) -> Any:
    # Bracket access: .items collides with dict.items on StripeObject
    try:
        items = subscription["items"]
    except (KeyError, TypeError):
        return None
    data = items.get("data") if items else None
    return data[0] if data else None


def to_processor_subscription(subscription: Any) -> ProcessorSubscription:
    """
    Convert a Stripe subscription object (or webhook payload dict).

    Newer Stripe API versions moved ``current_period_end`` from the
    subscription onto its items; both locations are read.
    """
    item = _first_item(subscription)
    period_end = subscription.get("current_period_end")
    if period_end is None and item is not None:
        period_end = item.get("current_period_end")

    price_id = None
    if item is not None and item.get("price"):
        price_id = item["price"].get("id")

    return ProcessorSubscription(
        id=subscription["id"],
        status=subscription.get("status") or "",
        cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
        current_period_end=_from_timestamp(period_end),
        customer_id=_id_of(subscription.get("customer")),
        price_id=price_id,
    )


def to_processor_checkout_session(session: Any) -> ProcessorCheckoutSession:
    """Convert a Stripe checkout session object (or webhook payload dict)."""
    metadata = session.get("metadata") or {}
    return ProcessorCheckoutSession(
        id=session["id"],
        account_id=session.get("client_reference_id") or metadata.get("userId"),
        customer_id=_id_of(session.get("customer")),
        subscription_id=_id_of(session.get("subscription")),
    )


def plan_for_price_id(price_id: str | None, settings: Settings | None = None) -> Plan | None:
    """Map a Stripe price id back to a plan. None if unknown."""
    if not price_id:
        return None
    settings = settings or get_settings()
    mapping = {
        settings.stripe_clone_price_id: Plan.CLONE,
        settings.stripe_syndicate_price_id: Plan.SYNDICATE,
    }
    mapping.pop("", None)
    return mapping.get(price_id)


class StripeProcessorClient(IBillingProcessor):
    """IBillingProcessor backed by the Stripe SDK."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._timeout = self._settings.processor_timeout_seconds
        self._max_retries = self._settings.processor_max_retries
        self._retry_base_delay = self._settings.processor_retry_base_delay

    # ─── Transport ────────────────────────────────────────────

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run one SDK call off the event loop, bounded and error-mapped."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(partial(fn, *args, **kwargs)),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            logger.warning(f"Stripe {operation} timed out after {self._timeout}s")
            raise ProcessorTimeoutError(
                f"Payment processor did not respond to {operation}",
                details={"retryable": True},
            ) from e
        except stripe.APIConnectionError as e:
            logger.warning(f"Stripe {operation} connection error: {e}")
            raise ProcessorTimeoutError(
                f"Could not reach payment processor for {operation}",
                details={"retryable": True},
            ) from e
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise ProcessorError(
                f"Payment processor error during {operation}",
                details={"retryable": True},
            ) from e

    async def _call_with_retry(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        retrying = retry_with_backoff(
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            retryable_exceptions=(ProcessorTimeoutError,),
        )(self._call)
        return await retrying(operation, fn, *args, **kwargs)

    # ─── IBillingProcessor ────────────────────────────────────

    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> ProcessorSubscription:
        # One key per logical request: retries reuse it, a later cancel after
        # a resume must not replay Stripe's cached response
        idempotency_key = (
            f"{subscription_id}:cancel_at_period_end:{str(cancel).lower()}:{uuid.uuid4().hex}"
        )
        subscription = await self._call_with_retry(
            "set_cancel_at_period_end",
            stripe.Subscription.modify,
            subscription_id,
            cancel_at_period_end=cancel,
            idempotency_key=idempotency_key,
        )
        result = to_processor_subscription(subscription)
        logger.info(
            f"Stripe subscription {subscription_id} cancel_at_period_end={cancel} "
            f"(status={result.status})"
        )
        return result

    async def cancel_immediately(self, subscription_id: str) -> None:
        try:
            await self._call(
                "cancel_immediately",
                stripe.Subscription.cancel,
                subscription_id,
                idempotency_key=f"{subscription_id}:cancel_immediately:{uuid.uuid4().hex}",
            )
        except ProcessorTimeoutError:
            raise
        except ProcessorError as e:
            if isinstance(e.__cause__, stripe.InvalidRequestError) and await self._already_gone(
                subscription_id, e.__cause__
            ):
                logger.info(f"Stripe subscription {subscription_id} already canceled")
                return
            raise
        logger.info(f"Stripe subscription {subscription_id} canceled immediately")

    async def _already_gone(self, subscription_id: str, error: stripe.InvalidRequestError) -> bool:
        """True if Stripe refused the cancel because nothing is left to cancel."""
        if getattr(error, "code", None) == "resource_missing":
            return True
        try:
            current = await self.retrieve_subscription(subscription_id)
        except ProcessorError:
            return False
        return current.status in _TERMINAL_STATUSES

    async def list_subscriptions(self, customer_id: str) -> list[ProcessorSubscription]:
        page = await self._call_with_retry(
            "list_subscriptions",
            stripe.Subscription.list,
            customer=customer_id,
            status="all",
            limit=10,
        )
        return [to_processor_subscription(sub) for sub in page.get("data", [])]

    async def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        subscription = await self._call_with_retry(
            "retrieve_subscription",
            stripe.Subscription.retrieve,
            subscription_id,
        )
        return to_processor_subscription(subscription)

    async def retrieve_checkout_session(self, session_id: str) -> ProcessorCheckoutSession:
        session = await self._call_with_retry(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve,
            session_id,
        )
        return to_processor_checkout_session(session)


# ─── Module-level singleton ──────────────────────────────────

_processor: IBillingProcessor | None = None


def get_processor() -> IBillingProcessor:
    """
    Get the shared processor client.

    Exposed as a function so tests can override it via dependency_overrides.
    """
    global _processor
    if _processor is None:
        _processor = StripeProcessorClient()
    return _processor
