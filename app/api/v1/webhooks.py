"""
Webhook endpoint for Stripe.

Handles:
- POST /api/v1/webhooks/stripe — Stripe payment and subscription webhooks

Security:
- Stripe webhook signature verified before any processing
- Event IDs tracked in-memory for idempotency (replay protection)
- No payload or token data is logged
"""

import logging
from collections import OrderedDict

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.interfaces import IBillingProcessor
from app.db.database import get_db
from app.services.account_store import AccountStore
from app.services.account_sync import AccountSyncHub, get_sync_hub
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.processor_client import get_processor
from app.services.webhook_service import HANDLED_STRIPE_EVENTS, StripeWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

# In-memory idempotency cache for processed Stripe event IDs.
# Uses OrderedDict as an LRU that evicts oldest entries beyond _MAX_SEEN.
_MAX_SEEN_EVENTS = 10_000
_seen_event_ids: OrderedDict[str, None] = OrderedDict()


def _mark_event_seen(event_id: str) -> bool:
    """Record an event ID. Returns True if already seen (duplicate)."""
    if event_id in _seen_event_ids:
        _seen_event_ids.move_to_end(event_id)
        return True
    _seen_event_ids[event_id] = None
    while len(_seen_event_ids) > _MAX_SEEN_EVENTS:
        _seen_event_ids.popitem(last=False)
    return False


def _forget_event(event_id: str) -> None:
    """Un-mark an event whose processing failed so Stripe's retry is applied."""
    _seen_event_ids.pop(event_id, None)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    processor: IBillingProcessor = Depends(get_processor),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    hub: AccountSyncHub = Depends(get_sync_hub),
):
    """
    Handle Stripe payment webhooks.

    Verifies the webhook signature and routes events to the webhook service.
    Duplicate events (same event ID) are acknowledged but not re-processed.
    A failure while applying an event returns 500 so Stripe retries it.
    """
    settings = get_settings()

    # Read raw body for signature verification
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    if not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    try:
        event = stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError:
        logger.warning("Stripe webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook payload",
        )

    event_type = event["type"]
    if event_type not in HANDLED_STRIPE_EVENTS:
        logger.debug(f"Ignoring unhandled Stripe event type: {event_type}")
        return {"received": True}

    # Idempotency: skip duplicate events
    event_id = event.get("id", "")
    if _mark_event_seen(event_id):
        logger.info(f"Skipping duplicate Stripe event {event_id}")
        return {"received": True}

    service = StripeWebhookService(
        store=AccountStore(db, sync_hub=hub),
        processor=processor,
        dispatcher=dispatcher,
    )
    try:
        await service.handle(event_type, event["data"]["object"])
    except Exception:
        _forget_event(event_id)
        raise

    logger.info(f"Processed Stripe event {event_id} ({event_type})")
    return {"received": True}
