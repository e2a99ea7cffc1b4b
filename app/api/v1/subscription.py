"""
Subscription lifecycle endpoints.

Provides:
- POST /api/v1/subscription/cancel — schedule cancellation at period end
- POST /api/v1/subscription/resume — undo a scheduled cancellation
- GET /api/v1/subscription/status — current subscription view
- GET /api/v1/subscription/stream — SSE stream of account snapshots
- POST /api/v1/subscription/reconcile — reconcile a pending checkout intent

Every endpoint runs: authenticate → ownership check → rate limit →
service call. The rate limit is charged before any store or processor
access.
"""

import logging

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.interfaces import IBillingProcessor
from app.db.database import get_db
from app.middleware.auth_middleware import get_current_actor, require_owner
from app.middleware.rate_limiter import (
    SCOPE_BILLING,
    SCOPE_STATUS,
    RateLimiter,
    add_rate_limit_headers,
    enforce_rate_limit,
    get_rate_limiter,
)
from app.services.account_store import AccountStore
from app.services.account_sync import AccountSyncHub, get_sync_hub
from app.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from app.services.pending_intent import PendingIntentReconciler
from app.services.processor_client import get_processor
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["Subscription"])


# ─── Request Schemas ─────────────────────────────────────────


class UserRequest(BaseModel):
    """Body naming the account the request targets."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, max_length=128)


class ReconcileRequest(UserRequest):
    pending_plan: str | None = Field(None, alias="pendingPlan", max_length=32)
    pending_billing: str | None = Field(None, alias="pendingBilling", max_length=32)
    checkout_session_id: str | None = Field(None, alias="checkoutSessionId", max_length=255)


# ─── Helpers ─────────────────────────────────────────────────


def _subscription_service(
    db: AsyncSession = Depends(get_db),
    processor: IBillingProcessor = Depends(get_processor),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    hub: AccountSyncHub = Depends(get_sync_hub),
) -> SubscriptionService:
    return SubscriptionService(
        store=AccountStore(db, sync_hub=hub),
        processor=processor,
        dispatcher=dispatcher,
    )


# ─── Endpoints ───────────────────────────────────────────────


@router.post("/cancel", summary="Cancel subscription at period end")
async def cancel_subscription(
    body: UserRequest,
    response: Response,
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SubscriptionService = Depends(_subscription_service),
):
    """
    Schedule the subscription to end at the close of the current period.

    Access continues until then. Refused with 409 if there is no live
    subscription or cancellation is already scheduled.
    """
    require_owner(actor_id, body.user_id)
    rate_info = await enforce_rate_limit(limiter, SCOPE_BILLING, actor_id)
    add_rate_limit_headers(response, rate_info)
    return await service.cancel(body.user_id)


@router.post("/resume", summary="Resume a subscription scheduled to cancel")
async def resume_subscription(
    body: UserRequest,
    response: Response,
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SubscriptionService = Depends(_subscription_service),
):
    """Undo a scheduled cancellation. Refused with 409 if none is scheduled."""
    require_owner(actor_id, body.user_id)
    rate_info = await enforce_rate_limit(limiter, SCOPE_BILLING, actor_id)
    add_rate_limit_headers(response, rate_info)
    return await service.resume(body.user_id)


@router.get("/status", summary="Get subscription status")
async def subscription_status(
    response: Response,
    user_id: str = Query(..., alias="userId", min_length=1, max_length=128),
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: SubscriptionService = Depends(_subscription_service),
):
    require_owner(actor_id, user_id, action="view")
    rate_info = await enforce_rate_limit(limiter, SCOPE_STATUS, actor_id)
    add_rate_limit_headers(response, rate_info)
    return await service.get_status(user_id)


@router.get("/stream", summary="Stream account updates (SSE)")
async def stream_account(
    user_id: str = Query(..., alias="userId", min_length=1, max_length=128),
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
    hub: AccountSyncHub = Depends(get_sync_hub),
):
    """
    Server-Sent Events stream of the account record.

    The first event is the current record; every later write (including
    processor webhooks) pushes the full record again. The stream ends with
    an ``account_deleted`` event if the account is deleted.
    """
    require_owner(actor_id, user_id, action="view")
    rate_info = await enforce_rate_limit(limiter, SCOPE_STATUS, actor_id)

    snapshot = await AccountStore(db, sync_hub=hub).require(user_id)
    subscription = hub.subscribe(user_id, initial=snapshot)

    sse_headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",  # Disable nginx buffering
    }
    add_rate_limit_headers(sse_headers, rate_info)

    return StreamingResponse(
        hub.sse_stream(subscription, heartbeat_interval=get_settings().sse_heartbeat_seconds),
        media_type="text/event-stream",
        headers=sse_headers,
    )


@router.post("/reconcile", summary="Reconcile a pending checkout intent")
async def reconcile_pending_intent(
    body: ReconcileRequest,
    response: Response,
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    db: AsyncSession = Depends(get_db),
    processor: IBillingProcessor = Depends(get_processor),
    hub: AccountSyncHub = Depends(get_sync_hub),
):
    """
    Check a client-held plan intent against the authoritative record.

    ``clearIntent`` in the response tells the client whether to drop the
    stored intent; it stays only while the outcome is ``pending``.
    """
    require_owner(actor_id, body.user_id)
    rate_info = await enforce_rate_limit(limiter, SCOPE_STATUS, actor_id)
    add_rate_limit_headers(response, rate_info)

    reconciler = PendingIntentReconciler(AccountStore(db, sync_hub=hub), processor)
    result = await reconciler.reconcile(
        body.user_id, body.pending_plan, body.pending_billing, body.checkout_session_id
    )
    return result.to_response()
