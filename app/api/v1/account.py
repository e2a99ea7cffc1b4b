"""
Account deletion endpoint.

Provides:
- DELETE /api/v1/account — delete the caller's account
- POST /api/v1/account/delete — same, for clients that cannot send DELETE

The target ``userId`` may be sent in the JSON body or as a query
parameter. The account is only deleted once any live subscription is
confirmed cancelled at the processor.
"""

import logging

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.subscription import UserRequest
from app.core.exceptions import InvalidRequestError
from app.core.interfaces import IBillingProcessor, IIdentityProvider
from app.db.database import get_db
from app.middleware.auth_middleware import get_current_actor, require_owner
from app.middleware.rate_limiter import (
    SCOPE_ACCOUNT_DELETE,
    RateLimiter,
    add_rate_limit_headers,
    enforce_rate_limit,
    get_rate_limiter,
)
from app.services.account_store import AccountStore
from app.services.account_sync import AccountSyncHub, get_sync_hub
from app.services.deletion_guard import AccountDeletionService
from app.services.identity_service import get_identity_provider
from app.services.processor_client import get_processor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account", tags=["Account"])


def _deletion_service(
    db: AsyncSession = Depends(get_db),
    processor: IBillingProcessor = Depends(get_processor),
    identity: IIdentityProvider = Depends(get_identity_provider),
    hub: AccountSyncHub = Depends(get_sync_hub),
) -> AccountDeletionService:
    return AccountDeletionService(
        store=AccountStore(db, sync_hub=hub),
        processor=processor,
        identity=identity,
    )


@router.delete("", summary="Delete account")
@router.post("/delete", summary="Delete account (POST alias)")
async def delete_account(
    response: Response,
    body: UserRequest | None = Body(None),
    query_user_id: str | None = Query(None, alias="userId", max_length=128),
    actor_id: str = Depends(get_current_actor),
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: AccountDeletionService = Depends(_deletion_service),
):
    """
    Permanently delete the account.

    Any live subscription is cancelled immediately first. If that cannot
    be confirmed the account is kept and 502 SUBSCRIPTION_CANCEL_FAILED is
    returned.
    """
    user_id = body.user_id if body is not None else query_user_id
    if not user_id:
        raise InvalidRequestError("Missing or invalid userId")

    require_owner(actor_id, user_id, action="delete")
    rate_info = await enforce_rate_limit(limiter, SCOPE_ACCOUNT_DELETE, actor_id)
    add_rate_limit_headers(response, rate_info)

    logger.info(f"Account deletion requested for {user_id}")
    return await service.delete_account(user_id)
