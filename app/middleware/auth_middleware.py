"""
Actor authentication and ownership checks.

Provides:
- get_current_actor: FastAPI dependency that extracts the Bearer token,
  verifies it with the identity provider and returns the actor id.
- require_owner: refuses a request whose target userId is not the actor.

The actor id always comes from the verified token. A request naming a
different userId is refused with 403, never silently redirected to the
actor's own account.

Usage in endpoints:
    @router.post("/cancel")
    async def cancel(body: UserRequest, actor_id: str = Depends(get_current_actor)):
        require_owner(actor_id, body.user_id)
"""

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.exceptions import AuthenticationError, ForbiddenError
from app.core.interfaces import IIdentityProvider
from app.services.identity_service import get_identity_provider

logger = logging.getLogger(__name__)

# auto_error=False so a missing header maps to our own 401 body
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    identity: IIdentityProvider = Depends(get_identity_provider),
) -> str:
    """
    FastAPI dependency: verify the access token and return the actor id.

    Raises:
        AuthenticationError (401) if the token is missing, invalid, or expired.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required. Please log in.")
    return identity.verify_token(credentials.credentials)


def require_owner(actor_id: str, user_id: str, action: str = "modify") -> None:
    """Refuse unless the verified actor owns the target account."""
    if actor_id != user_id:
        logger.warning(f"Actor {actor_id} attempted to {action} account {user_id}")
        raise ForbiddenError(f"You can only {action} your own account.")
