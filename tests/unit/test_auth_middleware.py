"""
Unit tests for the auth middleware — actor resolution and ownership checks.

Tests get_current_actor and require_owner in isolation (no FastAPI app
needed — just function calls).
"""

from unittest.mock import MagicMock

import pytest
from fastapi.security import HTTPAuthorizationCredentials

from app.config import Settings
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.middleware.auth_middleware import get_current_actor, require_owner
from app.services.identity_service import JwtIdentityProvider


# ─── Helpers ─────────────────────────────────────────────────


def _provider() -> JwtIdentityProvider:
    settings = Settings(_env_file=None, secret_key="test-secret-key-for-middleware-tests-0123456789")
    return JwtIdentityProvider(session_factory=MagicMock(), settings=settings)


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ─── get_current_actor ───────────────────────────────────────


class TestGetCurrentActor:
    @pytest.mark.asyncio
    async def test_returns_actor_from_valid_token(self):
        provider = _provider()
        actor = await get_current_actor(_bearer(provider.issue_token("user-1")), provider)
        assert actor == "user-1"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_401(self):
        with pytest.raises(AuthenticationError, match="Authentication required"):
            await get_current_actor(None, _provider())

    @pytest.mark.asyncio
    async def test_empty_token_raises_401(self):
        with pytest.raises(AuthenticationError):
            await get_current_actor(_bearer(""), _provider())

    @pytest.mark.asyncio
    async def test_invalid_token_raises_401(self):
        with pytest.raises(AuthenticationError, match="Invalid or expired token"):
            await get_current_actor(_bearer("not-a-jwt"), _provider())

    @pytest.mark.asyncio
    async def test_delegates_to_identity_provider(self):
        identity = MagicMock()
        identity.verify_token.return_value = "user-9"

        actor = await get_current_actor(_bearer("opaque"), identity)

        assert actor == "user-9"
        identity.verify_token.assert_called_once_with("opaque")


# ─── require_owner ───────────────────────────────────────────


class TestRequireOwner:
    def test_owner_passes(self):
        assert require_owner("user-1", "user-1") is None

    def test_other_account_is_forbidden(self):
        with pytest.raises(ForbiddenError, match="only modify your own account"):
            require_owner("user-1", "user-2")

    def test_action_is_named_in_message(self):
        with pytest.raises(ForbiddenError, match="only delete your own account"):
            require_owner("user-1", "user-2", action="delete")
