"""
Identity provider — JWT verification and credential records.

Tokens are HS256 JWTs signed with SECRET_KEY; the ``sub`` claim is the
actor id, which is also the id of the actor's account record. Credential
deletion runs in its own session: the identity store fails independently
of the account store, and the deletion flow relies on that separation.
"""

import logging
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.core.exceptions import AuthenticationError
from app.core.interfaces import IIdentityProvider
from app.db.repositories.credential_repo import CredentialRepository

logger = logging.getLogger(__name__)


class JwtIdentityProvider(IIdentityProvider):
    """Verifies access tokens and manages credential records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: Settings | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    # ─── Tokens ──────────────────────────────────────────────

    def verify_token(self, token: str) -> str:
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=[self._settings.jwt_algorithm],
            )
        except JWTError as e:
            logger.warning(f"JWT verification failed: {e}")
            raise AuthenticationError("Invalid or expired token") from e

        actor_id = payload.get("sub")
        if not actor_id or not isinstance(actor_id, str):
            raise AuthenticationError("Invalid token: missing subject")
        return actor_id

    def issue_token(self, actor_id: str, expires_minutes: int | None = None) -> str:
        """Sign an access token for an actor (used by first-party login and tests)."""
        now = datetime.now(UTC)
        minutes = expires_minutes or self._settings.access_token_expire_minutes
        payload = {
            "sub": actor_id,
            "type": "access",
            "iat": now,
            "exp": now + timedelta(minutes=minutes),
        }
        return jwt.encode(payload, self._settings.secret_key, algorithm=self._settings.jwt_algorithm)

    # ─── Credentials ─────────────────────────────────────────

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from app.db.database import async_session_factory

            self._session_factory = async_session_factory
        return self._session_factory

    async def delete_credential(self, actor_id: str) -> bool:
        async with self._sessions()() as session:
            deleted = await CredentialRepository(session).delete(actor_id)
            await session.commit()
        if deleted:
            logger.info(f"Deleted credential for actor {actor_id}")
        return deleted


# ─── Module-level singleton ──────────────────────────────────

_identity_provider: IIdentityProvider | None = None


def get_identity_provider() -> IIdentityProvider:
    """Get the shared identity provider (overridable in tests)."""
    global _identity_provider
    if _identity_provider is None:
        _identity_provider = JwtIdentityProvider()
    return _identity_provider
