"""
Fixed-window rate limiting for the billing endpoints.

Every actor gets a ceiling per scope per window, keyed by the verified
actor id (never by IP or by the requested userId):
- billing:        cancel / resume          (BILLING_RATE_LIMIT per window)
- account_delete: account deletion         (DELETE_RATE_LIMIT per window)
- status:         status reads and streams (STATUS_RATE_LIMIT per window)

Backends (RATE_LIMIT_BACKEND):
- memory: process-local counters; correct for a single instance only.
- redis:  INCR + EXPIRE NX in one pipeline; shared across instances and
  fails open if Redis is unreachable.

Refusal raises RateLimitedError (429 with Retry-After and X-RateLimit-*
headers) before any processor or store access.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.config import RateLimitBackend, Settings, get_settings
from app.core.exceptions import RateLimitedError

logger = logging.getLogger(__name__)

SCOPE_BILLING = "billing"
SCOPE_ACCOUNT_DELETE = "account_delete"
SCOPE_STATUS = "status"

# In-memory entries beyond this count trigger a sweep of expired windows
_MAX_TRACKED_WINDOWS = 10_000


# ─── Rate Limit Types ────────────────────────────────────────


@dataclass(frozen=True)
class RateLimitRule:
    """A ceiling of ``limit`` requests per ``window_seconds`` for one scope."""

    scope: str
    limit: int
    window_seconds: int


@dataclass
class RateLimitInfo:
    """Rate limit state returned to the endpoint for header injection."""

    limit: int
    remaining: int  # -1 = unknown (backend unavailable)
    reset_timestamp: int  # Unix timestamp when the current window ends
    current_count: int


def rule_for_scope(scope: str, settings: Settings | None = None) -> RateLimitRule:
    """Build the configured rule for a scope."""
    settings = settings or get_settings()
    limits = {
        SCOPE_BILLING: settings.billing_rate_limit,
        SCOPE_ACCOUNT_DELETE: settings.delete_rate_limit,
        SCOPE_STATUS: settings.status_rate_limit,
    }
    if scope not in limits:
        raise ValueError(f"Unknown rate limit scope: {scope}")
    return RateLimitRule(
        scope=scope,
        limit=limits[scope],
        window_seconds=settings.rate_limit_window_seconds,
    )


class RateLimiter(ABC):
    """Interface shared by the rate limit backends."""

    @abstractmethod
    async def hit(self, rule: RateLimitRule, actor_id: str) -> RateLimitInfo:
        """
        Record one request by ``actor_id`` under ``rule``.

        Raises:
            RateLimitedError: The actor is over the ceiling for this window.
        """
        ...


# ─── In-memory Backend ───────────────────────────────────────


@dataclass
class _Window:
    count: int
    window_end: float


class InMemoryRateLimiter(RateLimiter):
    """
    Process-local fixed-window counters.

    No record, or the window has elapsed → reset to 1 with a new window.
    Count already at the ceiling → refuse without incrementing.
    Otherwise → increment.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}

    async def hit(self, rule: RateLimitRule, actor_id: str) -> RateLimitInfo:
        now = self._clock()
        key = (rule.scope, actor_id)
        window = self._windows.get(key)

        if window is None or now >= window.window_end:
            window = _Window(count=1, window_end=now + rule.window_seconds)
            self._windows[key] = window
            self._sweep(now)
        elif window.count >= rule.limit:
            retry_after = max(1, int(window.window_end - now + 0.999))
            logger.warning(
                f"Rate limit exceeded for actor {actor_id} ({rule.scope}): "
                f"{window.count}/{rule.limit}"
            )
            raise RateLimitedError(scope=rule.scope, limit=rule.limit, retry_after=retry_after)
        else:
            window.count += 1

        return RateLimitInfo(
            limit=rule.limit,
            remaining=max(0, rule.limit - window.count),
            reset_timestamp=int(window.window_end),
            current_count=window.count,
        )

    def _sweep(self, now: float) -> None:
        if len(self._windows) <= _MAX_TRACKED_WINDOWS:
            return
        expired = [key for key, w in self._windows.items() if now >= w.window_end]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        self._windows.clear()


# ─── Redis Backend ───────────────────────────────────────────


class RedisRateLimiter(RateLimiter):
    """
    Shared fixed-window counters in Redis.

    INCR and EXPIRE NX run in one MULTI pipeline, so the window is set by
    the first request and never extended. Refused requests still count;
    they cannot move the window end.
    """

    def __init__(self, redis: Redis, clock: Callable[[], float] = time.time):
        self._redis = redis
        self._clock = clock

    @staticmethod
    def _key(scope: str, actor_id: str) -> str:
        return f"ratelimit:{scope}:{actor_id}"

    async def hit(self, rule: RateLimitRule, actor_id: str) -> RateLimitInfo:
        key = self._key(rule.scope, actor_id)
        now = int(self._clock())

        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, rule.window_seconds, nx=True)
            pipe.ttl(key)
            count, _, ttl = await pipe.execute()
        except (ConnectionError, TimeoutError, RedisError, OSError) as e:
            # Fail-open: if Redis is down, allow the request
            logger.error(f"Redis unavailable for rate limiting: {e}")
            return RateLimitInfo(
                limit=rule.limit,
                remaining=-1,
                reset_timestamp=now + rule.window_seconds,
                current_count=-1,
            )

        ttl = int(ttl) if ttl and int(ttl) > 0 else rule.window_seconds
        count = int(count)

        if count > rule.limit:
            logger.warning(
                f"Rate limit exceeded for actor {actor_id} ({rule.scope}): "
                f"{count}/{rule.limit}"
            )
            raise RateLimitedError(scope=rule.scope, limit=rule.limit, retry_after=ttl)

        return RateLimitInfo(
            limit=rule.limit,
            remaining=max(0, rule.limit - count),
            reset_timestamp=now + ttl,
            current_count=count,
        )


# ─── Redis Connection Management ─────────────────────────────


_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """
    Get or create the shared async Redis client.

    Uses the redis_url from application Settings. The client is created
    lazily on first access and reused for all subsequent requests.
    """
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on application shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


# ─── FastAPI Dependencies ────────────────────────────────────


_rate_limiter: RateLimiter | None = None


async def get_rate_limiter() -> RateLimiter:
    """
    FastAPI dependency: the process-wide rate limiter.

    The backend is chosen once, from RATE_LIMIT_BACKEND, on first use.
    """
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        if settings.rate_limit_backend == RateLimitBackend.REDIS:
            _rate_limiter = RedisRateLimiter(await get_redis())
            logger.info("Rate limiting backed by Redis")
        else:
            _rate_limiter = InMemoryRateLimiter()
            logger.info("Rate limiting backed by process memory (single instance only)")
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the shared limiter so the next request rebuilds it from settings."""
    global _rate_limiter
    _rate_limiter = None


async def enforce_rate_limit(limiter: RateLimiter, scope: str, actor_id: str) -> RateLimitInfo:
    """Count one request against ``scope`` for the actor, or raise RateLimitedError."""
    return await limiter.hit(rule_for_scope(scope), actor_id)


# ─── Response Header Helper ─────────────────────────────────


def add_rate_limit_headers(response, rate_info: RateLimitInfo) -> None:
    """
    Add X-RateLimit-* headers to a response object.

    Works with both FastAPI Response objects (which have a .headers dict)
    and plain dicts (for StreamingResponse headers).
    """
    if isinstance(response, dict):
        headers = response
    else:
        headers = response.headers

    headers["X-RateLimit-Limit"] = str(rate_info.limit)
    headers["X-RateLimit-Remaining"] = (
        str(rate_info.remaining) if rate_info.remaining >= 0 else "unknown"
    )
    headers["X-RateLimit-Reset"] = str(rate_info.reset_timestamp)
