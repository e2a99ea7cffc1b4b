"""
Health check with dependency probes.

Checks:
- Database: ``SELECT 1`` through the async session
- Redis: ``PING`` (only when the shared rate-limit backend is configured)
- Processor: whether Stripe credentials are configured (no network call)

Returns 200 with ``"healthy"`` or ``"degraded"`` — never 503.
Load balancers check for 200; the body indicates component health.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime

from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def _timed_probe(name: str, probe) -> dict:
    try:
        start = time.monotonic()
        await probe()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "up", "latency_ms": latency}
    except Exception as e:
        logger.warning(f"{name} health check failed: {e}")
        return {"status": "down", "error": str(e)}


async def check_database(session: AsyncSession) -> dict:
    """Probe database connectivity."""
    return await _timed_probe("Database", lambda: session.execute(text("SELECT 1")))


async def check_redis(redis: Redis) -> dict:
    """Probe Redis connectivity."""
    return await _timed_probe("Redis", redis.ping)


async def get_health_status(
    app_name: str,
    app_version: str,
    app_env: str,
    db_session: AsyncSession | None = None,
    redis_client: Redis | None = None,
    processor_configured: bool = False,
) -> dict:
    """
    Build the health status response.

    Probes run concurrently. Overall status is ``"healthy"`` if every
    configured probe passes, ``"degraded"`` otherwise.
    """
    tasks: dict[str, asyncio.Task] = {}
    if db_session is not None:
        tasks["database"] = asyncio.create_task(check_database(db_session))
    if redis_client is not None:
        tasks["redis"] = asyncio.create_task(check_redis(redis_client))

    components: dict[str, dict] = {}
    for name, task in tasks.items():
        components[name] = await task

    components["processor"] = {"status": "up" if processor_configured else "unconfigured"}

    probed = [c for name, c in components.items() if name != "processor"]
    overall = "healthy" if all(c["status"] == "up" for c in probed) else "degraded"

    return {
        "status": overall,
        "app": app_name,
        "version": app_version,
        "environment": app_env,
        "timestamp": datetime.now(UTC).isoformat(),
        "components": components,
    }
