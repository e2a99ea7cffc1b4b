"""
GhostNote billing FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import stripe
from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from app import __version__
from app.config import RateLimitBackend, Settings, get_settings
from app.core.health import get_health_status
from app.core.logging_config import setup_logging
from app.core.sentry_config import init_sentry
from app.db.database import create_schema, get_db, is_sqlite
from app.middleware.logging_middleware import LoggingMiddleware
from app.middleware.rate_limiter import close_redis, get_redis
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.services.notification_service import get_notification_dispatcher

logger = logging.getLogger(__name__)

# Vite dev server
DEV_ORIGINS = ["http://localhost:5173"]

OPENAPI_TAGS = [
    {
        "name": "Subscription",
        "description": "Cancel at period end, resume, status, real-time stream, "
                       "and pending checkout reconciliation.",
    },
    {
        "name": "Account",
        "description": "Account deletion. Live subscriptions are cancelled first.",
    },
    {
        "name": "Webhooks",
        "description": "Stripe payment and subscription webhooks.",
    },
    {
        "name": "System",
        "description": "Health checks and operational endpoints.",
    },
]

system_router = APIRouter(tags=["System"])


@system_router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Database probe, plus Redis when rate-limit counters are shared."""
    settings = get_settings()
    redis = None
    if settings.rate_limit_backend == RateLimitBackend.REDIS:
        redis = await get_redis()

    return await get_health_status(
        app_name=settings.app_name,
        app_version=__version__,
        app_env=settings.app_env.value,
        db_session=db,
        redis_client=redis,
        processor_configured=bool(settings.stripe_secret_key),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle management."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{__version__} ({settings.app_env.value})")
    if settings.rate_limit_backend == RateLimitBackend.MEMORY and not settings.is_development:
        logger.warning(
            "RATE_LIMIT_BACKEND=memory: counters are per process and do not hold "
            "across multiple instances"
        )
    if is_sqlite(settings.database_url):
        await create_schema()
    yield
    # Queued emails go out before the process exits
    await get_notification_dispatcher().drain()
    await close_redis()
    logger.info(f"Shutting down {settings.app_name}")


def cors_origins(settings: Settings) -> list[str]:
    """Allowed browser origins: the dev server locally, CORS_ALLOWED_ORIGINS elsewhere."""
    if settings.is_development:
        return DEV_ORIGINS
    return [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI instance."""
    settings = get_settings()

    setup_logging(
        app_env=settings.app_env,
        log_level=settings.log_level,
        log_format=settings.log_format,
    )

    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key

    # Before app creation so the ASGI integration hooks in
    init_sentry(
        dsn=settings.sentry_dsn,
        app_env=settings.app_env,
        app_version=__version__,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
    )

    app = FastAPI(
        title=settings.app_name,
        description=(
            "GhostNote billing manages the subscription lifecycle: scheduled "
            "cancellation, resumption, status, safe account deletion, and "
            "processor webhooks.\n\n"
            "**Authentication:** All endpoints (except `/health` and webhooks) require "
            "a JWT Bearer token whose subject matches the `userId` being acted on.\n\n"
            "**Rate Limits:** Billing, deletion and status endpoints are rate-limited "
            "per actor. See `X-RateLimit-*` response headers."
        ),
        version=__version__,
        lifespan=lifespan,
        openapi_tags=OPENAPI_TAGS,
        contact={"name": "GhostNote", "email": settings.support_email},
        license_info={"name": "Proprietary"},
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        redirect_slashes=False,
    )

    # Added innermost first: CORS ends up outermost
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from app.api.v1 import account, subscription, webhooks
    from app.middleware.exception_handler import register_exception_handlers

    app.include_router(system_router)
    app.include_router(subscription.router, prefix="/api/v1")
    app.include_router(account.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")

    register_exception_handlers(app)

    return app


app = create_app()
