"""
Database engine and session management for async SQLAlchemy.

The account store commits each authoritative write itself, so request
sessions carry no implicit trailing commit. The identity provider opens
its own short-lived sessions from ``async_session_factory``.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings, get_settings


def is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def engine_options(settings: Settings) -> dict:
    """Pool arguments for the configured backend (SQLite takes none)."""
    if is_sqlite(settings.database_url):
        return {}
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_recycle": settings.database_pool_recycle,
        "pool_pre_ping": settings.database_pool_pre_ping,
        "pool_timeout": settings.database_pool_timeout,
    }


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create the async SQLAlchemy engine from settings."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.app_debug,
        **engine_options(settings),
    )


engine = create_engine()

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_schema(bind: AsyncEngine | None = None) -> None:
    """Create tables straight from the ORM models.

    Only for SQLite-backed local runs; Postgres deployments are migrated
    with Alembic.
    """
    from app.db.models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that provides an async database session."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
