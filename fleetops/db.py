from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from .config import settings
from .errors import StaleRecord
import logging

logger = logging.getLogger(__name__)

# Ensure the DATABASE_URL uses an async driver (asyncpg) for SQLAlchemy asyncio
if settings.DATABASE_URL.startswith("postgresql://") and "+asyncpg" not in settings.DATABASE_URL:
    raise RuntimeError(
        "DATABASE_URL must use an async driver for async SQLAlchemy (e.g. postgresql+asyncpg://...). "
        "Update your DATABASE_URL or set the DATABASE_URL environment variable accordingly."
    )


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DB_ECHO)
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


engine: AsyncEngine = build_engine(settings.DATABASE_URL)


@asynccontextmanager
async def get_conn():
    async with engine.connect() as conn:
        yield conn


def as_dict(row) -> Optional[dict]:
    return dict(row._mapping) if row is not None else None


def _utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def assert_unchanged(current: Optional[datetime], expected: Optional[datetime]):
    """Refuse a write when the caller's copy of the record is stale.

    Callers that send no `expected_updated_at` keep last-writer-wins.
    """
    if expected is None or current is None:
        return
    if _utc_naive(current) != _utc_naive(expected):
        raise StaleRecord("Record was modified by another operator; reload and try again")


async def init_db():
    """Create the backend tables in a local sandbox database.

    The production schema is owned by the backend, so this only runs when
    DB_CREATE_SCHEMA is enabled.
    """
    if not settings.DB_CREATE_SCHEMA:
        return
    from .models import metadata
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("init_db: schema created on %s", engine.url.render_as_string(hide_password=True))
