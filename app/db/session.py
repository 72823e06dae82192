"""Database session configuration"""

import os
import logging
from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")

logger = logging.getLogger(__name__)

# postgresql://postgres:[PASSWORD]@[HOST]:[PORT]/postgres
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def to_async_url(url: str) -> str:
    """Normalize a database URL to an async driver URL (psycopg for Postgres, aiosqlite for SQLite)"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql+psycopg://"):
        return url
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://", 1)
    if url.startswith("sqlite+aiosqlite://"):
        return url
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    raise ValueError(f"Unsupported database URL format: {url}")


ASYNC_DATABASE_URL = to_async_url(DATABASE_URL)

# Connection pool configuration
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))

engine_options: dict = {"echo": False}
if ASYNC_DATABASE_URL.startswith("postgresql"):
    engine_options.update(
        pool_pre_ping=True,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
    )

engine = create_async_engine(ASYNC_DATABASE_URL, **engine_options)

SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function for FastAPI routes.

    Usage:
        @router.get("/example")
        async def example(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with SessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_pool_stats() -> dict:
    """
    Get current connection pool statistics.

    Pools that do not track a statistic (e.g. SQLite's) report the configured
    defaults instead.
    """
    try:
        sync_pool = engine.sync_engine.pool

        def _read(name: str, default: int) -> int:
            func = getattr(sync_pool, name, None)
            value = func() if callable(func) else None
            return int(value) if value is not None else default

        return {
            "size": _read("size", POOL_SIZE),
            "checked_in": _read("checkedin", 0),
            "checked_out": _read("checkedout", 0),
            "overflow": max(0, _read("overflow", 0)),
            "invalid": _read("invalid", 0),
            "max_overflow": int(getattr(sync_pool, "_max_overflow", MAX_OVERFLOW)),
        }
    except Exception as e:
        logger.warning(f"Error getting pool stats: {e}")
        return {
            "size": POOL_SIZE,
            "checked_in": 0,
            "checked_out": 0,
            "overflow": 0,
            "invalid": 0,
            "max_overflow": MAX_OVERFLOW,
        }


@event.listens_for(engine.sync_engine, "connect")
def on_connect(dbapi_conn, connection_record):
    """Log when a new connection is created"""
    logger.debug("New database connection created")


@event.listens_for(engine.sync_engine, "invalidate")
def on_invalidate(dbapi_conn, connection_record, exception):
    """Log when a connection is invalidated"""
    logger.warning(
        f"Database connection invalidated: {exception}",
        exc_info=exception
    )
