"""
Async SQLAlchemy engine, declarative base and connection helpers

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for development and tests
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from portfolio_cms.core.config import Settings, settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def is_postgres_url(database_url: str) -> bool:
    return "postgresql" in database_url.lower()


def build_engine(database_url: str, config: Settings = settings) -> AsyncEngine:
    """
    Create the async engine for a database URL

    PostgreSQL gets a QueuePool sized from the pool bounds: pool_size holds the
    minimum connections and max_overflow the headroom up to the initial maximum.
    """
    if is_postgres_url(database_url):
        connect_args = {
            "command_timeout": 30,
            "server_settings": {"application_name": "portfolio_cms"},
        }
        if config.DB_SSL:
            connect_args["ssl"] = "require"
        return create_async_engine(
            database_url,
            echo=False,
            pool_size=config.DB_POOL_MIN,
            max_overflow=config.DB_POOL_MAX - config.DB_POOL_MIN,
            pool_timeout=config.DB_POOL_TIMEOUT,
            pool_recycle=config.DB_POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    # SQLite configuration (development and tests)
    return create_async_engine(
        database_url,
        echo=False,
        connect_args={"timeout": 10},
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


DATABASE_URL = settings.SQLALCHEMY_DATABASE_URL
engine = build_engine(DATABASE_URL)
AsyncSessionLocal = build_session_factory(engine)

logger.info(f"Database engine created for {'PostgreSQL' if is_postgres_url(DATABASE_URL) else 'SQLite'}")


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create tables for every registered model"""
    # Register the models on Base.metadata
    from portfolio_cms import models  # noqa: F401

    target = bind or engine
    async with target.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def ping(bind: Optional[AsyncEngine] = None, timeout: float = 5.0) -> float:
    """
    Run a trivial round-trip query

    Returns:
        Response time in milliseconds

    Raises:
        Whatever the driver raises, or TimeoutError after ``timeout`` seconds
    """
    target = bind or engine
    start_time = time.perf_counter()
    async with asyncio.timeout(timeout):
        async with target.connect() as connection:
            await connection.scalar(text("SELECT 1"))
    return (time.perf_counter() - start_time) * 1000


def get_pool_status(bind: Optional[AsyncEngine] = None) -> Dict[str, Any]:
    """Connection pool counters; pools without QueuePool accessors report what they have"""
    pool = (bind or engine).pool
    status: Dict[str, Any] = {"pool_class": type(pool).__name__}
    for name in ("size", "checkedin", "checkedout", "overflow"):
        accessor = getattr(pool, name, None)
        if callable(accessor):
            status[name] = accessor()
    return status


async def cleanup_db_connections(bind: Optional[AsyncEngine] = None) -> None:
    """Dispose the engine and its pooled connections"""
    target = bind or engine
    try:
        await target.dispose()
    except Exception as e:
        logger.error(f"Disposing {target.dialect.name} engine failed: {e}")
    else:
        logger.info(f"Closed {target.dialect.name} connection pool")
