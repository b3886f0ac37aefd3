"""Database connection and session management."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from mohtawa.observability.logging import get_logger
from mohtawa.storage.models import Base

logger = get_logger(__name__)

__all__ = [
    "normalize_async_url",
    "create_engine_for_url",
    "create_session_factory",
    "init_db",
    "dispose_engine",
]


def _is_sqlite_file(url: str) -> bool:
    return url.startswith("sqlite") and ":memory:" not in url


def normalize_async_url(url: str) -> str:
    """Map sync driver URLs onto their async counterparts."""
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://")
    # Ensure SQLite URLs use aiosqlite driver for async
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


def create_engine_for_url(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    use_pool: bool = True,
) -> AsyncEngine:
    """Create an async engine for ``url``."""
    url = normalize_async_url(url)
    logger.info("Creating async database engine", dialect=url.split(":", 1)[0])
    kw: dict = {"pool_pre_ping": True}

    if url.startswith("sqlite"):
        kw["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url:
            # Share one connection so every session sees the same in-memory DB.
            kw["poolclass"] = StaticPool
        elif not use_pool:
            kw["poolclass"] = NullPool
    elif not use_pool:
        kw["poolclass"] = NullPool
    else:
        kw["pool_size"] = pool_size
        kw["max_overflow"] = max_overflow

    return create_async_engine(url, **kw)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory shared by repositories, engine and workers."""
    return async_sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
        class_=AsyncSession,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create tables (idempotent) and tune SQLite for concurrent readers."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if _is_sqlite_file(str(engine.url)):
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA synchronous=NORMAL"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
            await conn.execute(text("PRAGMA busy_timeout=3000"))
            logger.info("Enabled WAL mode for SQLite database")
    logger.info("Async database tables created")


async def dispose_engine(engine: AsyncEngine) -> None:
    """Dispose ``engine``; used on shutdown and in test teardown."""
    try:
        await engine.dispose()
    except Exception:  # pragma: no cover - best-effort cleanup
        logger.debug("Failed to dispose async engine", exc_info=True)
