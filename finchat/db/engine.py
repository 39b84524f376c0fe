# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine (asyncpg against PostgreSQL in production,
# aiosqlite in the test suite). All queries use `await`.
#
# TRANSACTION POLICY:
# Two session patterns exist in this codebase:
#
# 1. Dependency-injected (get_async_session via Depends):
#    Read-only route handlers. Auto-commits when the handler returns,
#    rolls back on exception.
#
# 2. Self-managed (session factory called directly):
#    The inquiry pipeline opens its own sessions so it can own the
#    transaction boundaries: txn A (create), a short status update, txn B
#    (finalize), and the out-of-band FAILED update. These MUST commit
#    explicitly (or use `session.begin()`).
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from finchat.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    Pool sizing only applies to server databases; SQLite picks its own
    pool class and rejects pool_size/max_overflow.
    """
    kwargs: dict = {"echo": echo}
    if not database_url.startswith("sqlite"):
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return create_async_engine(database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to `engine`.

    expire_on_commit=False keeps ORM objects readable after commit, which
    the pipeline relies on when it returns persisted rows to the caller.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ---------------------------------------------------------------------------
# Application Engine (Lazy Initialization)
# ---------------------------------------------------------------------------
# Created on first use so importing the package never needs a database
# driver or a reachable server.
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Lazily create and cache the application engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=settings.debug)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Lazily create and cache the application session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is committed when the handler returns and rolled back if
    it raises.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
