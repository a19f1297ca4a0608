"""
Catalog Backend — Database Session Management
===============================================

What:  The products database: engine, per-request sessions, schema bootstrap.
How:   One async engine per process (asyncpg in production, aiosqlite in the
       test suite). Each request gets its own session that commits when the
       handler returns and rolls back when it raises.
When:  Engine built at import; tables created by the lifespan on startup.

Connection Pooling Strategy (PostgreSQL):
    pool_size=20:       Persistent connections for normal load
    max_overflow=30:    Temporary connections for spikes (total max = 50)
    pool_pre_ping:      Validates connections before use
    pool_recycle=1800:  Recycles connections every 30 minutes

    SQLite (used by the test suite) manages its own pool and rejects these
    arguments, so they are only passed for server databases.
"""

from typing import Any, AsyncGenerator, Awaitable, Callable, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from catalog.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        # Echo SQL queries in DEBUG mode for development visibility
        "echo": settings.log_level == "DEBUG",
    }
    if url.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=settings.db_pool_recycle,
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(
    settings.sqlalchemy_url,
    **_engine_options(settings.sqlalchemy_url),
)

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: Prevents lazy-loading issues after commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Declarative base for the catalog tables.

    Shares one metadata object; create_tables() builds the schema from it.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction per request.

    ProductService only flushes; the commit happens here after the handler
    returns, so a handler that raises after flushing leaves the database
    untouched. Hooks registered with on_rollback() run when it does not commit.

    Usage:
        @router.get("/products/{product_id}")
        async def get_product(product_id: int, db: AsyncSession = Depends(get_db_session)):
            return await product_service.get_product(db, product_id)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            session.info.pop(ROLLBACK_HOOKS_KEY, None)
        except Exception:
            # Roll back for ANY failure, including a failed commit
            try:
                await session.rollback()
            finally:
                await _run_rollback_hooks(session)
            raise
        finally:
            await session.close()


# ── Rollback Hooks ────────────────────────────────────────────────────────
# Files written on behalf of a transaction must go away if it never commits.
# Hooks live in session.info and run after the rollback in get_db_session.
ROLLBACK_HOOKS_KEY = "rollback_hooks"


def on_rollback(session: AsyncSession, hook: Callable[[], Awaitable[None]]) -> None:
    """Register an async callable to run if this session's transaction is rolled back."""
    session.info.setdefault(ROLLBACK_HOOKS_KEY, []).append(hook)


async def _run_rollback_hooks(session: AsyncSession) -> None:
    for hook in session.info.pop(ROLLBACK_HOOKS_KEY, []):
        await hook()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def create_tables() -> None:
    """
    What:  Creates missing tables for every registered model.
    When:  Application startup, when settings.db_auto_create is on.
    Why:   The catalog has a single table and no migration tooling; existing
           tables are left untouched.
    """
    # Registers Product with Base.metadata
    from catalog.models import product  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()
