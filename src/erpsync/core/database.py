"""Async SQLAlchemy engine, declarative base, and session factories.

Provides:
- SyncBase: Declarative base for the sync bookkeeping tables (entity_map, sync_jobs)
- make_session_factory(): session_factory callable for an explicit engine
- init_db() / close_db(): lifespan helpers
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.erpsync.config import get_settings

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class SyncBase(DeclarativeBase):
    """Base class for sync bookkeeping models."""


# ── Session Factories ───────────────────────────────────────────────────────


def make_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Build a session_factory callable for repositories bound to ``engine``."""

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return _factory


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the sync tables if they don't exist.

    Production deployments run the Alembic migration instead; this keeps
    local development and single-node installs working without it.
    """
    import src.erpsync.sync.models  # noqa: F401  (registers tables on SyncBase)

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SyncBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
