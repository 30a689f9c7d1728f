# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Only the SQL document store touches the database; with the default
# in-memory store nothing here is ever initialised.
#
# DESIGN DECISION: Async SQLAlchemy Engine
# FastAPI is an async framework, so we use SQLAlchemy's async engine to avoid
# blocking the event loop during database operations. The default URL uses
# aiosqlite; any async driver works (e.g. postgresql+asyncpg://...).
#
# DESIGN DECISION: Lazy initialization (not module-level).
# Importing the store module must not open a database file or require a
# driver when the in-memory store is configured.
# =============================================================================

from __future__ import annotations

from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.db.models import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_async_engine() -> AsyncEngine:
    """Lazily create and cache the async engine for settings.database_url."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.database_url,
            echo=settings.debug,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Lazily create and cache the session factory.

    expire_on_commit=False: Prevents SQLAlchemy from marking loaded
    objects as "expired" after commit. Without this, accessing an
    attribute after commit would trigger a new query — which fails in
    async context outside of a session.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """
    Create the document_records table if it does not exist.

    Called once at startup when document_store_type="sql". For SQLite
    files, the parent directory is created first.
    """
    engine = engine or get_async_engine()

    url = engine.url
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
