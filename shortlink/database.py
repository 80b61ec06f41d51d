"""Database engine and session factory construction for the short-link service.

This module builds the SQLAlchemy async engine and session factory used by the
link store, the click-record repository and the stats aggregator. Nothing here
is a module-level singleton: the composition root (``AppResources``) and the
consumer worker each own their engine and dispose of it on shutdown.

Flow Diagram — Database Lifecycle
=================================
::
    ┌─────────────┐
    │ build_engine│
    │ (settings)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ build_session│
    │ _factory()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ init_db()    │
    │ create_all   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async with   │
    │ factory() as │
    │ session      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ engine.      │
    │ dispose()    │
    └─────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    await init_db(engine)

**Step 2 — Open sessions per unit of work**::
    async with session_factory() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await engine.dispose()

Key Behaviours
===============
- Connection pooling is configured for production workloads on PostgreSQL.
- SQLite URLs (used by tests) skip pool sizing, which SQLite pools reject.
- Tables are created automatically on application startup.
- Sessions do not expire attributes on commit, so returned rows stay usable.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import Settings

__all__ = ["Base", "build_engine", "build_session_factory", "init_db"]


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(settings.DATABASE_URL, echo=False)
    return create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Import registers the tables on Base.metadata.
    from shortlink import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
