"""Database configuration and session management for the short-link service.

This module provides SQLAlchemy async engine setup, session factories,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌──────────────┐
    │ lifespan()   │
    │ startup      │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ build_engine │
    │ + session    │
    │ factory      │
    └──────┬───────┘
           ▼
    ┌──────────────┐      ┌──────────────┐
    │ get_db()     │      │ ClickRecorder│
    │ per request  │      │ own session  │
    └──────┬───────┘      └──────┬───────┘
           ▼                     ▼
    ┌──────────────────────────────────┐
    │ Auto-close (async with)          │
    └──────────────────────────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    await init_db(engine)

**Step 2 — Open a session**::
    async with session_factory() as session:
        result = await session.execute(select(ShortLink))

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- The engine is owned by the service manager, not by this module.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.
- ``expire_on_commit=False`` so committed rows stay readable for caching.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    build_engine():  Creates the async engine from settings.
    build_session_factory():  Creates the async session factory.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlinks.config import Settings

__all__ = ["Base", "build_engine", "build_session_factory", "close_db", "init_db"]


class Base(DeclarativeBase):
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    options: dict = {
        "echo": settings.APP_ENV == "development",
        "pool_pre_ping": True,
    }
    if not settings.DATABASE_URL.startswith("sqlite"):
        options["pool_size"] = settings.DATABASE_POOL_SIZE
        options["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(settings.DATABASE_URL, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Register the mapped classes on Base.metadata before create_all.
    import shortlinks.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
