"""Async engine, session factory and the request-scoped session dependency.

Services own their unit of work: they call ``commit()`` / ``rollback()``
on the session they are handed. Background jobs and the notification sink
open their own sessions from ``async_session_factory``.
"""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config.settings import settings


class Base(DeclarativeBase):
    """Declarative base for the reference ORM models (schema lives in alembic/versions)."""


engine: AsyncEngine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

# expire_on_commit=False: services keep reading returned dataclasses after commit
async_session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; anything left uncommitted is rolled back on close."""
    async with async_session_factory() as session:
        yield session
