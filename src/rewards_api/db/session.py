"""Async engine and session factories shared by jobs, workers and tasks."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewards_api.core.settings import settings

engine = create_async_engine(settings.database_url, echo=settings.database_echo, future=True)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def async_session() -> AsyncSession:
    """Return a new session bound to the configured engine."""

    return SessionLocal()


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def create_all() -> None:
    """Create tables for local development databases."""

    import rewards_api.models  # noqa: F401

    from .base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
