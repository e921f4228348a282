"""Database session helpers for both async and sync contexts."""
from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import AsyncIterator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings


@lru_cache()
def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide async session factory used by the API."""

    engine = create_async_engine(get_settings().database_url, echo=False, future=True)
    return async_sessionmaker(engine, expire_on_commit=False)


@lru_cache()
def get_sync_session_factory() -> sessionmaker[Session]:
    """Return the blocking session factory shared by workers and the audit store."""

    engine = create_engine(get_settings().sync_database_url, future=True)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an AsyncSession."""

    async with get_async_session_factory()() as session:
        yield session


@contextmanager
def get_sync_session() -> Iterator[Session]:
    """Context manager for Celery tasks that need a blocking session."""

    with get_sync_session_factory()() as session:
        yield session
