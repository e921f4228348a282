from __future__ import annotations

from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from audits.batches import BatchCoordinator, Dispatch
from audits.executor import RunExecutor
from audits.store import AuditStore
from shared.db import get_async_session_factory
from workers.tasks import enqueue_batch, enqueue_run


async def get_db() -> AsyncIterator[AsyncSession]:
    async with get_async_session_factory()() as session:
        yield session


@lru_cache()
def get_store() -> AuditStore:
    return AuditStore()


@lru_cache()
def get_coordinator() -> BatchCoordinator:
    store = get_store()
    return BatchCoordinator(store, RunExecutor(store), dispatch=enqueue_batch)


def get_run_dispatch() -> Dispatch:
    return enqueue_run
