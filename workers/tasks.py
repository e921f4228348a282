"""Celery tasks that execute audit batches and standalone runs."""
from __future__ import annotations

import uuid
from typing import Dict

from audits.batches import BatchCoordinator
from audits.executor import RunExecutor
from audits.fetcher import PageFetcher
from audits.store import AuditStore

from .celery_app import celery_app


def enqueue_batch(batch_id: uuid.UUID) -> None:
    process_batch_task.delay(str(batch_id))


def enqueue_run(run_id: uuid.UUID) -> None:
    execute_run_task.delay(str(run_id))


@celery_app.task(name="audits.process_batch")
def process_batch_task(batch_id: str) -> Dict[str, str]:
    store = AuditStore()
    with PageFetcher() as fetcher:
        coordinator = BatchCoordinator(
            store,
            RunExecutor(store, fetcher=fetcher),
            dispatch=enqueue_batch,
        )
        outcomes = coordinator.process_batch(uuid.UUID(batch_id))
    return {str(run_id): status.value for run_id, status in outcomes.items()}


@celery_app.task(name="audits.execute_run")
def execute_run_task(run_id: str) -> str:
    store = AuditStore()
    run_uuid = uuid.UUID(run_id)

    with PageFetcher() as fetcher:
        executor = RunExecutor(store, fetcher=fetcher)
        try:
            status = executor.execute(run_uuid)
        except Exception as exc:
            store.settle_run(run_uuid, str(exc) or exc.__class__.__name__)
            raise

    return status.value
