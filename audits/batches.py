"""Batch creation and bounded-concurrency batch processing."""
from __future__ import annotations

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from shared.config import get_settings
from shared.models import AuditBatch, AuditStatus

from .checks import round_half_up
from .errors import AuditError, EmptyBatchError
from .executor import RunExecutor
from .store import AuditStore


Dispatch = Callable[[uuid.UUID], None]

COUNT_ATTEMPTS = 3
COUNT_RETRY_DELAY = 0.05


@dataclass(frozen=True)
class BatchProgress:
    total: int
    completed: int
    failed: int
    remaining: int
    percent_complete: int

    @classmethod
    def of(cls, batch: AuditBatch) -> "BatchProgress":
        return cls.from_counts(batch.total_urls, batch.completed, batch.failed)

    @classmethod
    def from_counts(cls, total: int, completed: int, failed: int) -> "BatchProgress":
        finished = completed + failed
        return cls(
            total=total,
            completed=completed,
            failed=failed,
            remaining=total - finished,
            percent_complete=round_half_up(finished / total * 100) if total else 0,
        )


class BatchCoordinator:
    """Creates batches of runs and drains them through a bounded worker pool."""

    def __init__(
        self,
        store: AuditStore,
        executor: RunExecutor,
        *,
        dispatch: Dispatch,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self.store = store
        self.executor = executor
        self._dispatch = dispatch
        self.max_concurrency = max_concurrency or get_settings().audit_concurrency

    def create_batch(
        self, project_id: uuid.UUID, page_ids: Optional[Sequence[uuid.UUID]] = None
    ) -> AuditBatch:
        """Persist a QUEUED batch for the target pages and start it in the background.

        Returns as soon as the batch is stored; callers poll for progress.
        """

        pages = self.store.resolve_pages(project_id, page_ids)
        if not pages:
            raise EmptyBatchError(project_id)
        batch = self.store.create_batch(project_id, pages)
        self._dispatch(batch.id)
        return batch

    def process_batch(self, batch_id: uuid.UUID) -> Dict[uuid.UUID, AuditStatus]:
        self.store.mark_batch_running(batch_id)

        outcomes: Dict[uuid.UUID, AuditStatus] = {}
        try:
            run_ids = self.store.queued_run_ids(batch_id)
            with ThreadPoolExecutor(
                max_workers=self.max_concurrency, thread_name_prefix="audit-batch"
            ) as pool:
                futures = {
                    pool.submit(self._process_run, batch_id, run_id): run_id
                    for run_id in run_ids
                }
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
        finally:
            self.store.complete_batch(batch_id)
        return outcomes

    def _process_run(self, batch_id: uuid.UUID, run_id: uuid.UUID) -> AuditStatus:
        try:
            status = self.executor.execute(run_id)
        except Exception as exc:
            status = self._settle(run_id, str(exc) or exc.__class__.__name__)
        self._count(batch_id, status)
        return status

    def _settle(self, run_id: uuid.UUID, message: str) -> AuditStatus:
        try:
            return self.store.settle_run(run_id, message)
        except Exception:
            # complete_batch fails whatever is still unfinished
            return AuditStatus.FAILED

    def _count(self, batch_id: uuid.UUID, status: AuditStatus) -> None:
        """Record one finished run in the live counters, retrying transient errors.

        A run that cannot be counted is picked up by ``complete_batch``.
        """

        failed = status is not AuditStatus.COMPLETED
        for attempt in range(1, COUNT_ATTEMPTS + 1):
            try:
                self.store.increment_batch(batch_id, failed=failed)
                return
            except AuditError:
                return
            except Exception:
                if attempt == COUNT_ATTEMPTS:
                    return
                time.sleep(COUNT_RETRY_DELAY * attempt)
