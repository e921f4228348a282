"""Blocking persistence for batches, runs, check results and scores."""
from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from shared.db import get_sync_session_factory
from shared.logs import emit_log
from shared.models import (
    AuditBatch,
    AuditCheck,
    AuditRun,
    AuditScore,
    AuditStatus,
    BatchStatus,
    ProductPage,
)

from .errors import (
    AuditError,
    BatchNotFoundError,
    InvalidTransitionError,
    PageNotFoundError,
    RunNotFoundError,
)
from .fetcher import FetchedPage
from .result import CheckResult
from .scoring import AuditScoreCard


ALLOWED_RUN_TRANSITIONS: dict[AuditStatus, set[AuditStatus]] = {
    AuditStatus.QUEUED: {AuditStatus.RUNNING, AuditStatus.FAILED},
    AuditStatus.RUNNING: {AuditStatus.COMPLETED, AuditStatus.FAILED},
    AuditStatus.COMPLETED: set(),
    AuditStatus.FAILED: set(),
}

ALLOWED_BATCH_TRANSITIONS: dict[BatchStatus, set[BatchStatus]] = {
    BatchStatus.QUEUED: {BatchStatus.RUNNING},
    BatchStatus.RUNNING: {BatchStatus.COMPLETED},
    BatchStatus.COMPLETED: set(),
}

TERMINAL_RUN_STATUSES = {AuditStatus.COMPLETED, AuditStatus.FAILED}

UNFINISHED_RUN_MESSAGE = "Run did not finish before its batch closed"


def _now() -> datetime:
    return datetime.now(UTC)


def _advance_run(run: AuditRun, status: AuditStatus) -> None:
    if status not in ALLOWED_RUN_TRANSITIONS[run.status]:
        raise InvalidTransitionError("run", run.status.value, status.value)
    run.status = status


def _advance_batch(batch: AuditBatch, status: BatchStatus) -> None:
    if status not in ALLOWED_BATCH_TRANSITIONS[batch.status]:
        raise InvalidTransitionError("batch", batch.status.value, status.value)
    batch.status = status
    batch.updated_at = _now()


class AuditStore:
    """Persistence collaborator used by the executor and the batch coordinator.

    Every method opens its own short-lived session so the store can be shared
    by the worker threads of a batch.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory or get_sync_session_factory()
        self._counter_lock = threading.Lock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._session_factory() as session:
            yield session

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------
    def get_page(self, page_id: uuid.UUID) -> ProductPage:
        with self.session() as session:
            page = session.get(ProductPage, page_id)
            if page is None:
                raise PageNotFoundError(page_id)
            return page

    def resolve_pages(
        self, project_id: uuid.UUID, page_ids: Optional[Sequence[uuid.UUID]] = None
    ) -> List[ProductPage]:
        """Return the listed pages of a project, or all of them when none are listed."""

        query = select(ProductPage).where(ProductPage.project_id == project_id)
        if page_ids is not None:
            if not page_ids:
                return []
            query = query.where(ProductPage.id.in_(list(page_ids)))
        query = query.order_by(ProductPage.created_at.asc(), ProductPage.id.asc())
        with self.session() as session:
            pages = list(session.execute(query).scalars().all())
        if page_ids is not None:
            rank = {page_id: index for index, page_id in enumerate(page_ids)}
            pages.sort(key=lambda page: rank.get(page.id, len(rank)))
        return pages

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_batch(self, project_id: uuid.UUID, pages: Sequence[ProductPage]) -> AuditBatch:
        """Create a QUEUED batch and one QUEUED run per page in a single commit."""

        batch = AuditBatch(
            id=uuid.uuid4(),
            project_id=project_id,
            status=BatchStatus.QUEUED,
            total_urls=len(pages),
            completed=0,
            failed=0,
        )
        batch.runs = [
            AuditRun(
                id=uuid.uuid4(),
                page_id=page.id,
                position=index,
                status=AuditStatus.QUEUED,
            )
            for index, page in enumerate(pages)
        ]
        with self.session() as session:
            session.add(batch)
            session.commit()
        return batch

    def create_run(self, page: ProductPage) -> AuditRun:
        run = AuditRun(id=uuid.uuid4(), page_id=page.id, status=AuditStatus.QUEUED)
        with self.session() as session:
            session.add(run)
            session.commit()
            session.refresh(run)
        return run

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------
    def start_run(self, run_id: uuid.UUID) -> str:
        """Move a run to RUNNING and return the URL to fetch."""

        with self.session() as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            _advance_run(run, AuditStatus.RUNNING)
            run.started_at = _now()
            url = run.page.url
            session.commit()
            return url

    def complete_run(
        self,
        run_id: uuid.UUID,
        page: FetchedPage,
        results: Sequence[CheckResult],
        score: AuditScoreCard,
        *,
        snapshot_limit: int,
    ) -> None:
        with self.session() as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            _advance_run(run, AuditStatus.COMPLETED)
            run.completed_at = _now()
            run.http_status = page.status
            run.response_time = page.latency_ms
            run.html_snapshot = page.body[:snapshot_limit]
            run.checks = [
                AuditCheck(
                    id=uuid.uuid4(),
                    position=index,
                    check_id=result.check_id,
                    category=result.category,
                    status=result.status,
                    severity=result.severity,
                    message=result.message,
                    evidence=result.evidence,
                    fix_hint=result.fix_hint,
                )
                for index, result in enumerate(results)
            ]
            run.score = AuditScore(id=uuid.uuid4(), **score.as_columns())
            run.page.latest_score = score.overall
            session.commit()

    def fail_run(self, run_id: uuid.UUID, message: str) -> None:
        with self.session() as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            _advance_run(run, AuditStatus.FAILED)
            run.completed_at = _now()
            run.error_message = message
            session.commit()

    def settle_run(self, run_id: uuid.UUID, message: str) -> AuditStatus:
        """Return the run's terminal status, failing it first if it never got there."""

        with self.session() as session:
            run = session.get(AuditRun, run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            if run.status not in TERMINAL_RUN_STATUSES:
                _advance_run(run, AuditStatus.FAILED)
                run.completed_at = _now()
                run.error_message = message
                session.commit()
            return run.status

    def get_run(self, run_id: uuid.UUID) -> AuditRun:
        query = (
            select(AuditRun)
            .options(selectinload(AuditRun.checks), selectinload(AuditRun.score))
            .where(AuditRun.id == run_id)
        )
        with self.session() as session:
            run = session.execute(query).scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def log(
        self,
        run_id: uuid.UUID,
        message: str,
        *,
        level: str = "info",
        metadata: Dict[str, Any] | None = None,
    ) -> None:
        with self.session() as session:
            emit_log(session, run_id, message, level=level, metadata=metadata)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    def get_batch(self, batch_id: uuid.UUID) -> AuditBatch:
        query = (
            select(AuditBatch)
            .options(selectinload(AuditBatch.runs))
            .where(AuditBatch.id == batch_id)
        )
        with self.session() as session:
            batch = session.execute(query).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(batch_id)
        return batch

    def queued_run_ids(self, batch_id: uuid.UUID) -> List[uuid.UUID]:
        query = (
            select(AuditRun.id)
            .where(AuditRun.batch_id == batch_id, AuditRun.status == AuditStatus.QUEUED)
            .order_by(AuditRun.position.asc())
        )
        with self.session() as session:
            return list(session.execute(query).scalars().all())

    def mark_batch_running(self, batch_id: uuid.UUID) -> None:
        with self.session() as session:
            batch = session.get(AuditBatch, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            _advance_batch(batch, BatchStatus.RUNNING)
            session.commit()

    def increment_batch(self, batch_id: uuid.UUID, *, failed: bool) -> None:
        """Count one terminated run against the batch, never past ``total_urls``."""

        column = AuditBatch.failed if failed else AuditBatch.completed
        statement = (
            update(AuditBatch)
            .where(
                AuditBatch.id == batch_id,
                AuditBatch.completed + AuditBatch.failed < AuditBatch.total_urls,
            )
            .values({column: column + 1, AuditBatch.updated_at: _now()})
            .execution_options(synchronize_session=False)
        )
        with self._counter_lock, self.session() as session:
            updated = session.execute(statement).rowcount
            session.commit()
        if updated != 1:
            raise AuditError(f"Batch {batch_id} counters are already at total_urls")

    def complete_batch(self, batch_id: uuid.UUID) -> AuditBatch:
        """Close the batch, reconciling its counters with the runs' own statuses.

        Runs that never reached a terminal status are failed here, so a batch
        always ends with ``completed + failed == total_urls``.
        """

        with self._counter_lock, self.session() as session:
            batch = session.get(AuditBatch, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            completed = failed = 0
            for run in batch.runs:
                if run.status not in TERMINAL_RUN_STATUSES:
                    _advance_run(run, AuditStatus.FAILED)
                    run.completed_at = _now()
                    run.error_message = run.error_message or UNFINISHED_RUN_MESSAGE
                if run.status is AuditStatus.COMPLETED:
                    completed += 1
                else:
                    failed += 1
            batch.completed = completed
            batch.failed = failed
            _advance_batch(batch, BatchStatus.COMPLETED)
            session.commit()
            return batch
