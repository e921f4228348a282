from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from audits.batches import BatchCoordinator, BatchProgress, Dispatch
from audits.errors import EmptyBatchError, PageNotFoundError
from audits.executor import queue_page_audit
from audits.store import AuditStore
from shared.config import get_settings
from shared.models import (
    CHECK_STATUS_ORDER,
    SEVERITY_ORDER,
    AuditBatch,
    AuditRun,
    AuditScore,
    ProductPage,
)

from ..dependencies import get_coordinator, get_db, get_run_dispatch, get_store
from ..schemas.audits import (
    BatchCreateRequest,
    BatchListResponse,
    BatchProgressResponse,
    BatchResponse,
    BatchStatusResponse,
    CheckResultResponse,
    RunDetailResponse,
    RunListResponse,
    RunStubResponse,
    RunSummaryResponse,
    ScoreResponse,
)

router = APIRouter(tags=["audits"])


def serialize_score(score: Optional[AuditScore]) -> Optional[ScoreResponse]:
    if score is None:
        return None
    return ScoreResponse(
        overall=score.overall,
        indexability=score.indexability,
        metadata=score.metadata_score,
        content=score.content,
        schema_score=score.schema,
        variant_risk=score.variant_risk,
        ai_readiness=score.ai_readiness,
    )


def serialize_stub(run: AuditRun) -> RunStubResponse:
    return RunStubResponse(
        id=run.id,
        page_id=run.page_id,
        batch_id=run.batch_id,
        status=run.status,
        created_at=run.created_at,
    )


def serialize_run(run: AuditRun) -> RunSummaryResponse:
    return RunSummaryResponse(
        id=run.id,
        page_id=run.page_id,
        batch_id=run.batch_id,
        status=run.status,
        created_at=run.created_at,
        http_status=run.http_status,
        response_time=run.response_time,
        error_message=run.error_message,
        started_at=run.started_at,
        completed_at=run.completed_at,
        score=serialize_score(run.score),
    )


def serialize_batch(batch: AuditBatch) -> BatchResponse:
    return BatchResponse(
        id=batch.id,
        project_id=batch.project_id,
        status=batch.status,
        total_urls=batch.total_urls,
        completed=batch.completed,
        failed=batch.failed,
        created_at=batch.created_at,
        runs=[serialize_stub(run) for run in batch.runs],
    )


@router.post(
    "/projects/{project_id}/audits",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_batch_audit(
    project_id: uuid.UUID,
    payload: BatchCreateRequest | None = None,
    coordinator: BatchCoordinator = Depends(get_coordinator),
) -> BatchResponse:
    page_ids = payload.page_ids if payload is not None else None
    try:
        batch = coordinator.create_batch(project_id, page_ids)
    except EmptyBatchError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return serialize_batch(batch)


@router.get("/projects/{project_id}/audits", response_model=BatchListResponse)
async def list_project_batches(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> BatchListResponse:
    result = await session.execute(
        select(AuditBatch)
        .where(AuditBatch.project_id == project_id)
        .order_by(AuditBatch.created_at.desc(), AuditBatch.id.desc())
        .limit(get_settings().history_limit)
    )
    batches = result.scalars().all()
    return BatchListResponse(
        batches=[
            BatchResponse(
                id=batch.id,
                project_id=batch.project_id,
                status=batch.status,
                total_urls=batch.total_urls,
                completed=batch.completed,
                failed=batch.failed,
                created_at=batch.created_at,
            )
            for batch in batches
        ]
    )


@router.get("/audits/batch/{batch_id}", response_model=BatchStatusResponse)
async def get_batch_status(
    batch_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> BatchStatusResponse:
    result = await session.execute(
        select(AuditBatch)
        .options(selectinload(AuditBatch.runs).selectinload(AuditRun.score))
        .where(AuditBatch.id == batch_id)
    )
    batch = result.scalar_one_or_none()
    if not batch:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")

    progress = BatchProgress.of(batch)
    runs = sorted(batch.runs, key=lambda run: run.created_at, reverse=True)
    return BatchStatusResponse(
        id=batch.id,
        project_id=batch.project_id,
        status=batch.status,
        total_urls=batch.total_urls,
        completed=batch.completed,
        failed=batch.failed,
        created_at=batch.created_at,
        runs=[serialize_run(run) for run in runs],
        progress=BatchProgressResponse(
            total=progress.total,
            completed=progress.completed,
            failed=progress.failed,
            remaining=progress.remaining,
            percent_complete=progress.percent_complete,
        ),
    )


@router.post(
    "/pages/{page_id}/audit",
    response_model=RunStubResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def run_single_page_audit(
    page_id: uuid.UUID,
    store: AuditStore = Depends(get_store),
    dispatch: Dispatch = Depends(get_run_dispatch),
) -> RunStubResponse:
    try:
        run = queue_page_audit(store, page_id, dispatch)
    except PageNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return serialize_stub(run)


@router.get("/pages/{page_id}/audits", response_model=RunListResponse)
async def get_page_audit_history(
    page_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> RunListResponse:
    page = await session.get(ProductPage, page_id)
    if not page:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Page not found")

    result = await session.execute(
        select(AuditRun)
        .options(selectinload(AuditRun.score))
        .where(AuditRun.page_id == page_id)
        .order_by(AuditRun.created_at.desc(), AuditRun.id.desc())
        .limit(get_settings().history_limit)
    )
    return RunListResponse(runs=[serialize_run(run) for run in result.scalars().all()])


@router.get("/audits/{run_id}", response_model=RunDetailResponse)
async def get_audit_run(
    run_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> RunDetailResponse:
    result = await session.execute(
        select(AuditRun)
        .options(
            selectinload(AuditRun.page),
            selectinload(AuditRun.score),
            selectinload(AuditRun.checks),
        )
        .where(AuditRun.id == run_id)
    )
    run = result.scalar_one_or_none()
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit run not found")

    checks = sorted(
        run.checks,
        key=lambda check: (
            SEVERITY_ORDER.index(check.severity),
            CHECK_STATUS_ORDER.index(check.status),
        ),
    )
    summary = serialize_run(run)
    return RunDetailResponse(
        **summary.model_dump(),
        page_url=run.page.url,
        checks=[
            CheckResultResponse(
                id=check.id,
                check_id=check.check_id,
                category=check.category,
                status=check.status,
                severity=check.severity,
                message=check.message,
                evidence=check.evidence,
                fix_hint=check.fix_hint,
            )
            for check in checks
        ],
    )
