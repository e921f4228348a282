from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.models import AuditStatus, BatchStatus, CheckStatus, Severity


class BatchCreateRequest(BaseModel):
    page_ids: Optional[List[UUID]] = Field(
        None, description="Pages to audit; every page of the project when omitted"
    )


class CheckResultResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: UUID
    check_id: str
    category: str
    status: CheckStatus
    severity: Severity
    message: str
    evidence: Optional[Dict[str, Any]] = None
    fix_hint: Optional[str] = None


class ScoreResponse(BaseModel):
    overall: int
    indexability: int
    metadata: int
    content: int
    schema_score: int = Field(serialization_alias="schema")
    variant_risk: int
    ai_readiness: int


class RunStubResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: UUID
    page_id: UUID
    batch_id: Optional[UUID] = None
    status: AuditStatus
    created_at: datetime


class RunSummaryResponse(RunStubResponse):
    http_status: Optional[int] = None
    response_time: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    score: Optional[ScoreResponse] = None


class RunDetailResponse(RunSummaryResponse):
    page_url: str
    checks: List[CheckResultResponse] = Field(default_factory=list)


class RunListResponse(BaseModel):
    runs: List[RunSummaryResponse]


class BatchProgressResponse(BaseModel):
    total: int
    completed: int
    failed: int
    remaining: int
    percent_complete: int


class BatchResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: UUID
    project_id: UUID
    status: BatchStatus
    total_urls: int
    completed: int
    failed: int
    created_at: datetime
    runs: List[RunStubResponse] = Field(default_factory=list)


class BatchStatusResponse(BatchResponse):
    runs: List[RunSummaryResponse] = Field(default_factory=list)
    progress: BatchProgressResponse


class BatchListResponse(BaseModel):
    batches: List[BatchResponse]


class CheckDefinitionResponse(BaseModel):
    id: str
    category: str
    name: str
    severity: str
    weight: int


class CheckCatalogueResponse(BaseModel):
    checks: List[CheckDefinitionResponse]
    category_weights: Dict[str, int]
