"""Database models that capture the audit lifecycle."""
from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class AuditStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BatchStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"


class CheckStatus(str, enum.Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    SKIP = "SKIP"


class Severity(str, enum.Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


# Declaration order doubles as the sort order of the run detail view.
SEVERITY_ORDER = list(Severity)
CHECK_STATUS_ORDER = list(CheckStatus)


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""

    return datetime.now(UTC)


class Project(Base):
    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    pages = relationship("ProductPage", back_populates="project")
    batches = relationship("AuditBatch", back_populates="project")


class ProductPage(Base):
    __tablename__ = "product_pages"
    __table_args__ = (UniqueConstraint("project_id", "normalized_url"),)

    id = Column(UUID(as_uuid=True), primary_key=True)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    url = Column(String(2048), nullable=False)
    normalized_url = Column(String(2048), nullable=False)
    sku = Column(String(128))
    variant_group = Column(String(128))
    latest_score = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    project = relationship("Project", back_populates="pages")
    runs = relationship("AuditRun", back_populates="page")


class AuditBatch(Base):
    __tablename__ = "audit_batches"

    id = Column(UUID(as_uuid=True), primary_key=True)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id"), nullable=False)
    status = Column(Enum(BatchStatus), default=BatchStatus.QUEUED, nullable=False)
    total_urls = Column(Integer, nullable=False)
    completed = Column(Integer, default=0, nullable=False)
    failed = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    project = relationship("Project", back_populates="batches")
    runs = relationship(
        "AuditRun",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="AuditRun.position",
    )


class AuditRun(Base):
    __tablename__ = "audit_runs"

    id = Column(UUID(as_uuid=True), primary_key=True)
    page_id = Column(UUID(as_uuid=True), ForeignKey("product_pages.id"), nullable=False)
    batch_id = Column(UUID(as_uuid=True), ForeignKey("audit_batches.id"))
    position = Column(Integer, default=0, nullable=False)
    status = Column(Enum(AuditStatus), default=AuditStatus.QUEUED, nullable=False)
    http_status = Column(Integer)
    response_time = Column(Integer)
    html_snapshot = Column(Text)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    page = relationship("ProductPage", back_populates="runs")
    batch = relationship("AuditBatch", back_populates="runs")
    checks = relationship(
        "AuditCheck",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="AuditCheck.position",
    )
    score = relationship(
        "AuditScore", back_populates="run", uselist=False, cascade="all, delete-orphan"
    )
    logs = relationship("RunLog", back_populates="run", cascade="all, delete-orphan")


class AuditCheck(Base):
    __tablename__ = "audit_checks"

    id = Column(UUID(as_uuid=True), primary_key=True)
    run_id = Column(UUID(as_uuid=True), ForeignKey("audit_runs.id"), nullable=False)
    position = Column(Integer, nullable=False)
    check_id = Column(String(64), nullable=False)
    category = Column(String(32), nullable=False)
    status = Column(Enum(CheckStatus), nullable=False)
    severity = Column(Enum(Severity), nullable=False)
    message = Column(Text, nullable=False)
    evidence = Column(JSON)
    fix_hint = Column(Text)

    run = relationship("AuditRun", back_populates="checks")


class AuditScore(Base):
    __tablename__ = "audit_scores"

    id = Column(UUID(as_uuid=True), primary_key=True)
    run_id = Column(
        UUID(as_uuid=True), ForeignKey("audit_runs.id"), nullable=False, unique=True
    )
    overall = Column(Integer, nullable=False)
    indexability = Column(Integer, nullable=False)
    metadata_score = Column("metadata", Integer, nullable=False)
    content = Column(Integer, nullable=False)
    schema = Column(Integer, nullable=False)
    variant_risk = Column(Integer, nullable=False)
    ai_readiness = Column(Integer, nullable=False)

    run = relationship("AuditRun", back_populates="score")


class RunLog(Base):
    __tablename__ = "run_logs"

    id = Column(UUID(as_uuid=True), primary_key=True)
    run_id = Column(UUID(as_uuid=True), ForeignKey("audit_runs.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    level = Column(String(16), default="info", nullable=False)
    message = Column(Text, nullable=False)
    data = Column("metadata", JSON, default=dict, nullable=False)

    run = relationship("AuditRun", back_populates="logs")
