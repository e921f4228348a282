"""Error types raised by the audit engine."""
from __future__ import annotations

import uuid


class AuditError(Exception):
    """Base class for audit engine failures."""


class EmptyBatchError(AuditError):
    """Raised when a batch is requested for zero pages."""

    def __init__(self, project_id: uuid.UUID) -> None:
        super().__init__("No pages found to audit")
        self.project_id = project_id


class FetchError(AuditError):
    """Raised when a page cannot be retrieved or its body cannot be decoded."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class CheckEvaluationError(AuditError):
    """Wraps an evaluator fault; never escapes the check engine."""

    def __init__(self, check_id: str, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.check_id = check_id
        self.cause = cause


class InvalidTransitionError(AuditError):
    """Raised when a run or batch status would move backwards."""

    def __init__(self, kind: str, current: str, requested: str) -> None:
        super().__init__(f"Invalid {kind} status transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class RunNotFoundError(AuditError):
    def __init__(self, run_id: uuid.UUID) -> None:
        super().__init__(f"Audit run {run_id} not found")
        self.run_id = run_id


class BatchNotFoundError(AuditError):
    def __init__(self, batch_id: uuid.UUID) -> None:
        super().__init__(f"Audit batch {batch_id} not found")
        self.batch_id = batch_id


class PageNotFoundError(AuditError):
    def __init__(self, page_id: uuid.UUID) -> None:
        super().__init__("Page not found")
        self.page_id = page_id
