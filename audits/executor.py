"""Fetch, check, score and persist a single audit run."""
from __future__ import annotations

import uuid
from typing import Callable, Optional

from shared.config import get_settings
from shared.models import AuditRun, AuditStatus

from .checks import CheckEngine
from .context import AuditContext
from .fetcher import PageFetcher
from .scoring import ScoreCalculator
from .store import AuditStore
from .telemetry import observe_fetch_latency, record_check_results, record_run_outcome


Dispatch = Callable[[uuid.UUID], None]


class RunExecutor:
    """Drives one run from QUEUED to a terminal status.

    ``execute`` never raises for page-level problems: fetch errors and any
    unexpected fault in checking, scoring or persisting the results end the run
    as FAILED with the error message recorded. Failed runs are not retried.
    """

    def __init__(
        self,
        store: AuditStore,
        *,
        fetcher: Optional[PageFetcher] = None,
        engine: Optional[CheckEngine] = None,
        calculator: Optional[ScoreCalculator] = None,
        snapshot_limit: Optional[int] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher or PageFetcher()
        self.engine = engine or CheckEngine()
        self.calculator = calculator or ScoreCalculator(self.engine.definitions)
        self.snapshot_limit = (
            snapshot_limit if snapshot_limit is not None else get_settings().snapshot_limit
        )

    def execute(self, run_id: uuid.UUID) -> AuditStatus:
        url = self.store.start_run(run_id)
        self.store.log(run_id, f"Starting audit: {url}")

        try:
            page = self.fetcher.fetch(url)
            observe_fetch_latency(page.latency_ms)
            self.store.log(
                run_id,
                "Fetched page",
                metadata={
                    "status": page.status,
                    "latency_ms": page.latency_ms,
                    "final_url": page.final_url,
                },
            )
            context = AuditContext.from_fetch(url, page)
            results = self.engine.run_all_checks(context)
            score = self.calculator.calculate_score(results)
            self.store.complete_run(
                run_id, page, results, score, snapshot_limit=self.snapshot_limit
            )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self.store.fail_run(run_id, message)
            record_run_outcome(AuditStatus.FAILED)
            self.store.log(run_id, "Audit failed", level="error", metadata={"error": message})
            return AuditStatus.FAILED

        record_check_results(results)
        record_run_outcome(AuditStatus.COMPLETED)
        self.store.log(
            run_id,
            "Audit completed",
            metadata={
                "score": score.to_dict(),
                "failures": [result.check_id for result in results if result.is_failure()],
            },
        )
        return AuditStatus.COMPLETED


def queue_page_audit(store: AuditStore, page_id: uuid.UUID, dispatch: Dispatch) -> AuditRun:
    """Create a standalone QUEUED run for a page and hand it to the background."""

    page = store.get_page(page_id)
    run = store.create_run(page)
    dispatch(run.id)
    return run
