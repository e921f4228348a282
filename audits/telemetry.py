"""Prometheus instrumentation for the audit pipeline."""
from __future__ import annotations

from typing import Iterable

from prometheus_client import Counter, Histogram

from shared.models import AuditStatus

from .result import CheckResult


CHECK_OUTCOMES = Counter(
    "ppi_audit_check_results_total",
    "Check outcomes partitioned by check id and status.",
    ["check_id", "status"],
)
RUN_OUTCOMES = Counter(
    "ppi_audit_runs_total",
    "Audit runs that reached a terminal status.",
    ["status"],
)
FETCH_LATENCY = Histogram(
    "ppi_audit_fetch_latency_seconds",
    "Wall-clock page fetch latency.",
    buckets=(0.25, 0.5, 1.0, 1.5, 3.0, 5.0, 10.0, 30.0),
)


def record_check_results(results: Iterable[CheckResult]) -> None:
    for result in results:
        CHECK_OUTCOMES.labels(check_id=result.check_id, status=result.status.value).inc()


def record_run_outcome(status: AuditStatus) -> None:
    RUN_OUTCOMES.labels(status=status.value).inc()


def observe_fetch_latency(latency_ms: int) -> None:
    FETCH_LATENCY.observe(latency_ms / 1000)
