from __future__ import annotations

import uuid

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

from audits.errors import FetchError, InvalidTransitionError, PageNotFoundError
from audits.executor import RunExecutor, queue_page_audit
from shared.models import AuditStatus, CheckStatus, RunLog

from conftest import PAGE_URL, StaticFetcher, fetched, product_html


def _logs(store, run_id):
    with store.session() as session:
        entries = session.execute(
            select(RunLog).where(RunLog.run_id == run_id).order_by(RunLog.created_at)
        )
        return [(entry.level, entry.message) for entry in entries.scalars()]


def _queued_run(store, seed_pages, url=PAGE_URL):
    page = seed_pages([url])[0]
    return store.create_run(page)


def test_successful_run_persists_checks_score_and_snapshot(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)
    html = product_html()
    fetcher = StaticFetcher({PAGE_URL: fetched(html, latency_ms=240)})

    status = RunExecutor(store, fetcher=fetcher).execute(run.id)

    assert status is AuditStatus.COMPLETED
    stored = store.get_run(run.id)
    assert stored.status is AuditStatus.COMPLETED
    assert stored.http_status == 200
    assert stored.response_time == 240
    assert stored.html_snapshot == html
    assert stored.started_at is not None
    assert stored.completed_at is not None
    assert stored.error_message is None
    assert len(stored.checks) == 22
    assert [check.position for check in stored.checks] == list(range(22))
    assert {check.status for check in stored.checks} == {CheckStatus.PASS}
    assert stored.score.overall == 100
    assert stored.score.variant_risk == 100

    page = store.get_page(run.page_id)
    assert page.latest_score == 100

    assert _logs(store, run.id) == [
        ("info", f"Starting audit: {PAGE_URL}"),
        ("info", "Fetched page"),
        ("info", "Audit completed"),
    ]


def test_snapshot_is_truncated(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)
    html = product_html()
    fetcher = StaticFetcher({PAGE_URL: fetched(html)})

    RunExecutor(store, fetcher=fetcher, snapshot_limit=64).execute(run.id)

    assert store.get_run(run.id).html_snapshot == html[:64]


def test_fetch_failure_fails_run_without_results(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)
    fetcher = StaticFetcher({PAGE_URL: FetchError(PAGE_URL, "timed out after 15.0s")})

    status = RunExecutor(store, fetcher=fetcher).execute(run.id)

    assert status is AuditStatus.FAILED
    stored = store.get_run(run.id)
    assert stored.status is AuditStatus.FAILED
    assert stored.error_message == f"Failed to fetch {PAGE_URL}: timed out after 15.0s"
    assert stored.started_at is not None
    assert stored.completed_at is not None
    assert stored.checks == []
    assert stored.score is None
    assert stored.html_snapshot is None
    assert store.get_page(run.page_id).latest_score is None

    levels = [level for level, _ in _logs(store, run.id)]
    assert levels == ["info", "error"]


def test_unexpected_fault_after_fetch_fails_run(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)

    class BrokenCalculator:
        def calculate_score(self, results):
            raise ZeroDivisionError()

    executor = RunExecutor(
        store,
        fetcher=StaticFetcher({PAGE_URL: fetched(product_html())}),
        calculator=BrokenCalculator(),
    )

    assert executor.execute(run.id) is AuditStatus.FAILED
    stored = store.get_run(run.id)
    assert stored.error_message == "ZeroDivisionError"
    assert stored.checks == []


def test_non_200_page_still_completes(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)
    fetcher = StaticFetcher({PAGE_URL: fetched("<html></html>", status=404)})

    assert RunExecutor(store, fetcher=fetcher).execute(run.id) is AuditStatus.COMPLETED

    stored = store.get_run(run.id)
    assert stored.http_status == 404
    by_id = {check.check_id: check for check in stored.checks}
    assert by_id["http_status_ok"].status is CheckStatus.FAIL
    assert stored.score.overall < 50


def test_terminal_run_cannot_be_executed_again(store, seed_pages) -> None:
    run = _queued_run(store, seed_pages)
    executor = RunExecutor(store, fetcher=StaticFetcher({PAGE_URL: fetched(product_html())}))
    executor.execute(run.id)

    with pytest.raises(InvalidTransitionError):
        executor.execute(run.id)

    assert store.get_run(run.id).status is AuditStatus.COMPLETED


def test_settle_run_fails_only_unfinished_runs(store, seed_pages) -> None:
    queued = _queued_run(store, seed_pages)
    assert store.settle_run(queued.id, "worker lost") is AuditStatus.FAILED
    assert store.get_run(queued.id).error_message == "worker lost"

    done = _queued_run(store, seed_pages, url=f"{PAGE_URL}-blue")
    RunExecutor(
        store, fetcher=StaticFetcher({f"{PAGE_URL}-blue": fetched(product_html())})
    ).execute(done.id)
    assert store.settle_run(done.id, "ignored") is AuditStatus.COMPLETED
    assert store.get_run(done.id).error_message is None


def test_queue_page_audit_creates_standalone_run(store, seed_pages) -> None:
    page = seed_pages([PAGE_URL])[0]
    dispatched = []

    run = queue_page_audit(store, page.id, dispatched.append)

    assert dispatched == [run.id]
    stored = store.get_run(run.id)
    assert stored.status is AuditStatus.QUEUED
    assert stored.batch_id is None


def test_queue_page_audit_rejects_unknown_page(store) -> None:
    with pytest.raises(PageNotFoundError):
        queue_page_audit(store, uuid.uuid4(), lambda run_id: None)


def test_outcomes_are_exported_as_metrics(store, seed_pages) -> None:
    def sample(name, labels):
        return REGISTRY.get_sample_value(name, labels) or 0.0

    failed_before = sample("ppi_audit_runs_total", {"status": "FAILED"})
    passes_before = sample(
        "ppi_audit_check_results_total", {"check_id": "title_present", "status": "PASS"}
    )

    broken = _queued_run(store, seed_pages)
    RunExecutor(store, fetcher=StaticFetcher({})).execute(broken.id)
    healthy = _queued_run(store, seed_pages)
    RunExecutor(store, fetcher=StaticFetcher({PAGE_URL: fetched(product_html())})).execute(
        healthy.id
    )

    assert sample("ppi_audit_runs_total", {"status": "FAILED"}) == failed_before + 1
    assert (
        sample("ppi_audit_check_results_total", {"check_id": "title_present", "status": "PASS"})
        == passes_before + 1
    )
