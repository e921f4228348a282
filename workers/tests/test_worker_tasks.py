from __future__ import annotations

import sys
import uuid
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from shared.models import AuditStatus
from workers import tasks


class DummyFetcher:
    closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        DummyFetcher.closed = True


class RecordingStore:
    def __init__(self) -> None:
        self.settled: list[tuple[uuid.UUID, str]] = []

    def settle_run(self, run_id: uuid.UUID, message: str) -> AuditStatus:
        self.settled.append((run_id, message))
        return AuditStatus.FAILED


@pytest.fixture()
def store(monkeypatch: pytest.MonkeyPatch) -> RecordingStore:
    store = RecordingStore()
    DummyFetcher.closed = False
    monkeypatch.setattr(tasks, "AuditStore", lambda: store)
    monkeypatch.setattr(tasks, "PageFetcher", DummyFetcher)
    return store


def test_enqueue_helpers_send_string_ids(monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []
    monkeypatch.setattr(tasks.process_batch_task, "delay", lambda value: sent.append(("batch", value)))
    monkeypatch.setattr(tasks.execute_run_task, "delay", lambda value: sent.append(("run", value)))
    batch_id, run_id = uuid.uuid4(), uuid.uuid4()

    tasks.enqueue_batch(batch_id)
    tasks.enqueue_run(run_id)

    assert sent == [("batch", str(batch_id)), ("run", str(run_id))]


def test_execute_run_task_returns_status(monkeypatch: pytest.MonkeyPatch, store) -> None:
    class Executor:
        def __init__(self, store, *, fetcher):
            pass

        def execute(self, run_id):
            return AuditStatus.COMPLETED

    monkeypatch.setattr(tasks, "RunExecutor", Executor)

    assert tasks.execute_run_task(str(uuid.uuid4())) == "COMPLETED"
    assert DummyFetcher.closed
    assert store.settled == []


def test_execute_run_task_settles_run_before_reraising(
    monkeypatch: pytest.MonkeyPatch, store
) -> None:
    class Executor:
        def __init__(self, store, *, fetcher):
            pass

        def execute(self, run_id):
            raise RuntimeError("database went away")

    monkeypatch.setattr(tasks, "RunExecutor", Executor)
    run_id = uuid.uuid4()

    with pytest.raises(RuntimeError):
        tasks.execute_run_task(str(run_id))

    assert store.settled == [(run_id, "database went away")]
    assert DummyFetcher.closed


def test_process_batch_task_serializes_outcomes(monkeypatch: pytest.MonkeyPatch, store) -> None:
    run_id = uuid.uuid4()

    class Coordinator:
        def __init__(self, store, executor, *, dispatch):
            pass

        def process_batch(self, batch_id):
            return {run_id: AuditStatus.FAILED}

    monkeypatch.setattr(tasks, "RunExecutor", lambda store, *, fetcher: object())
    monkeypatch.setattr(tasks, "BatchCoordinator", Coordinator)

    assert tasks.process_batch_task(str(uuid.uuid4())) == {str(run_id): "FAILED"}
