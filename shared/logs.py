"""Log utilities that keep both database and SSE clients in sync."""
from __future__ import annotations

import asyncio
import threading
import uuid
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Tuple

from sqlalchemy.orm import Session

from .models import RunLog


Subscriber = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[Dict[str, Any]]"]


class LogStreamBroker:
    """In-memory broker that fans out audit run log entries to SSE consumers.

    Entries are published from worker threads while consumers live on the API
    event loop, so every hand-off goes through ``call_soon_threadsafe``.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[uuid.UUID, List[Subscriber]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish(self, run_id: uuid.UUID, payload: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(run_id, ()))
        for subscriber in subscribers:
            loop, queue = subscriber
            try:
                loop.call_soon_threadsafe(queue.put_nowait, payload)
            except RuntimeError:
                # loop closed without unsubscribing
                self._discard(run_id, subscriber)

    async def stream(self, run_id: uuid.UUID) -> AsyncIterator[Dict[str, Any]]:
        subscriber: Subscriber = (asyncio.get_running_loop(), asyncio.Queue())
        with self._lock:
            self._subscribers[run_id].append(subscriber)
        try:
            while True:
                item = await subscriber[1].get()
                yield item
        finally:
            self._discard(run_id, subscriber)

    def _discard(self, run_id: uuid.UUID, subscriber: Subscriber) -> None:
        with self._lock:
            remaining = [s for s in self._subscribers.get(run_id, ()) if s is not subscriber]
            if remaining:
                self._subscribers[run_id] = remaining
            else:
                self._subscribers.pop(run_id, None)

    def subscriber_count(self, run_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(run_id, ()))


broker = LogStreamBroker()


def emit_log(
    session: Session,
    run_id: uuid.UUID,
    message: str,
    *,
    level: str = "info",
    metadata: Dict[str, Any] | None = None,
) -> RunLog:
    """Persist a log entry for an audit run and notify SSE listeners."""

    metadata = metadata or {}
    entry = RunLog(
        id=uuid.uuid4(),
        run_id=run_id,
        message=message,
        level=level,
        data=metadata,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)

    broker.publish(
        run_id,
        {
            "id": str(entry.id),
            "run_id": str(run_id),
            "message": entry.message,
            "level": entry.level,
            "metadata": entry.data,
            "created_at": entry.created_at.isoformat(),
        },
    )
    return entry
