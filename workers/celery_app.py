"""Celery application configuration."""
from __future__ import annotations

from celery import Celery
from kombu import Queue

from shared.config import get_settings

AUDIT_QUEUE = "audits"

settings = get_settings()

celery_app = Celery(
    "product_page_intelligence",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=["workers.tasks"],
)

celery_app.conf.task_default_queue = AUDIT_QUEUE
celery_app.conf.task_queues = (Queue(AUDIT_QUEUE, routing_key=AUDIT_QUEUE),)
celery_app.conf.task_routes = {
    "audits.*": {
        "queue": AUDIT_QUEUE,
        "routing_key": AUDIT_QUEUE,
    }
}
celery_app.conf.update(task_serializer="json", accept_content=["json"], result_serializer="json")
