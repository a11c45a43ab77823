"""Celery application setup for the reward pipeline and cashback retries."""

from __future__ import annotations

from typing import Any

from celery import Celery
from celery.signals import setup_logging

from rewards_api.core.logging import configure_logging
from rewards_api.core.settings import settings


def _resolve_backend_url() -> str:
    if settings.celery_result_backend:
        return settings.celery_result_backend
    return settings.redis_url


def _resolve_broker_url() -> str:
    if settings.celery_broker_url:
        return settings.celery_broker_url
    return settings.redis_url


def build_beat_schedule() -> dict[str, dict[str, Any]]:
    """Periodic sweeps that keep retries, notifications and lost triggers moving."""

    return {
        "loyalty-retry-failed-cashback": {
            "task": "loyalty.retry_failed_cashback",
            "schedule": float(settings.cashback_retry_interval_seconds),
            "options": {"queue": settings.cashback_retry_task_queue},
        },
        "loyalty-dispatch-events": {
            "task": "loyalty.dispatch_events",
            "schedule": float(settings.loyalty_event_interval_seconds),
            "options": {"queue": settings.loyalty_events_task_queue},
        },
        "loyalty-requeue-unprocessed": {
            "task": "loyalty.requeue_unprocessed",
            "schedule": float(settings.loyalty_requeue_interval_seconds),
            "options": {"queue": settings.loyalty_pipeline_task_queue},
        },
    }


@setup_logging.connect
def _configure_worker_logging(loglevel: Any = None, **_: Any) -> None:
    # Connecting this receiver stops Celery from installing its own handlers.
    configure_logging(
        service_name=settings.service_name,
        environment=settings.environment,
        version="worker",
        level=loglevel or "INFO",
    )


celery_app = Celery(
    "rewards_api",
    broker=_resolve_broker_url(),
    backend=_resolve_backend_url(),
)

celery_app.conf.update(
    task_default_queue=settings.celery_default_queue,
    timezone="UTC",
    broker_connection_retry_on_startup=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_hijack_root_logger=False,
    beat_schedule=build_beat_schedule(),
)

celery_app.autodiscover_tasks(["rewards_api.celery_tasks"])

__all__ = ["build_beat_schedule", "celery_app"]
