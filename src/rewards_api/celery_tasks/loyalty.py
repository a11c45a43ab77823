from __future__ import annotations

from uuid import UUID

from loguru import logger

from rewards_api.celery_app import celery_app
from rewards_api.core.settings import settings
from rewards_api.services.cashback.errors import CashbackTransactionNotFoundError
from rewards_api.services.loyalty.errors import PurchaseNotFoundError
from rewards_api.tasks.loyalty_rewards import (
    abandon_purchase_rewards_sync,
    dispatch_loyalty_events_sync,
    process_purchase_rewards_sync,
    requeue_unprocessed_purchases_sync,
    retry_cashback_sync,
    retry_failed_cashback_sync,
)


def _pipeline_countdown(retries: int) -> int:
    return settings.pipeline_retry_backoff_seconds * (2**retries)


def _enqueue_pipeline(purchase_id: UUID) -> None:
    process_loyalty_rewards.delay(str(purchase_id))


def _after_pipeline_run(summary: dict[str, object]) -> None:
    if summary.get("status") != "completed":
        return
    dispatch_loyalty_event_batch.delay()
    transaction_id = summary.get("cashback_transaction_id")
    if summary.get("cashback_status") == "failed" and transaction_id:
        retry_cashback_transaction.apply_async(
            args=(transaction_id,),
            countdown=settings.cashback_retry_backoff_seconds,
        )
        logger.info(
            "Scheduled cashback retry",
            purchase_id=summary.get("purchase_id"),
            transaction_id=transaction_id,
            countdown=settings.cashback_retry_backoff_seconds,
        )


@celery_app.task(
    bind=True,
    name="loyalty.process_rewards",
    queue=settings.loyalty_pipeline_task_queue,
    max_retries=max(settings.pipeline_max_attempts - 1, 0),
    soft_time_limit=settings.pipeline_timeout_seconds,
)
def process_loyalty_rewards(self, purchase_id: str) -> dict[str, object]:
    """Run the reward pipeline for one purchase, retrying with exponential backoff.

    Once the retry budget is spent the latest run is marked abandoned and the
    error propagates so the broker records the failure.
    """

    attempt = self.request.retries + 1
    try:
        summary = process_purchase_rewards_sync(
            UUID(purchase_id),
            attempt=attempt,
            triggered_by="celery",
        )
    except PurchaseNotFoundError:
        logger.warning("Purchase not found for loyalty processing", purchase_id=purchase_id)
        return {"purchase_id": purchase_id, "status": "missing", "reason": "purchase_not_found"}
    except Exception as exc:
        if self.request.retries >= self.max_retries:
            abandon_purchase_rewards_sync(UUID(purchase_id), error=str(exc) or exc.__class__.__name__)
            raise
        countdown = _pipeline_countdown(self.request.retries)
        logger.warning(
            "Reward pipeline attempt failed; scheduling retry",
            purchase_id=purchase_id,
            attempt=attempt,
            countdown=countdown,
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=countdown)

    _after_pipeline_run(summary)
    return summary


@celery_app.task(
    bind=True,
    name="loyalty.retry_cashback",
    queue=settings.cashback_retry_task_queue,
    max_retries=max(settings.cashback_retry_max_attempts - 1, 0),
)
def retry_cashback_transaction(self, transaction_id: str) -> dict[str, object]:
    """Retry one failed cashback transfer, re-queueing while it keeps failing."""

    try:
        summary = retry_cashback_sync(UUID(transaction_id))
    except CashbackTransactionNotFoundError:
        logger.warning("Cashback transaction not found for retry", transaction_id=transaction_id)
        return {"transaction_id": transaction_id, "status": "missing", "skipped": True}

    if summary.get("skipped"):
        return summary
    dispatch_loyalty_event_batch.delay()
    if summary.get("succeeded"):
        return summary
    attempts = int(summary.get("attempts") or 0)
    if self.request.retries >= self.max_retries or attempts >= settings.cashback_retry_max_attempts:
        logger.error(
            "Cashback retry budget exhausted",
            transaction_id=transaction_id,
            attempts=summary.get("attempts"),
        )
        return summary
    raise self.retry(countdown=settings.cashback_retry_backoff_seconds)


@celery_app.task(
    name="loyalty.retry_failed_cashback",
    queue=settings.cashback_retry_task_queue,
)
def retry_failed_cashback_batch(limit: int | None = None) -> dict[str, object]:
    """Execute the failed cashback sweep once via Celery."""

    if not settings.cashback_retry_worker_enabled:
        logger.info("Cashback retry worker disabled; skipping Celery task.")
        return {"processed": 0, "succeeded": 0, "failed": 0, "skipped": True}
    summary = retry_failed_cashback_sync(limit=limit)
    if summary.get("processed"):
        dispatch_loyalty_event_batch.delay()
    return summary


@celery_app.task(
    name="loyalty.dispatch_events",
    queue=settings.loyalty_events_task_queue,
)
def dispatch_loyalty_event_batch(limit: int | None = None) -> dict[str, object]:
    """Deliver pending loyalty notifications once via Celery."""

    return dispatch_loyalty_events_sync(limit=limit)


@celery_app.task(
    name="loyalty.requeue_unprocessed",
    queue=settings.loyalty_pipeline_task_queue,
)
def requeue_unprocessed_purchases_batch(limit: int | None = None) -> dict[str, object]:
    """Re-enqueue completed purchases whose pipeline task was lost."""

    if not settings.loyalty_requeue_enabled:
        logger.info("Unprocessed purchase sweep disabled; skipping Celery task.")
        return {"candidates": 0, "enqueued": 0, "failed": 0, "skipped": True}
    return requeue_unprocessed_purchases_sync(dispatcher=_enqueue_pipeline, limit=limit)
