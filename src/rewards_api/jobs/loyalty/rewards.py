"""Jobs that run the reward pipeline for completed purchases."""

# meta: job: loyalty-rewards

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select

from rewards_api.core.settings import settings
from rewards_api.models.loyalty import LoyaltyPipelineRun, PipelineRunStatusEnum
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum
from rewards_api.services.cashback.providers import PaymentProvider
from rewards_api.services.loyalty.locks import UserLockProvider
from rewards_api.services.loyalty.pipeline import RewardPipeline

from .common import SessionFactory, open_session

PipelineDispatcher = Callable[[UUID], Any]


async def process_purchase_rewards(
    *,
    session_factory: SessionFactory,
    purchase_id: UUID,
    attempt: int = 1,
    triggered_by: str | None = None,
    provider: PaymentProvider | None = None,
    lock_provider: UserLockProvider | None = None,
) -> Dict[str, Any]:
    """Run the reward pipeline once for ``purchase_id`` and return its outcome."""

    session = await open_session(session_factory)
    async with session as managed_session:
        pipeline = RewardPipeline(managed_session, provider=provider, lock_provider=lock_provider)
        outcome = await pipeline.run(purchase_id, attempt=attempt, triggered_by=triggered_by)
        summary = outcome.as_dict()
        logger.bind(summary=summary).info("Reward pipeline run finished")
        return summary


async def abandon_purchase_rewards(
    *,
    session_factory: SessionFactory,
    purchase_id: UUID,
    error: str,
) -> Dict[str, Any]:
    """Record that the retry budget for ``purchase_id`` is exhausted."""

    session = await open_session(session_factory)
    async with session as managed_session:
        pipeline = RewardPipeline(managed_session)
        run = await pipeline.on_permanent_failure(purchase_id, error)
        return {
            "purchase_id": str(purchase_id),
            "run_id": str(run.id),
            "status": run.status.value,
            "attempt": run.attempt,
        }


async def requeue_unprocessed_purchases(
    *,
    session_factory: SessionFactory,
    dispatcher: PipelineDispatcher,
    older_than_seconds: int | None = None,
    limit: int | None = None,
    now: datetime | None = None,
) -> Dict[str, int]:
    """Re-enqueue completed purchases the pipeline never finished.

    Covers completion signals lost after the purchase commit. Purchases
    completed within the grace window are left to their in-flight task and
    abandoned purchases stay with operators.
    """

    grace = settings.loyalty_requeue_grace_seconds if older_than_seconds is None else older_than_seconds
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=grace)
    abandoned = select(LoyaltyPipelineRun.id).where(
        LoyaltyPipelineRun.purchase_id == Purchase.id,
        LoyaltyPipelineRun.status == PipelineRunStatusEnum.ABANDONED,
    )
    stmt = (
        select(Purchase.id)
        .where(
            Purchase.status == PurchaseStatusEnum.COMPLETED,
            Purchase.processed_for_loyalty.is_(False),
            func.coalesce(Purchase.completed_at, Purchase.created_at) <= cutoff,
            ~abandoned.exists(),
        )
        .order_by(func.coalesce(Purchase.completed_at, Purchase.created_at).asc())
        .limit(limit or settings.loyalty_requeue_batch_size)
    )

    session = await open_session(session_factory)
    async with session as managed_session:
        purchase_ids = list((await managed_session.execute(stmt)).scalars().all())

    summary = {"candidates": len(purchase_ids), "enqueued": 0, "failed": 0}
    for purchase_id in purchase_ids:
        try:
            dispatcher(purchase_id)
        except Exception as exc:
            summary["failed"] += 1
            logger.error("Failed to re-enqueue loyalty processing", purchase_id=str(purchase_id), error=str(exc))
            continue
        summary["enqueued"] += 1

    if purchase_ids:
        logger.bind(summary=summary).info("Unprocessed purchase sweep completed")
    return summary
