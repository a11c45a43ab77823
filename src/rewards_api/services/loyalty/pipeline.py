"""Reward pipeline coordinating achievements, badges and cashback for a purchase."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.cashback import CashbackTransaction
from rewards_api.models.loyalty import LoyaltyPipelineRun, PipelineRunStatusEnum
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum
from rewards_api.models.user import User
from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.services.cashback.cashback_service import CashbackPaymentService
from rewards_api.services.cashback.providers import PaymentProvider

from .achievements import AchievementService, UnlockedAchievement
from .badges import AwardedBadge, BadgeService
from .errors import PurchaseNotFoundError, UserNotFoundError
from .locks import UserLockProvider, build_user_lock_provider

SKIP_ALREADY_PROCESSED = "already_processed"
SKIP_NOT_ELIGIBLE = "not_eligible"


@dataclass(slots=True)
class PipelineOutcome:
    """Result of one pipeline run over a purchase."""

    purchase_id: UUID
    status: PipelineRunStatusEnum
    reason: str | None = None
    run_id: UUID | None = None
    unlocked_achievements: list[UnlockedAchievement] = field(default_factory=list)
    awarded_badges: list[AwardedBadge] = field(default_factory=list)
    cashback_transaction: CashbackTransaction | None = None

    @property
    def skipped(self) -> bool:
        return self.status == PipelineRunStatusEnum.SKIPPED

    def as_dict(self) -> dict[str, Any]:
        transaction = self.cashback_transaction
        return {
            "purchase_id": str(self.purchase_id),
            "status": self.status.value,
            "reason": self.reason,
            "run_id": str(self.run_id) if self.run_id else None,
            "achievements_unlocked": len(self.unlocked_achievements),
            "badges_awarded": len(self.awarded_badges),
            "cashback_transaction_id": str(transaction.id) if transaction else None,
            "cashback_status": transaction.status.value if transaction else None,
            "cashback_amount": str(transaction.amount) if transaction else None,
        }


def skip_reason_for(purchase: Purchase) -> str | None:
    if purchase.processed_for_loyalty:
        return SKIP_ALREADY_PROCESSED
    if purchase.status != PurchaseStatusEnum.COMPLETED:
        return SKIP_NOT_ELIGIBLE
    return None


class RewardPipeline:
    """Run achievement, badge and cashback processing for one completed purchase.

    Each stage commits its own transaction. Runs for the same user are
    serialized through the configured ``UserLockProvider`` and every attempt is
    recorded as a ``LoyaltyPipelineRun``. Stage failures leave the purchase
    unprocessed and propagate so the caller can retry.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        provider: PaymentProvider | None = None,
        lock_provider: UserLockProvider | None = None,
    ) -> None:
        self._session = session
        self._locks = lock_provider or build_user_lock_provider()
        self._achievements = AchievementService(session)
        self._badges = BadgeService(session)
        self._cashback = CashbackPaymentService(session, provider)

    async def run(
        self,
        purchase_id: UUID,
        *,
        attempt: int = 1,
        triggered_by: str | None = None,
    ) -> PipelineOutcome:
        purchase = await self._load_purchase(purchase_id)
        reason = skip_reason_for(purchase)
        if reason is not None:
            return await self._skip(purchase, reason, attempt=attempt, triggered_by=triggered_by)

        user_id = purchase.user_id
        async with self._locks.hold(user_id):
            purchase = await self._load_purchase(purchase_id)
            reason = skip_reason_for(purchase)
            if reason is not None:
                return await self._skip(purchase, reason, attempt=attempt, triggered_by=triggered_by)

            user = await self._session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)

            run = await self._start_run(purchase_id, attempt=attempt, triggered_by=triggered_by)
            run_id = run.id
            logger.info(
                "Processing loyalty rewards",
                purchase_id=str(purchase_id),
                user_id=str(user_id),
                amount=str(purchase.amount),
                attempt=attempt,
            )
            try:
                unlocked = await self._achievements.evaluate(user, purchase)
                awarded = await self._badges.evaluate(user)
                transaction = await self._cashback.process(purchase)

                now = datetime.now(timezone.utc)
                purchase.processed_for_loyalty = True
                purchase.loyalty_processed_at = now
                run.status = PipelineRunStatusEnum.COMPLETED
                run.achievements_unlocked = len(unlocked)
                run.badges_awarded = len(awarded)
                run.cashback_transaction_id = transaction.id
                run.completed_at = now
                await self._session.commit()
            except Exception as exc:
                await self._session.rollback()
                await self._mark_run(run_id, PipelineRunStatusEnum.FAILED, error=exc)
                get_loyalty_store().record_pipeline_outcome("failed")
                logger.error(
                    "Failed to process loyalty rewards",
                    purchase_id=str(purchase_id),
                    attempt=attempt,
                    error=str(exc),
                )
                raise

        store = get_loyalty_store()
        store.record_pipeline_outcome("completed")
        store.record_achievements_unlocked(len(unlocked))
        store.record_badges_awarded(len(awarded))
        logger.info(
            "Loyalty rewards processing completed",
            purchase_id=str(purchase_id),
            achievements_unlocked=len(unlocked),
            badges_earned=len(awarded),
            cashback_amount=str(transaction.amount),
            cashback_status=transaction.status.value,
        )
        return PipelineOutcome(
            purchase_id=purchase_id,
            status=PipelineRunStatusEnum.COMPLETED,
            run_id=run_id,
            unlocked_achievements=unlocked,
            awarded_badges=awarded,
            cashback_transaction=transaction,
        )

    async def on_permanent_failure(self, purchase_id: UUID, error: BaseException | str) -> LoyaltyPipelineRun:
        """Mark the latest run abandoned once the retry budget is spent."""

        stmt = (
            select(LoyaltyPipelineRun)
            .where(LoyaltyPipelineRun.purchase_id == purchase_id)
            .order_by(LoyaltyPipelineRun.attempt.desc(), LoyaltyPipelineRun.started_at.desc())
            .limit(1)
        )
        run = (await self._session.execute(stmt)).scalars().first()
        now = datetime.now(timezone.utc)
        if run is None or run.status not in (PipelineRunStatusEnum.FAILED, PipelineRunStatusEnum.RUNNING):
            run = LoyaltyPipelineRun(
                purchase_id=purchase_id,
                attempt=(run.attempt + 1) if run is not None else 1,
                started_at=now,
            )
            self._session.add(run)
        run.status = PipelineRunStatusEnum.ABANDONED
        run.error_message = str(error)
        run.completed_at = now
        await self._session.commit()

        get_loyalty_store().record_pipeline_outcome("abandoned")
        logger.error(
            "Loyalty rewards processing failed permanently",
            purchase_id=str(purchase_id),
            attempts=run.attempt,
            error=str(error),
        )
        return run

    async def _load_purchase(self, purchase_id: UUID) -> Purchase:
        stmt = (
            select(Purchase)
            .where(Purchase.id == purchase_id)
            .execution_options(populate_existing=True)
        )
        purchase = (await self._session.execute(stmt)).scalar_one_or_none()
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        return purchase

    async def _skip(
        self,
        purchase: Purchase,
        reason: str,
        *,
        attempt: int,
        triggered_by: str | None,
    ) -> PipelineOutcome:
        now = datetime.now(timezone.utc)
        run = LoyaltyPipelineRun(
            purchase_id=purchase.id,
            status=PipelineRunStatusEnum.SKIPPED,
            attempt=attempt,
            triggered_by=triggered_by,
            skip_reason=reason,
            started_at=now,
            completed_at=now,
        )
        self._session.add(run)
        await self._session.commit()

        get_loyalty_store().record_pipeline_outcome("skipped", reason)
        logger.info(
            "Purchase skipped for loyalty processing",
            purchase_id=str(purchase.id),
            reason=reason,
            status=purchase.status.value,
        )
        return PipelineOutcome(
            purchase_id=purchase.id,
            status=PipelineRunStatusEnum.SKIPPED,
            reason=reason,
            run_id=run.id,
        )

    async def _start_run(self, purchase_id: UUID, *, attempt: int, triggered_by: str | None) -> LoyaltyPipelineRun:
        run = LoyaltyPipelineRun(
            purchase_id=purchase_id,
            status=PipelineRunStatusEnum.RUNNING,
            attempt=attempt,
            triggered_by=triggered_by,
            started_at=datetime.now(timezone.utc),
        )
        self._session.add(run)
        await self._session.commit()
        return run

    async def _mark_run(self, run_id: UUID, status: PipelineRunStatusEnum, *, error: BaseException) -> None:
        run = await self._session.get(LoyaltyPipelineRun, run_id)
        if run is None:
            return
        run.status = status
        run.error_message = str(error) or error.__class__.__name__
        run.completed_at = datetime.now(timezone.utc)
        await self._session.commit()


__all__ = [
    "PipelineOutcome",
    "RewardPipeline",
    "SKIP_ALREADY_PROCESSED",
    "SKIP_NOT_ELIGIBLE",
    "skip_reason_for",
]
