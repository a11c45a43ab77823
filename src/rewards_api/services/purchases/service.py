"""Purchase recording and the purchase-completed trigger for the reward pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.celery_tasks.loyalty import process_loyalty_rewards
from rewards_api.core.settings import settings
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum
from rewards_api.services.loyalty.errors import PurchaseNotFoundError

from .errors import PurchaseStateError

CompletionDispatcher = Callable[[UUID], Any]


def generate_order_reference(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"ORD-{uuid4().hex[:8].upper()}-{int(moment.timestamp())}"


def dispatch_purchase_completed(purchase_id: UUID) -> None:
    """Enqueue the reward pipeline for a completed purchase and return immediately."""

    process_loyalty_rewards.delay(str(purchase_id))
    logger.info("Enqueued loyalty rewards processing", purchase_id=str(purchase_id))


class PurchaseService:
    """Create purchases and signal completion to the reward pipeline."""

    def __init__(self, session: AsyncSession, dispatcher: CompletionDispatcher | None = None) -> None:
        self._session = session
        self._dispatcher = dispatcher or dispatch_purchase_completed

    async def record_purchase(
        self,
        *,
        user_id: UUID,
        amount: Decimal,
        currency: str | None = None,
        items: list[dict[str, Any]] | None = None,
        order_reference: str | None = None,
    ) -> Purchase:
        purchase = Purchase(
            user_id=user_id,
            amount=amount,
            currency=currency or settings.default_currency,
            items=items,
            order_reference=order_reference or generate_order_reference(),
            status=PurchaseStatusEnum.PENDING,
        )
        self._session.add(purchase)
        await self._session.commit()
        logger.info(
            "Purchase recorded",
            purchase_id=str(purchase.id),
            user_id=str(user_id),
            amount=str(amount),
        )
        return purchase

    async def complete_purchase(self, purchase_id: UUID) -> Purchase:
        """Mark a pending purchase completed, commit, then dispatch the completion signal.

        A dispatch failure is logged and re-raised; the purchase stays completed
        and the unprocessed purchase sweep enqueues it later.
        """

        purchase = await self._session.get(Purchase, purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        if purchase.status != PurchaseStatusEnum.PENDING:
            raise PurchaseStateError(purchase_id, purchase.status, PurchaseStatusEnum.COMPLETED)

        purchase.status = PurchaseStatusEnum.COMPLETED
        purchase.completed_at = datetime.now(timezone.utc)
        await self._session.commit()

        try:
            self._dispatcher(purchase_id)
        except Exception as exc:
            logger.error(
                "Failed to enqueue loyalty processing for completed purchase",
                purchase_id=str(purchase_id),
                error=str(exc),
            )
            raise
        return purchase


__all__ = [
    "CompletionDispatcher",
    "PurchaseService",
    "dispatch_purchase_completed",
    "generate_order_reference",
]
