"""Jobs that re-attempt failed cashback transfers."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from loguru import logger

from rewards_api.core.settings import settings
from rewards_api.models.cashback import CashbackTransaction, CashbackTransactionStatusEnum
from rewards_api.services.cashback.cashback_service import CashbackPaymentService
from rewards_api.services.cashback.errors import CashbackTransactionNotFoundError
from rewards_api.services.cashback.providers import PaymentProvider

from .common import SessionFactory, open_session


async def retry_cashback_transaction(
    *,
    session_factory: SessionFactory,
    transaction_id: UUID,
    provider: PaymentProvider | None = None,
) -> Dict[str, Any]:
    session = await open_session(session_factory)
    async with session as managed_session:
        transaction = await managed_session.get(CashbackTransaction, transaction_id)
        if transaction is None:
            raise CashbackTransactionNotFoundError(transaction_id)

        service = CashbackPaymentService(managed_session, provider)
        previous_status = transaction.status
        succeeded = await service.retry(transaction)
        summary = {
            "transaction_id": str(transaction_id),
            "previous_status": previous_status.value,
            "status": transaction.status.value,
            "attempts": transaction.attempts,
            "succeeded": succeeded,
            "skipped": previous_status != CashbackTransactionStatusEnum.FAILED,
        }
        logger.bind(summary=summary).info("Cashback retry finished")
        return summary


async def retry_failed_cashback(
    *,
    session_factory: SessionFactory,
    limit: int | None = None,
    max_attempts: int | None = None,
    provider: PaymentProvider | None = None,
) -> Dict[str, int]:
    """Sweep failed transactions below the attempt ceiling, oldest first."""

    session = await open_session(session_factory)
    async with session as managed_session:
        service = CashbackPaymentService(managed_session, provider)
        candidates = await service.list_retryable(
            limit=limit or settings.cashback_retry_batch_size,
            max_attempts=max_attempts or settings.cashback_retry_max_attempts,
        )
        summary = {"processed": 0, "succeeded": 0, "failed": 0}
        for transaction in candidates:
            summary["processed"] += 1
            if await service.retry(transaction):
                summary["succeeded"] += 1
            else:
                summary["failed"] += 1

        if summary["processed"]:
            logger.bind(summary=summary).info("Failed cashback sweep completed")
        else:
            logger.info("No failed cashback transactions ready for retry")
        return summary
