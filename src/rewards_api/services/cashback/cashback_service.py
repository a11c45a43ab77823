"""Cashback payment orchestration."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.models.cashback import CashbackTransaction, CashbackTransactionStatusEnum
from rewards_api.models.loyalty import Badge, LoyaltyEventTypeEnum
from rewards_api.models.purchase import Purchase
from rewards_api.models.user import User
from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.services.loyalty.events import record_loyalty_event

from .calculator import calculate_cashback
from .errors import CashbackError, CashbackTransactionNotFoundError, InvalidCashbackTransitionError
from .providers import PaymentProvider, TransferResult, build_payment_provider

_TERMINAL = {CashbackTransactionStatusEnum.COMPLETED, CashbackTransactionStatusEnum.FAILED}


@dataclass(slots=True)
class CashbackTransactionSnapshot:
    id: UUID
    amount: Decimal
    currency: str
    status: CashbackTransactionStatusEnum
    reference: str | None
    created_at: datetime | None
    processed_at: datetime | None


@dataclass(slots=True)
class CashbackSummary:
    """Aggregate cashback position for a user."""

    total_earned: Decimal
    pending: Decimal
    processing: Decimal
    completed: Decimal
    failed: Decimal
    transaction_count: int
    recent_transactions: list[CashbackTransactionSnapshot] = field(default_factory=list)


def provider_reference(transaction: CashbackTransaction) -> str:
    """Deterministic transfer reference reused when a transfer is resumed."""

    return f"CASHBACK_{transaction.id}"


class CashbackPaymentService:
    """Drive cashback transactions from pending to a terminal status."""

    _ALLOWED_TRANSITIONS: dict[CashbackTransactionStatusEnum, set[CashbackTransactionStatusEnum]] = {
        CashbackTransactionStatusEnum.PENDING: {
            CashbackTransactionStatusEnum.PROCESSING,
            CashbackTransactionStatusEnum.FAILED,
        },
        CashbackTransactionStatusEnum.PROCESSING: {
            CashbackTransactionStatusEnum.COMPLETED,
            CashbackTransactionStatusEnum.FAILED,
        },
        CashbackTransactionStatusEnum.FAILED: {
            CashbackTransactionStatusEnum.PROCESSING,
        },
        CashbackTransactionStatusEnum.COMPLETED: set(),
    }

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider | None = None,
        *,
        transfer_timeout_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._provider = provider or build_payment_provider()
        self._timeout_seconds = transfer_timeout_seconds or settings.cashback_transfer_timeout_seconds

    @property
    def provider(self) -> PaymentProvider:
        return self._provider

    async def calculate(self, purchase: Purchase, user: User) -> Decimal:
        badge_level = None
        if user.current_badge_id is not None:
            badge = await self._session.get(Badge, user.current_badge_id)
            badge_level = badge.level if badge is not None else None
        return calculate_cashback(purchase.amount, badge_level)

    async def process(self, purchase: Purchase) -> CashbackTransaction:
        """Pay cashback for ``purchase``; the returned transaction is always terminal.

        A purchase owns at most one transaction. Terminal rows are returned
        untouched and interrupted rows are resumed with the same reference.
        Provider failures are recorded, not raised.
        """

        purchase_id = purchase.id
        user = await self._session.get(User, purchase.user_id)
        if user is None:
            raise CashbackError(f"User {purchase.user_id} not found for purchase {purchase_id}")

        transaction = await self._find_for_purchase(purchase_id)
        if transaction is None:
            transaction = await self._create_pending(purchase, user)

        if transaction.status in _TERMINAL:
            logger.info(
                "Cashback already settled for purchase",
                purchase_id=str(purchase_id),
                transaction_id=str(transaction.id),
                status=transaction.status.value,
            )
            return transaction

        resumed = transaction.status == CashbackTransactionStatusEnum.PROCESSING
        if not resumed:
            self._transition(transaction, CashbackTransactionStatusEnum.PROCESSING)
        transaction.attempts = (transaction.attempts or 0) + 1
        await self._session.commit()
        if resumed:
            logger.warning(
                "Resuming interrupted cashback transfer",
                purchase_id=str(purchase_id),
                transaction_id=str(transaction.id),
                attempts=transaction.attempts,
            )

        if Decimal(str(transaction.amount)) <= 0:
            await self._settle_without_transfer(transaction)
            return transaction

        metadata = {
            "transaction_id": str(transaction.id),
            "purchase_id": str(purchase_id),
            "description": f"Cashback for purchase #{purchase.order_reference or purchase_id}",
        }
        result = await self._transfer(user, transaction, metadata)
        await self._settle(transaction, user, result, retry=False)
        return transaction

    async def retry(self, transaction: CashbackTransaction) -> bool:
        """Re-attempt a failed transfer; any other status is left alone.

        The row is re-read under a lock so concurrent sweeps and queued retries
        cannot both pick up the same failure.
        """

        await self._lock_transaction(transaction.id)
        if transaction.status != CashbackTransactionStatusEnum.FAILED:
            return False

        user = await self._session.get(User, transaction.user_id)
        if user is None:
            raise CashbackError(f"User {transaction.user_id} not found for transaction {transaction.id}")

        self._transition(transaction, CashbackTransactionStatusEnum.PROCESSING)
        transaction.error_message = None
        transaction.attempts = (transaction.attempts or 0) + 1
        await self._session.commit()
        if Decimal(str(transaction.amount)) <= 0:
            await self._settle_without_transfer(transaction)
            return True

        logger.info(
            "Retrying cashback payment",
            transaction_id=str(transaction.id),
            attempt=transaction.attempts,
        )
        metadata = {
            "transaction_id": str(transaction.id),
            "purchase_id": str(transaction.purchase_id) if transaction.purchase_id else None,
            "retry": True,
        }
        result = await self._transfer(user, transaction, metadata)
        await self._settle(transaction, user, result, retry=True)
        return transaction.status == CashbackTransactionStatusEnum.COMPLETED

    async def retry_by_id(self, transaction_id: UUID) -> bool:
        transaction = await self._session.get(CashbackTransaction, transaction_id)
        if transaction is None:
            raise CashbackTransactionNotFoundError(transaction_id)
        return await self.retry(transaction)

    async def list_retryable(self, *, limit: int = 25, max_attempts: int | None = None) -> Sequence[CashbackTransaction]:
        ceiling = max_attempts or settings.cashback_retry_max_attempts
        stmt = (
            select(CashbackTransaction)
            .where(
                CashbackTransaction.status == CashbackTransactionStatusEnum.FAILED,
                CashbackTransaction.attempts < ceiling,
            )
            .order_by(CashbackTransaction.created_at.asc(), CashbackTransaction.id.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def cashback_summary(self, user: User) -> CashbackSummary:
        totals_stmt = (
            select(
                CashbackTransaction.status,
                func.coalesce(func.sum(CashbackTransaction.amount), 0),
                func.count(CashbackTransaction.id),
            )
            .where(CashbackTransaction.user_id == user.id)
            .group_by(CashbackTransaction.status)
        )
        sums = {status: Decimal("0") for status in CashbackTransactionStatusEnum}
        count = 0
        for status, amount, status_count in (await self._session.execute(totals_stmt)).all():
            sums[status] = Decimal(str(amount)).quantize(Decimal("0.01"))
            count += int(status_count)

        recent_stmt = (
            select(CashbackTransaction)
            .where(CashbackTransaction.user_id == user.id)
            .order_by(CashbackTransaction.created_at.desc(), CashbackTransaction.id.desc())
            .limit(10)
        )
        recent = (await self._session.execute(recent_stmt)).scalars().all()

        return CashbackSummary(
            total_earned=Decimal(str(user.total_cashback or 0)),
            pending=sums[CashbackTransactionStatusEnum.PENDING],
            processing=sums[CashbackTransactionStatusEnum.PROCESSING],
            completed=sums[CashbackTransactionStatusEnum.COMPLETED],
            failed=sums[CashbackTransactionStatusEnum.FAILED],
            transaction_count=count,
            recent_transactions=[
                CashbackTransactionSnapshot(
                    id=item.id,
                    amount=Decimal(str(item.amount)),
                    currency=item.currency,
                    status=item.status,
                    reference=item.reference,
                    created_at=item.created_at,
                    processed_at=item.processed_at,
                )
                for item in recent
            ],
        )

    def _transition(
        self,
        transaction: CashbackTransaction,
        new_status: CashbackTransactionStatusEnum,
    ) -> None:
        current = transaction.status
        if new_status not in self._ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidCashbackTransitionError(current, new_status)
        transaction.status = new_status

    async def _find_for_purchase(self, purchase_id: UUID) -> CashbackTransaction | None:
        stmt = select(CashbackTransaction).where(CashbackTransaction.purchase_id == purchase_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_pending(self, purchase: Purchase, user: User) -> CashbackTransaction:
        amount = await self.calculate(purchase, user)
        transaction = CashbackTransaction(
            user_id=user.id,
            purchase_id=purchase.id,
            amount=amount,
            currency=(purchase.currency or settings.default_currency).upper(),
            status=CashbackTransactionStatusEnum.PENDING,
            provider=self._provider.name,
            attempts=0,
        )
        self._session.add(transaction)
        try:
            await self._session.commit()
        except IntegrityError:
            # Another run created the row first.
            await self._session.rollback()
            existing = await self._find_for_purchase(purchase.id)
            if existing is None:
                raise
            return existing
        return transaction

    async def _transfer(
        self,
        user: User,
        transaction: CashbackTransaction,
        metadata: Mapping[str, Any],
    ) -> TransferResult:
        payload = {**metadata, "reference": provider_reference(transaction)}
        amount = Decimal(str(transaction.amount))
        try:
            return await asyncio.wait_for(
                self._provider.transfer(user, amount, transaction.currency, payload),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            return TransferResult(
                success=False,
                error=f"Provider timed out after {self._timeout_seconds:g}s",
            )
        except Exception as exc:
            logger.error(
                "Cashback payment exception",
                transaction_id=str(transaction.id),
                user_id=str(user.id),
                error=str(exc),
            )
            return TransferResult(success=False, error=str(exc) or exc.__class__.__name__)

    async def _settle(
        self,
        transaction: CashbackTransaction,
        user: User,
        result: TransferResult,
        *,
        retry: bool,
    ) -> None:
        now = datetime.now(timezone.utc)
        store = get_loyalty_store()
        transaction.provider_response = dict(result.raw_response or {})
        transaction.processed_at = now

        if result.success:
            self._transition(transaction, CashbackTransactionStatusEnum.COMPLETED)
            transaction.reference = result.reference
            transaction.error_message = None
            await self._lock_user(user.id)
            user.total_cashback = Decimal(str(user.total_cashback or 0)) + Decimal(str(transaction.amount))
            record_loyalty_event(
                self._session,
                event_type=LoyaltyEventTypeEnum.CASHBACK_PROCESSED,
                user_id=user.id,
                subject_id=transaction.id,
                payload={"amount": str(transaction.amount), "reference": result.reference, "retry": retry},
            )
            await self._session.commit()
            store.record_cashback_outcome("completed", retry=retry)
            logger.info(
                "Cashback payment successful",
                transaction_id=str(transaction.id),
                user_id=str(user.id),
                amount=str(transaction.amount),
                reference=result.reference,
                retry=retry,
            )
            return

        self._transition(transaction, CashbackTransactionStatusEnum.FAILED)
        transaction.error_message = result.error or ("Retry failed" if retry else "Unknown error")
        record_loyalty_event(
            self._session,
            event_type=LoyaltyEventTypeEnum.CASHBACK_FAILED,
            user_id=user.id,
            subject_id=transaction.id,
            payload={"amount": str(transaction.amount), "error": transaction.error_message, "retry": retry},
        )
        await self._session.commit()
        store.record_cashback_outcome("failed", retry=retry)
        logger.error(
            "Cashback payment failed",
            transaction_id=str(transaction.id),
            user_id=str(user.id),
            amount=str(transaction.amount),
            error=transaction.error_message,
            retry=retry,
        )

    async def _settle_without_transfer(self, transaction: CashbackTransaction) -> None:
        """Complete a zero-amount transaction; nothing is paid and no event is recorded."""

        self._transition(transaction, CashbackTransactionStatusEnum.COMPLETED)
        transaction.reference = provider_reference(transaction)
        transaction.error_message = None
        transaction.provider_response = {"skipped": "zero_amount"}
        transaction.processed_at = datetime.now(timezone.utc)
        await self._session.commit()
        get_loyalty_store().record_cashback_outcome("completed")
        logger.info(
            "Zero cashback settled without transfer",
            transaction_id=str(transaction.id),
            user_id=str(transaction.user_id),
        )

    async def _lock_transaction(self, transaction_id: UUID) -> None:
        stmt = (
            select(CashbackTransaction)
            .where(CashbackTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        await self._session.execute(stmt)

    async def _lock_user(self, user_id: UUID) -> None:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        await self._session.execute(stmt)


__all__ = [
    "CashbackPaymentService",
    "CashbackSummary",
    "CashbackTransactionSnapshot",
    "provider_reference",
]
