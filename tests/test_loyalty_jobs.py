"""Tests for the loyalty job entrypoints."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from rewards_api.jobs.loyalty import (
    abandon_purchase_rewards,
    dispatch_loyalty_events,
    process_purchase_rewards,
    requeue_unprocessed_purchases,
    retry_cashback_transaction,
    retry_failed_cashback,
)
from rewards_api.models.cashback import CashbackTransaction, CashbackTransactionStatusEnum
from rewards_api.models.loyalty import LoyaltyPipelineRun, PipelineRunStatusEnum
from rewards_api.models.purchase import PurchaseStatusEnum
from rewards_api.models.user import User
from rewards_api.services.cashback import CashbackTransactionNotFoundError
from rewards_api.services.cashback.providers import MockPaymentProvider
from rewards_api.services.notifications import InMemoryEmailBackend, NotificationService


async def _seed_purchase(session_factory, factory, *, amount: str = "1000.00"):
    async with session_factory() as session:
        user = await factory.user(session)
        await factory.achievement(session, name="First Purchase", target=1, points=10)
        purchase = await factory.purchase(session, user, amount=amount)
        await session.commit()
        return user.id, purchase.id


@pytest.mark.asyncio
async def test_process_purchase_rewards_job_returns_summary(
    session_factory, factory, mock_provider, lock_provider
) -> None:
    _, purchase_id = await _seed_purchase(session_factory, factory)

    summary = await process_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        triggered_by="unit-test",
        provider=mock_provider,
        lock_provider=lock_provider,
    )

    assert summary["purchase_id"] == str(purchase_id)
    assert summary["status"] == "completed"
    assert summary["achievements_unlocked"] == 1
    assert summary["cashback_status"] == "completed"
    assert summary["cashback_amount"] == "10.00"

    repeat = await process_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        provider=mock_provider,
        lock_provider=lock_provider,
    )
    assert repeat["status"] == "skipped"
    assert repeat["reason"] == "already_processed"


@pytest.mark.asyncio
async def test_abandon_job_records_abandoned_run(session_factory, factory) -> None:
    _, purchase_id = await _seed_purchase(session_factory, factory)

    summary = await abandon_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        error="retries exhausted",
    )

    assert summary["status"] == "abandoned"
    assert summary["attempt"] == 1
    async with session_factory() as session:
        run = (await session.execute(select(LoyaltyPipelineRun))).scalar_one()
        assert run.status == PipelineRunStatusEnum.ABANDONED
        assert run.error_message == "retries exhausted"


@pytest.mark.asyncio
async def test_retry_jobs_recover_failed_cashback(session_factory, factory, lock_provider) -> None:
    user_id, purchase_id = await _seed_purchase(session_factory, factory, amount="10000.00")

    failed = await process_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        provider=MockPaymentProvider(success_rate=0.0),
        lock_provider=lock_provider,
    )
    assert failed["cashback_status"] == "failed"

    sweep = await retry_failed_cashback(
        session_factory=session_factory,
        provider=MockPaymentProvider(success_rate=1.0),
    )
    assert sweep == {"processed": 1, "succeeded": 1, "failed": 0}

    async with session_factory() as session:
        transaction = (await session.execute(select(CashbackTransaction))).scalar_one()
        assert transaction.status == CashbackTransactionStatusEnum.COMPLETED
        user = await session.get(User, user_id)
        assert user.total_cashback == Decimal("200.00")
        transaction_id = transaction.id

    skipped = await retry_cashback_transaction(
        session_factory=session_factory,
        transaction_id=transaction_id,
        provider=MockPaymentProvider(success_rate=1.0),
    )
    assert skipped["skipped"] is True
    assert skipped["succeeded"] is False
    assert skipped["status"] == "completed"


@pytest.mark.asyncio
async def test_retry_single_transaction(session_factory, factory, lock_provider) -> None:
    _, purchase_id = await _seed_purchase(session_factory, factory)
    await process_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        provider=MockPaymentProvider(success_rate=0.0),
        lock_provider=lock_provider,
    )
    async with session_factory() as session:
        transaction_id = (await session.execute(select(CashbackTransaction.id))).scalar_one()

    summary = await retry_cashback_transaction(
        session_factory=session_factory,
        transaction_id=transaction_id,
        provider=MockPaymentProvider(success_rate=0.0),
    )

    assert summary["previous_status"] == "failed"
    assert summary["status"] == "failed"
    assert summary["attempts"] == 2
    assert summary["succeeded"] is False
    assert summary["skipped"] is False


@pytest.mark.asyncio
async def test_retry_missing_transaction_raises(session_factory) -> None:
    with pytest.raises(CashbackTransactionNotFoundError):
        await retry_cashback_transaction(
            session_factory=session_factory,
            transaction_id=uuid4(),
            provider=MockPaymentProvider(),
        )


@pytest.mark.asyncio
async def test_dispatch_job_drains_outbox(session_factory, factory, mock_provider, lock_provider) -> None:
    _, purchase_id = await _seed_purchase(session_factory, factory)
    await process_purchase_rewards(
        session_factory=session_factory,
        purchase_id=purchase_id,
        provider=mock_provider,
        lock_provider=lock_provider,
    )
    backend = InMemoryEmailBackend()

    summary = await dispatch_loyalty_events(
        session_factory=session_factory,
        notifications=NotificationService(backend),
    )

    assert summary == {"processed": 2, "dispatched": 2, "retrying": 0, "failed": 0}
    assert len(backend.sent_messages) == 2

    empty = await dispatch_loyalty_events(
        session_factory=session_factory,
        notifications=NotificationService(backend),
    )
    assert empty["processed"] == 0


@pytest.mark.asyncio
async def test_requeue_sweep_enqueues_only_stranded_purchases(session_factory, factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        user = await factory.user(session)
        stranded = await factory.purchase(session, user)
        recent = await factory.purchase(session, user)
        processed = await factory.purchase(session, user, processed=True)
        pending = await factory.purchase(session, user, status=PurchaseStatusEnum.PENDING)
        abandoned = await factory.purchase(session, user)
        for purchase in (stranded, processed, pending, abandoned):
            purchase.completed_at = now - timedelta(hours=1)
        recent.completed_at = now - timedelta(seconds=30)
        session.add(
            LoyaltyPipelineRun(
                purchase_id=abandoned.id,
                status=PipelineRunStatusEnum.ABANDONED,
                attempt=3,
                started_at=now - timedelta(minutes=50),
            )
        )
        await session.commit()
        stranded_id = stranded.id

    enqueued = []
    summary = await requeue_unprocessed_purchases(
        session_factory=session_factory,
        dispatcher=enqueued.append,
        older_than_seconds=600,
        now=now,
    )

    assert enqueued == [stranded_id]
    assert summary == {"candidates": 1, "enqueued": 1, "failed": 0}


@pytest.mark.asyncio
async def test_requeue_sweep_counts_dispatch_failures(session_factory, factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        user = await factory.user(session)
        purchase = await factory.purchase(session, user)
        purchase.completed_at = now - timedelta(hours=1)
        await session.commit()

    def broken_dispatcher(purchase_id):
        raise ConnectionError("broker unavailable")

    summary = await requeue_unprocessed_purchases(
        session_factory=session_factory,
        dispatcher=broken_dispatcher,
        older_than_seconds=600,
        now=now,
    )

    assert summary == {"candidates": 1, "enqueued": 0, "failed": 1}
