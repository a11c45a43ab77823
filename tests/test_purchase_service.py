import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from rewards_api.jobs.loyalty import requeue_unprocessed_purchases
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum
from rewards_api.services.loyalty import PurchaseNotFoundError
from rewards_api.services.purchases import PurchaseService, PurchaseStateError, generate_order_reference
from rewards_api.services.purchases import service as purchase_service


def test_order_reference_format():
    assert re.fullmatch(r"ORD-[0-9A-F]{8}-\d+", generate_order_reference())


@pytest.mark.asyncio
async def test_complete_purchase_dispatches_after_commit(session_factory, factory):
    dispatched = []

    async with session_factory() as session:
        user = await factory.user(session)
        await session.commit()
        service = PurchaseService(session, dispatcher=dispatched.append)

        purchase = await service.record_purchase(user_id=user.id, amount=Decimal("2500.00"))
        assert purchase.status == PurchaseStatusEnum.PENDING
        assert purchase.currency == "NGN"
        assert purchase.order_reference.startswith("ORD-")
        assert dispatched == []

        completed = await service.complete_purchase(purchase.id)

        assert completed.status == PurchaseStatusEnum.COMPLETED
        assert completed.completed_at is not None
        assert dispatched == [purchase.id]

        with pytest.raises(PurchaseStateError):
            await service.complete_purchase(purchase.id)
        assert dispatched == [purchase.id]


@pytest.mark.asyncio
async def test_complete_missing_purchase_raises(session_factory):
    async with session_factory() as session:
        with pytest.raises(PurchaseNotFoundError):
            await PurchaseService(session, dispatcher=lambda purchase_id: None).complete_purchase(uuid4())


def test_default_dispatcher_enqueues_celery_task(monkeypatch):
    enqueued = []
    monkeypatch.setattr(purchase_service.process_loyalty_rewards, "delay", lambda *args: enqueued.append(args))
    purchase_id = uuid4()

    purchase_service.dispatch_purchase_completed(purchase_id)

    assert enqueued == [(str(purchase_id),)]


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_purchase_completed_for_requeue(session_factory, factory):
    def broken_dispatcher(purchase_id):
        raise ConnectionError("broker unavailable")

    async with session_factory() as session:
        user = await factory.user(session)
        await session.commit()
        service = PurchaseService(session, dispatcher=broken_dispatcher)
        purchase = await service.record_purchase(user_id=user.id, amount=Decimal("2500.00"))
        purchase_id = purchase.id

        with pytest.raises(ConnectionError):
            await service.complete_purchase(purchase_id)

    async with session_factory() as session:
        stored = await session.get(Purchase, purchase_id)
        assert stored.status == PurchaseStatusEnum.COMPLETED
        assert stored.processed_for_loyalty is False

    enqueued = []
    summary = await requeue_unprocessed_purchases(
        session_factory=session_factory,
        dispatcher=enqueued.append,
        older_than_seconds=0,
        now=datetime.now(timezone.utc) + timedelta(seconds=1),
    )

    assert enqueued == [purchase_id]
    assert summary["enqueued"] == 1
