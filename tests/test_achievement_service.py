"""Tests for achievement progress tracking and unlocking."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from rewards_api.models.loyalty import (
    AchievementTypeEnum,
    LoyaltyEvent,
    LoyaltyEventTypeEnum,
    UserAchievement,
)
from rewards_api.services.loyalty import AchievementService, advance_progress


async def _progress_row(session, user_id, achievement_id) -> UserAchievement:
    stmt = select(UserAchievement).where(
        UserAchievement.user_id == user_id,
        UserAchievement.achievement_id == achievement_id,
    )
    return (await session.execute(stmt)).scalar_one()


async def _unlock_event_count(session, user_id) -> int:
    stmt = select(func.count(LoyaltyEvent.id)).where(
        LoyaltyEvent.user_id == user_id,
        LoyaltyEvent.event_type == LoyaltyEventTypeEnum.ACHIEVEMENT_UNLOCKED,
    )
    return int(await session.scalar(stmt) or 0)


@pytest.mark.asyncio
async def test_fifth_purchase_unlocks_purchase_count_achievement(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        achievement = await factory.achievement(session, name="Loyal Shopper", target=5, points=50)
        await session.commit()

        service = AchievementService(session)
        for index in range(1, 6):
            purchase = await factory.purchase(session, user)
            await session.commit()
            unlocked = await service.evaluate(user, purchase)
            if index < 5:
                assert unlocked == []
            else:
                assert [item.achievement.id for item in unlocked] == [achievement.id]

        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("5")
        assert row.unlocked_at is not None
        assert user.total_points == 50
        assert await _unlock_event_count(session, user.id) == 1


@pytest.mark.asyncio
async def test_new_achievement_seeds_progress_from_history(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        for _ in range(4):
            await factory.purchase(session, user, processed=True)
        achievement = await factory.achievement(session, name="Fifth Order", target=5)
        current = await factory.purchase(session, user)
        await session.commit()

        unlocked = await AchievementService(session).evaluate(user, current)

        assert [item.achievement.id for item in unlocked] == [achievement.id]
        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("5")


@pytest.mark.asyncio
async def test_queued_purchases_are_not_counted_twice(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        orders = await factory.achievement(session, name="Third Order", target=3)
        spending = await factory.achievement(
            session,
            name="Spender",
            type=AchievementTypeEnum.SPENDING,
            target=2500,
        )
        first = await factory.purchase(session, user, amount="1000.00")
        second = await factory.purchase(session, user, amount="1000.00")
        await session.commit()
        service = AchievementService(session)

        assert await service.evaluate(user, first) == []
        assert await service.evaluate(user, second) == []

        order_row = await _progress_row(session, user.id, orders.id)
        assert order_row.progress == Decimal("2")
        assert order_row.unlocked_at is None
        spending_row = await _progress_row(session, user.id, spending.id)
        assert spending_row.progress == Decimal("2000.00")
        assert spending_row.unlocked_at is None

        third = await factory.purchase(session, user, amount="1000.00")
        await session.commit()
        unlocked = await service.evaluate(user, third)

        assert {item.achievement.id for item in unlocked} == {orders.id, spending.id}


@pytest.mark.asyncio
async def test_spending_achievement_accumulates_amounts(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        achievement = await factory.achievement(
            session,
            name="Big Spender",
            type=AchievementTypeEnum.SPENDING,
            target=5000,
            points=25,
        )
        await session.commit()
        service = AchievementService(session)

        first = await factory.purchase(session, user, amount="3000.00")
        await session.commit()
        assert await service.evaluate(user, first) == []

        second = await factory.purchase(session, user, amount="2500.00")
        await session.commit()
        unlocked = await service.evaluate(user, second)

        assert [item.achievement.id for item in unlocked] == [achievement.id]
        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("5500.00")


@pytest.mark.asyncio
async def test_non_positive_target_unlocks_on_first_evaluation(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        achievement = await factory.achievement(
            session,
            name="Welcome",
            type=AchievementTypeEnum.REFERRAL,
            target=0,
            points=5,
        )
        purchase = await factory.purchase(session, user)
        await session.commit()

        unlocked = await AchievementService(session).evaluate(user, purchase)

        assert [item.achievement.id for item in unlocked] == [achievement.id]
        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("0")
        assert user.total_points == 5


@pytest.mark.asyncio
async def test_unlocked_achievement_is_not_reevaluated(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        achievement = await factory.achievement(session, name="First Purchase", target=1, points=10)
        await session.commit()
        service = AchievementService(session)

        first = await factory.purchase(session, user)
        await session.commit()
        assert len(await service.evaluate(user, first)) == 1
        unlocked_at = (await _progress_row(session, user.id, achievement.id)).unlocked_at

        for _ in range(3):
            purchase = await factory.purchase(session, user)
            await session.commit()
            assert await service.evaluate(user, purchase) == []

        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("1")
        assert row.unlocked_at == unlocked_at
        assert user.total_points == 10
        assert await _unlock_event_count(session, user.id) == 1


@pytest.mark.asyncio
async def test_repeated_evaluation_of_same_purchase_does_not_double_count(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        achievement = await factory.achievement(session, name="Regular", target=3)
        purchase = await factory.purchase(session, user)
        await session.commit()
        service = AchievementService(session)

        await service.evaluate(user, purchase)
        await service.evaluate(user, purchase)

        row = await _progress_row(session, user.id, achievement.id)
        assert row.progress == Decimal("1")
        assert row.unlocked_at is None


@pytest.mark.asyncio
async def test_inactive_achievements_are_ignored(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        await factory.achievement(session, name="Retired", target=1, is_active=False)
        purchase = await factory.purchase(session, user)
        await session.commit()

        assert await AchievementService(session).evaluate(user, purchase) == []
        count = await session.scalar(select(func.count(UserAchievement.id)))
        assert count == 0


@pytest.mark.asyncio
async def test_failure_rolls_back_progress(session_factory, factory, monkeypatch) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        await factory.achievement(session, name="First Purchase", target=1)
        purchase = await factory.purchase(session, user)
        await session.commit()
        user_id = user.id

        service = AchievementService(session)

        async def _boom(user_id):
            raise RuntimeError("points recompute failed")

        monkeypatch.setattr(service, "_sum_unlocked_points", _boom)

        with pytest.raises(RuntimeError, match="points recompute failed"):
            await service.evaluate(user, purchase)

    async with session_factory() as session:
        rows = await session.scalar(select(func.count(UserAchievement.id)))
        events = await _unlock_event_count(session, user_id)
        assert rows == 0
        assert events == 0


@pytest.mark.asyncio
async def test_progress_queries_report_percentages(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        starter = await factory.achievement(session, name="Starter", target=1, points=5)
        regular = await factory.achievement(session, name="Regular", target=4, points=20)
        purchase = await factory.purchase(session, user)
        await session.commit()
        service = AchievementService(session)
        await service.evaluate(user, purchase)

        progress = {item.achievement_id: item for item in await service.list_achievement_progress(user)}
        assert progress[starter.id].unlocked is True
        assert progress[starter.id].percentage == Decimal("100")
        assert progress[regular.id].unlocked is False
        assert progress[regular.id].current == Decimal("1")
        assert progress[regular.id].percentage == Decimal("25.00")

        recent = await service.list_recently_unlocked(user)
        assert [item.achievement.id for item in recent] == [starter.id]

        summary = await service.achievement_summary(user)
        assert summary.total_achievements == 2
        assert summary.unlocked_achievements == 1
        assert summary.locked_achievements == 1
        assert summary.completion_percentage == Decimal("50.00")


def test_advance_progress_dispatches_on_type() -> None:
    class _Purchase:
        amount = Decimal("120.50")

    purchase = _Purchase()
    assert advance_progress(AchievementTypeEnum.PURCHASE, Decimal("2"), purchase) == Decimal("3")
    assert advance_progress(AchievementTypeEnum.SPENDING, Decimal("10"), purchase) == Decimal("130.50")
    for passive in (AchievementTypeEnum.REFERRAL, AchievementTypeEnum.REVIEW, AchievementTypeEnum.STREAK):
        assert advance_progress(passive, Decimal("4"), purchase) == Decimal("4")
    with pytest.raises(ValueError):
        advance_progress("loyalty", Decimal("0"), purchase)
