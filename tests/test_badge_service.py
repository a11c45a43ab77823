"""Tests for badge awarding and badge read queries."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from rewards_api.models.loyalty import LoyaltyEvent, LoyaltyEventTypeEnum, UserAchievement, UserBadge
from rewards_api.services.loyalty import BadgeService, UnlockedTotals, meets_requirements

TIERS = [
    ("Bronze", 1, 0, 0),
    ("Silver", 2, 20, 1),
    ("Gold", 3, 50, 2),
    ("Platinum", 4, 100, 3),
    ("Diamond", 5, 1000, 10),
]


async def _seed_tiers(session, factory) -> dict[int, object]:
    badges = {}
    for name, level, points, achievements in TIERS:
        badges[level] = await factory.badge(
            session,
            name=name,
            level=level,
            points_required=points,
            achievements_required=achievements,
        )
    return badges


async def _unlock(session, factory, user, *, points: int, name: str) -> None:
    achievement = await factory.achievement(session, name=name, points=points)
    session.add(
        UserAchievement(
            user_id=user.id,
            achievement_id=achievement.id,
            progress=Decimal("1"),
            unlocked_at=datetime.now(timezone.utc),
        )
    )
    await session.flush()


async def _current_badges(session, user_id) -> list[UserBadge]:
    stmt = select(UserBadge).where(UserBadge.user_id == user_id, UserBadge.is_current.is_(True))
    return list((await session.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_simultaneous_qualification_leaves_single_current_badge(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        badges = await _seed_tiers(session, factory)
        for index, points in enumerate((60, 50, 40)):
            await _unlock(session, factory, user, points=points, name=f"Milestone {index}")
        await session.commit()

        awarded = await BadgeService(session).evaluate(user)

        assert [item.badge.level for item in awarded] == [1, 2, 3, 4]
        current = await _current_badges(session, user.id)
        assert len(current) == 1
        assert current[0].badge_id == badges[4].id
        assert user.current_badge_id == badges[4].id

        events = await session.scalar(
            select(func.count(LoyaltyEvent.id)).where(
                LoyaltyEvent.event_type == LoyaltyEventTypeEnum.BADGE_UNLOCKED
            )
        )
        assert events == 4


@pytest.mark.asyncio
async def test_promotion_clears_previous_current_badge(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        badges = await _seed_tiers(session, factory)
        await _unlock(session, factory, user, points=25, name="Opening Act")
        await session.commit()
        service = BadgeService(session)

        first = await service.evaluate(user)
        assert [item.badge.level for item in first] == [1, 2]
        assert user.current_badge_id == badges[2].id

        await _unlock(session, factory, user, points=30, name="Encore")
        await session.commit()
        second = await service.evaluate(user)

        assert [(item.badge.level, item.promoted) for item in second] == [(3, True)]
        current = await _current_badges(session, user.id)
        assert [row.badge_id for row in current] == [badges[3].id]
        earned = await session.scalar(select(func.count(UserBadge.id)).where(UserBadge.user_id == user.id))
        assert earned == 3


@pytest.mark.asyncio
async def test_earned_badges_are_not_awarded_twice(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        await _seed_tiers(session, factory)
        await session.commit()
        service = BadgeService(session)

        assert [item.badge.level for item in await service.evaluate(user)] == [1]
        assert await service.evaluate(user) == []


@pytest.mark.asyncio
async def test_locked_achievements_do_not_count_towards_badges(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        await _seed_tiers(session, factory)
        pending = await factory.achievement(session, name="Almost", points=500)
        session.add(UserAchievement(user_id=user.id, achievement_id=pending.id, progress=Decimal("3")))
        await session.commit()
        service = BadgeService(session)

        totals = await service.unlocked_totals(user.id)
        assert totals == UnlockedTotals(points=0, achievements=0)
        assert [item.badge.level for item in await service.evaluate(user)] == [1]


@pytest.mark.asyncio
async def test_badge_read_queries(session_factory, factory) -> None:
    async with session_factory() as session:
        user = await factory.user(session)
        badges = await _seed_tiers(session, factory)
        await _unlock(session, factory, user, points=30, name="Opening Act")
        await session.commit()
        service = BadgeService(session)

        next_before = await service.get_next_badge(user)
        assert next_before.id == badges[1].id

        await service.evaluate(user)

        next_badge = await service.get_next_badge(user)
        assert next_badge.id == badges[3].id

        progress = {item.level: item for item in await service.list_badge_progress(user)}
        assert progress[1].earned is True
        assert progress[1].overall_percentage == Decimal("100")
        assert progress[2].is_current is True
        gold = progress[3]
        assert gold.earned is False
        assert gold.points_percentage == Decimal("60.00")
        assert gold.achievements_percentage == Decimal("50.00")
        assert gold.overall_percentage == Decimal("55.00")

        history = await service.list_badge_history(user)
        assert {entry.level for entry in history} == {1, 2}
        assert [entry.level for entry in history if entry.is_current] == [2]

        summary = await service.badge_summary(user)
        assert summary.current_badge.id == badges[2].id
        assert summary.next_badge.id == badges[3].id
        assert summary.next_badge_progress.overall_percentage == Decimal("55.00")
        assert summary.total_badges_earned == 2


def test_meets_requirements_checks_both_thresholds() -> None:
    class _Badge:
        points_required = 100
        achievements_required = 3

    assert meets_requirements(_Badge(), UnlockedTotals(points=100, achievements=3))
    assert not meets_requirements(_Badge(), UnlockedTotals(points=500, achievements=2))
    assert not meets_requirements(_Badge(), UnlockedTotals(points=99, achievements=10))
