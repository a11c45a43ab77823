"""Badge tier evaluation and awarding."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.loyalty import (
    Achievement,
    Badge,
    LoyaltyEventTypeEnum,
    UserAchievement,
    UserBadge,
)
from rewards_api.models.user import User

from .events import record_loyalty_event

HUNDRED = Decimal("100")


@dataclass(slots=True)
class AwardedBadge:
    """Badge awarded during one evaluation."""

    badge: Badge
    earned_at: datetime
    promoted: bool


@dataclass(slots=True)
class UnlockedTotals:
    points: int
    achievements: int


@dataclass(slots=True)
class BadgeProgress:
    badge_id: UUID
    name: str
    description: str | None
    level: int
    icon: str | None
    color: str | None
    benefits: list[Any]
    points_required: int
    achievements_required: int
    points_current: int
    achievements_current: int
    points_percentage: Decimal
    achievements_percentage: Decimal
    overall_percentage: Decimal
    earned: bool
    is_current: bool


@dataclass(slots=True)
class BadgeHistoryEntry:
    badge_id: UUID
    name: str
    level: int
    icon: str | None
    earned_at: datetime
    is_current: bool


@dataclass(slots=True)
class BadgeSummary:
    current_badge: Badge | None
    next_badge: Badge | None
    next_badge_progress: BadgeProgress | None
    total_badges_earned: int


def _requirement_percentage(current: int, required: int) -> Decimal:
    if required <= 0:
        return HUNDRED
    return min(HUNDRED, (Decimal(current) / Decimal(required) * HUNDRED).quantize(Decimal("0.01")))


def meets_requirements(badge: Badge, totals: UnlockedTotals) -> bool:
    """Both thresholds must hold; zero thresholds are trivially met."""

    return totals.points >= (badge.points_required or 0) and totals.achievements >= (
        badge.achievements_required or 0
    )


class BadgeService:
    """Award tier badges from unlocked achievement totals."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def evaluate(self, user: User) -> list[AwardedBadge]:
        """Award every satisfied, unearned badge in ascending level order.

        A newly earned badge becomes current when the user has none or it
        outranks the current one, so the highest award wins.
        """

        user_id = user.id
        now = datetime.now(timezone.utc)
        awarded: list[AwardedBadge] = []

        try:
            await self._lock_user(user_id)
            totals = await self.unlocked_totals(user_id)
            current_level = await self._current_level(user)

            for badge in await self._fetch_unearned_badges(user_id):
                if not meets_requirements(badge, totals):
                    continue

                row = UserBadge(user_id=user_id, badge_id=badge.id, earned_at=now, is_current=False)
                self._session.add(row)
                promoted = current_level is None or badge.level > current_level
                if promoted:
                    await self._session.flush()
                    await self._session.execute(
                        update(UserBadge).where(UserBadge.user_id == user_id).values(is_current=False)
                    )
                    row.is_current = True
                    user.current_badge_id = badge.id
                    current_level = badge.level

                record_loyalty_event(
                    self._session,
                    event_type=LoyaltyEventTypeEnum.BADGE_UNLOCKED,
                    user_id=user_id,
                    subject_id=badge.id,
                    payload={"badge_name": badge.name, "level": badge.level, "promoted": promoted},
                )
                awarded.append(AwardedBadge(badge=badge, earned_at=now, promoted=promoted))
                logger.info(
                    "Badge awarded",
                    user_id=str(user_id),
                    badge_id=str(badge.id),
                    badge_name=badge.name,
                    level=badge.level,
                    promoted=promoted,
                )

            await self._session.commit()
        except Exception as exc:
            await self._session.rollback()
            logger.error("Failed to check and award badges", user_id=str(user_id), error=str(exc))
            raise

        return awarded

    async def unlocked_totals(self, user_id: UUID) -> UnlockedTotals:
        stmt = (
            select(
                func.coalesce(func.sum(Achievement.points), 0),
                func.count(UserAchievement.id),
            )
            .select_from(UserAchievement)
            .join(Achievement, Achievement.id == UserAchievement.achievement_id)
            .where(UserAchievement.user_id == user_id, UserAchievement.unlocked_at.is_not(None))
        )
        points, count = (await self._session.execute(stmt)).one()
        return UnlockedTotals(points=int(points or 0), achievements=int(count or 0))

    async def current_badge(self, user: User) -> Badge | None:
        if user.current_badge_id is None:
            return None
        return await self._session.get(Badge, user.current_badge_id)

    async def get_next_badge(self, user: User) -> Badge | None:
        """Lowest active badge above the user's current level."""

        current = await self.current_badge(user)
        current_level = current.level if current is not None else 0
        stmt = (
            select(Badge)
            .where(Badge.is_active.is_(True), Badge.level > current_level)
            .order_by(Badge.level.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def list_badge_progress(self, user: User) -> list[BadgeProgress]:
        totals = await self.unlocked_totals(user.id)
        earned_ids = await self._earned_badge_ids(user.id)
        stmt = select(Badge).where(Badge.is_active.is_(True)).order_by(Badge.level.asc())
        badges = (await self._session.execute(stmt)).scalars().all()
        return [self._progress_for(badge, totals, earned_ids, user.current_badge_id) for badge in badges]

    async def list_badge_history(self, user: User) -> list[BadgeHistoryEntry]:
        stmt = (
            select(Badge, UserBadge)
            .join(UserBadge, UserBadge.badge_id == Badge.id)
            .where(UserBadge.user_id == user.id)
            .order_by(UserBadge.earned_at.desc(), Badge.level.desc())
        )
        result = await self._session.execute(stmt)
        return [
            BadgeHistoryEntry(
                badge_id=badge.id,
                name=badge.name,
                level=badge.level,
                icon=badge.icon,
                earned_at=row.earned_at,
                is_current=bool(row.is_current),
            )
            for badge, row in result.all()
        ]

    async def badge_summary(self, user: User) -> BadgeSummary:
        current = await self.current_badge(user)
        next_badge = await self.get_next_badge(user)
        next_progress = None
        if next_badge is not None:
            totals = await self.unlocked_totals(user.id)
            earned_ids = await self._earned_badge_ids(user.id)
            next_progress = self._progress_for(next_badge, totals, earned_ids, user.current_badge_id)
        total_earned = await self._session.scalar(
            select(func.count(UserBadge.id)).where(UserBadge.user_id == user.id)
        )
        return BadgeSummary(
            current_badge=current,
            next_badge=next_badge,
            next_badge_progress=next_progress,
            total_badges_earned=int(total_earned or 0),
        )

    @staticmethod
    def _progress_for(
        badge: Badge,
        totals: UnlockedTotals,
        earned_ids: set[UUID],
        current_badge_id: UUID | None,
    ) -> BadgeProgress:
        points_pct = _requirement_percentage(totals.points, badge.points_required or 0)
        achievements_pct = _requirement_percentage(totals.achievements, badge.achievements_required or 0)
        overall = min(HUNDRED, ((points_pct + achievements_pct) / 2).quantize(Decimal("0.01")))
        return BadgeProgress(
            badge_id=badge.id,
            name=badge.name,
            description=badge.description,
            level=badge.level,
            icon=badge.icon,
            color=badge.color,
            benefits=list(badge.benefits or []),
            points_required=badge.points_required or 0,
            achievements_required=badge.achievements_required or 0,
            points_current=totals.points,
            achievements_current=totals.achievements,
            points_percentage=points_pct,
            achievements_percentage=achievements_pct,
            overall_percentage=overall,
            earned=badge.id in earned_ids,
            is_current=badge.id == current_badge_id,
        )

    async def _lock_user(self, user_id: UUID) -> None:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        await self._session.execute(stmt)

    async def _current_level(self, user: User) -> int | None:
        current = await self.current_badge(user)
        return current.level if current is not None else None

    async def _earned_badge_ids(self, user_id: UUID) -> set[UUID]:
        result = await self._session.execute(select(UserBadge.badge_id).where(UserBadge.user_id == user_id))
        return set(result.scalars().all())

    async def _fetch_unearned_badges(self, user_id: UUID) -> Sequence[Badge]:
        earned = select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
        stmt = (
            select(Badge)
            .where(Badge.is_active.is_(True), Badge.id.not_in(earned))
            .order_by(Badge.level.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()


__all__ = [
    "AwardedBadge",
    "BadgeHistoryEntry",
    "BadgeProgress",
    "BadgeService",
    "BadgeSummary",
    "UnlockedTotals",
    "meets_requirements",
]
