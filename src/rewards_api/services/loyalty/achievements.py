"""Achievement progress tracking and unlocking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.loyalty import (
    Achievement,
    AchievementTierEnum,
    AchievementTypeEnum,
    LoyaltyEventTypeEnum,
    UserAchievement,
)
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum
from rewards_api.models.user import User

from .events import record_loyalty_event

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(slots=True)
class UnlockedAchievement:
    """Achievement unlocked during one evaluation."""

    achievement: Achievement
    unlocked_at: datetime
    progress: Decimal


@dataclass(slots=True)
class AchievementProgress:
    """Per-achievement progress snapshot for a user."""

    achievement_id: UUID
    name: str
    description: str | None
    type: AchievementTypeEnum
    tier: AchievementTierEnum
    points: int
    icon: str | None
    current: Decimal
    required: Decimal
    percentage: Decimal
    unlocked: bool
    unlocked_at: datetime | None


@dataclass(slots=True)
class AchievementSummary:
    total_achievements: int
    unlocked_achievements: int
    locked_achievements: int
    completion_percentage: Decimal


def _as_decimal(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _percentage(current: Decimal, required: Decimal) -> Decimal:
    if required <= 0:
        return HUNDRED
    return min(HUNDRED, (current / required * HUNDRED).quantize(Decimal("0.01")))


def is_target_met(achievement: Achievement, progress: Decimal) -> bool:
    """Non-positive targets count as met on first evaluation."""

    target = _as_decimal(achievement.target)
    if target <= 0:
        return True
    return progress >= target


def advance_progress(achievement_type: AchievementTypeEnum, current: Decimal, purchase: Purchase) -> Decimal:
    """Return progress after applying ``purchase`` to ``current``."""

    if achievement_type == AchievementTypeEnum.PURCHASE:
        return current + 1
    if achievement_type == AchievementTypeEnum.SPENDING:
        return current + _as_decimal(purchase.amount)
    if achievement_type in (
        AchievementTypeEnum.REFERRAL,
        AchievementTypeEnum.REVIEW,
        AchievementTypeEnum.STREAK,
    ):
        return current
    raise ValueError(f"Unsupported achievement type {achievement_type}")


class AchievementService:
    """Evaluate purchases against the achievement catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def evaluate(self, user: User, purchase: Purchase) -> list[UnlockedAchievement]:
        """Advance progress for every locked achievement and unlock those now satisfied.

        Runs in a single transaction that is committed on success and rolled
        back (then re-raised) on failure.
        """

        user_id = user.id
        purchase_id = purchase.id
        now = datetime.now(timezone.utc)
        unlocked: list[UnlockedAchievement] = []

        try:
            await self._lock_user(user_id)
            candidates = await self._fetch_locked_achievements(user_id)
            rows = await self._fetch_progress_rows(user_id, [achievement.id for achievement in candidates])
            history: dict[AchievementTypeEnum, Decimal] = {}

            for achievement in candidates:
                row = rows.get(achievement.id)
                if row is None:
                    if achievement.type not in history:
                        history[achievement.type] = await self._derive_progress(
                            user_id, achievement.type, exclude_purchase_id=purchase_id
                        )
                    current = history[achievement.type]
                    row = UserAchievement(
                        user_id=user_id,
                        achievement_id=achievement.id,
                        progress=current,
                    )
                    self._session.add(row)
                else:
                    applied = (row.metadata_json or {}).get("purchase_id")
                    if applied == str(purchase_id):
                        # Progress for this purchase was committed by an earlier attempt.
                        continue
                    current = _as_decimal(row.progress)

                new_progress = max(advance_progress(achievement.type, current, purchase), current)
                row.progress = new_progress
                row.metadata_json = {
                    "purchase_id": str(purchase_id),
                    "last_updated": now.isoformat(),
                }

                if not is_target_met(achievement, new_progress):
                    continue

                row.unlocked_at = now
                row.metadata_json = {**row.metadata_json, "unlocked_at": now.isoformat()}
                await self._session.flush()
                user.total_points = await self._sum_unlocked_points(user_id)
                record_loyalty_event(
                    self._session,
                    event_type=LoyaltyEventTypeEnum.ACHIEVEMENT_UNLOCKED,
                    user_id=user_id,
                    subject_id=achievement.id,
                    payload={
                        "achievement_name": achievement.name,
                        "points": achievement.points,
                        "purchase_id": str(purchase_id),
                    },
                )
                unlocked.append(UnlockedAchievement(achievement=achievement, unlocked_at=now, progress=new_progress))
                logger.info(
                    "Achievement unlocked",
                    user_id=str(user_id),
                    achievement_id=str(achievement.id),
                    achievement_name=achievement.name,
                    points=achievement.points,
                )

            await self._session.commit()
        except Exception as exc:
            await self._session.rollback()
            logger.error(
                "Failed to process achievements for purchase",
                purchase_id=str(purchase_id),
                user_id=str(user_id),
                error=str(exc),
            )
            raise

        return unlocked

    async def list_achievement_progress(self, user: User) -> list[AchievementProgress]:
        stmt = (
            select(Achievement, UserAchievement)
            .outerjoin(
                UserAchievement,
                and_(
                    UserAchievement.achievement_id == Achievement.id,
                    UserAchievement.user_id == user.id,
                ),
            )
            .where(Achievement.is_active.is_(True))
            .order_by(Achievement.points.asc(), Achievement.name.asc())
        )
        result = await self._session.execute(stmt)
        progress: list[AchievementProgress] = []
        for achievement, row in result.all():
            current = _as_decimal(row.progress) if row is not None else ZERO
            required = _as_decimal(achievement.target)
            unlocked_at = row.unlocked_at if row is not None else None
            progress.append(
                AchievementProgress(
                    achievement_id=achievement.id,
                    name=achievement.name,
                    description=achievement.description,
                    type=achievement.type,
                    tier=achievement.tier,
                    points=achievement.points,
                    icon=achievement.icon,
                    current=current,
                    required=required,
                    percentage=HUNDRED if unlocked_at else _percentage(current, required),
                    unlocked=unlocked_at is not None,
                    unlocked_at=unlocked_at,
                )
            )
        return progress

    async def list_recently_unlocked(self, user: User, *, limit: int = 5) -> list[UnlockedAchievement]:
        stmt = (
            select(Achievement, UserAchievement)
            .join(UserAchievement, UserAchievement.achievement_id == Achievement.id)
            .where(UserAchievement.user_id == user.id, UserAchievement.unlocked_at.is_not(None))
            .order_by(UserAchievement.unlocked_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [
            UnlockedAchievement(
                achievement=achievement,
                unlocked_at=row.unlocked_at,
                progress=_as_decimal(row.progress),
            )
            for achievement, row in result.all()
        ]

    async def achievement_summary(self, user: User) -> AchievementSummary:
        total = await self._session.scalar(
            select(func.count(Achievement.id)).where(Achievement.is_active.is_(True))
        )
        unlocked = await self._session.scalar(
            select(func.count(UserAchievement.id))
            .join(Achievement, Achievement.id == UserAchievement.achievement_id)
            .where(
                UserAchievement.user_id == user.id,
                UserAchievement.unlocked_at.is_not(None),
                Achievement.is_active.is_(True),
            )
        )
        total = int(total or 0)
        unlocked = int(unlocked or 0)
        completion = (
            (Decimal(unlocked) / Decimal(total) * HUNDRED).quantize(Decimal("0.01")) if total else ZERO
        )
        return AchievementSummary(
            total_achievements=total,
            unlocked_achievements=unlocked,
            locked_achievements=total - unlocked,
            completion_percentage=completion,
        )

    async def _lock_user(self, user_id: UUID) -> None:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        await self._session.execute(stmt)

    async def _fetch_locked_achievements(self, user_id: UUID) -> Sequence[Achievement]:
        unlocked_ids = (
            select(UserAchievement.achievement_id)
            .where(UserAchievement.user_id == user_id, UserAchievement.unlocked_at.is_not(None))
        )
        stmt = (
            select(Achievement)
            .where(Achievement.is_active.is_(True), Achievement.id.not_in(unlocked_ids))
            .order_by(Achievement.id.asc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def _fetch_progress_rows(
        self, user_id: UUID, achievement_ids: Sequence[UUID]
    ) -> dict[UUID, UserAchievement]:
        if not achievement_ids:
            return {}
        stmt = select(UserAchievement).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id.in_(achievement_ids),
        )
        result = await self._session.execute(stmt)
        return {row.achievement_id: row for row in result.scalars().all()}

    async def _derive_progress(
        self,
        user_id: UUID,
        achievement_type: AchievementTypeEnum,
        *,
        exclude_purchase_id: UUID,
    ) -> Decimal:
        """Seed progress from purchases the pipeline already applied.

        Completed purchases still waiting in the queue are left out; they add
        their own increment when their run reaches this service.
        """

        filters = (
            Purchase.user_id == user_id,
            Purchase.status == PurchaseStatusEnum.COMPLETED,
            Purchase.processed_for_loyalty.is_(True),
            Purchase.id != exclude_purchase_id,
        )
        if achievement_type == AchievementTypeEnum.PURCHASE:
            count = await self._session.scalar(select(func.count(Purchase.id)).where(*filters))
            return Decimal(int(count or 0))
        if achievement_type == AchievementTypeEnum.SPENDING:
            total = await self._session.scalar(select(func.coalesce(func.sum(Purchase.amount), 0)).where(*filters))
            return _as_decimal(total)
        return ZERO

    async def _sum_unlocked_points(self, user_id: UUID) -> int:
        total = await self._session.scalar(
            select(func.coalesce(func.sum(Achievement.points), 0))
            .join(UserAchievement, UserAchievement.achievement_id == Achievement.id)
            .where(UserAchievement.user_id == user_id, UserAchievement.unlocked_at.is_not(None))
        )
        return int(total or 0)


__all__ = [
    "AchievementProgress",
    "AchievementService",
    "AchievementSummary",
    "UnlockedAchievement",
    "advance_progress",
    "is_target_met",
]
