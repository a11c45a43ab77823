"""Read-only loyalty overview combining achievements, badges and cashback."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.models.user import User
from rewards_api.services.cashback.cashback_service import CashbackPaymentService, CashbackSummary
from rewards_api.services.cashback.providers import PaymentProvider

from .achievements import AchievementProgress, AchievementService, AchievementSummary, UnlockedAchievement
from .badges import BadgeHistoryEntry, BadgeProgress, BadgeService, BadgeSummary
from .errors import UserNotFoundError


@dataclass(slots=True)
class LoyaltyOverview:
    """Serializable loyalty overview for clients."""

    user_id: UUID
    display_name: str | None
    email: str
    total_points: int
    total_cashback: Decimal
    achievement_progress: list[AchievementProgress]
    achievement_summary: AchievementSummary
    recently_unlocked: list[UnlockedAchievement]
    badge_progress: list[BadgeProgress]
    badge_history: list[BadgeHistoryEntry]
    badge_summary: BadgeSummary
    cashback: CashbackSummary


class LoyaltyOverviewService:
    def __init__(self, session: AsyncSession, *, provider: PaymentProvider | None = None) -> None:
        self._session = session
        self._achievements = AchievementService(session)
        self._badges = BadgeService(session)
        self._cashback = CashbackPaymentService(session, provider)

    async def get_overview(self, user_id: UUID) -> LoyaltyOverview:
        user = await self._session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        return LoyaltyOverview(
            user_id=user.id,
            display_name=user.display_name,
            email=user.email,
            total_points=int(user.total_points or 0),
            total_cashback=Decimal(str(user.total_cashback or 0)),
            achievement_progress=await self._achievements.list_achievement_progress(user),
            achievement_summary=await self._achievements.achievement_summary(user),
            recently_unlocked=await self._achievements.list_recently_unlocked(user),
            badge_progress=await self._badges.list_badge_progress(user),
            badge_history=await self._badges.list_badge_history(user),
            badge_summary=await self._badges.badge_summary(user),
            cashback=await self._cashback.cashback_summary(user),
        )


__all__ = ["LoyaltyOverview", "LoyaltyOverviewService"]
