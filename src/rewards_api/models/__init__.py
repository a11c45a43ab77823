"""SQLAlchemy models package."""

from .cashback import CashbackTransaction, CashbackTransactionStatusEnum  # noqa: F401
from .loyalty import (  # noqa: F401
    Achievement,
    AchievementTierEnum,
    AchievementTypeEnum,
    Badge,
    BadgeLevel,
    LoyaltyEvent,
    LoyaltyEventStatusEnum,
    LoyaltyEventTypeEnum,
    LoyaltyPipelineRun,
    PipelineRunStatusEnum,
    UserAchievement,
    UserBadge,
)
from .purchase import Purchase, PurchaseStatusEnum  # noqa: F401
from .user import User  # noqa: F401
