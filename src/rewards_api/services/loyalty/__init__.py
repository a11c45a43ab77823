"""Loyalty service exports."""

from .achievements import (  # noqa: F401
    AchievementProgress,
    AchievementService,
    AchievementSummary,
    UnlockedAchievement,
    advance_progress,
    is_target_met,
)
from .badges import (  # noqa: F401
    AwardedBadge,
    BadgeHistoryEntry,
    BadgeProgress,
    BadgeService,
    BadgeSummary,
    UnlockedTotals,
    meets_requirements,
)
from .errors import LoyaltyError, PurchaseNotFoundError, UserNotFoundError  # noqa: F401
from .events import EventDispatchSummary, LoyaltyEventDispatcher, record_loyalty_event  # noqa: F401
from .locks import (  # noqa: F401
    LocalUserLockProvider,
    RedisUserLockProvider,
    UserLockProvider,
    UserLockTimeoutError,
    build_user_lock_provider,
)
