"""Achievement, badge and reward-pipeline domain models."""

from __future__ import annotations

from enum import Enum, IntEnum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class AchievementTypeEnum(str, Enum):
    """Progress semantics of an achievement."""

    PURCHASE = "purchase"
    SPENDING = "spending"
    REFERRAL = "referral"
    REVIEW = "review"
    STREAK = "streak"


class AchievementTierEnum(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class BadgeLevel(IntEnum):
    """Known badge levels; level 0 means the user holds no badge."""

    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    PLATINUM = 4
    DIAMOND = 5


class Achievement(Base):
    """Catalog milestone with a progress target and point reward."""

    __tablename__ = "achievements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(SqlEnum(AchievementTypeEnum, name="achievement_type_enum"), nullable=False)
    criteria = Column(JSON, nullable=False, default=dict)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    tier = Column(
        SqlEnum(AchievementTierEnum, name="achievement_tier_enum"),
        nullable=False,
        default=AchievementTierEnum.BRONZE,
    )
    icon = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def target(self) -> int | float:
        criteria = self.criteria or {}
        target = criteria.get("target", 1)
        if target is None:
            return 1
        return target


class UserAchievement(Base):
    """Per-user progress toward an achievement; unlocked once ``unlocked_at`` is set."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = Column(
        UUID(as_uuid=True),
        ForeignKey("achievements.id", ondelete="CASCADE"),
        nullable=False,
    )
    progress = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    unlocked_at = Column(DateTime(timezone=True), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    achievement = relationship("Achievement")


class Badge(Base):
    """Tier gated by cumulative achievement points and unlock count."""

    __tablename__ = "badges"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    level = Column(Integer, nullable=False, unique=True)
    points_required = Column(Integer, nullable=False, default=0, server_default="0")
    achievements_required = Column(Integer, nullable=False, default=0, server_default="0")
    icon = Column(String, nullable=True)
    color = Column(String(16), nullable=True)
    benefits = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class UserBadge(Base):
    """Badge earned by a user; exactly one earned row per user is current."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    badge_id = Column(UUID(as_uuid=True), ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    earned_at = Column(DateTime(timezone=True), nullable=False)
    is_current = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    badge = relationship("Badge")


class LoyaltyEventTypeEnum(str, Enum):
    """Outbound domain events emitted by the reward pipeline."""

    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    BADGE_UNLOCKED = "badge_unlocked"
    CASHBACK_PROCESSED = "cashback_processed"
    CASHBACK_FAILED = "cashback_failed"


class LoyaltyEventStatusEnum(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    FAILED = "failed"


class LoyaltyEvent(Base):
    """Outbox row written in the same transaction as the state change it reports."""

    __tablename__ = "loyalty_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_type = Column(SqlEnum(LoyaltyEventTypeEnum, name="loyalty_event_type_enum"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(UUID(as_uuid=True), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SqlEnum(LoyaltyEventStatusEnum, name="loyalty_event_status_enum"),
        nullable=False,
        default=LoyaltyEventStatusEnum.PENDING,
        server_default=LoyaltyEventStatusEnum.PENDING.name,
        index=True,
    )
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(Text, nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PipelineRunStatusEnum(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABANDONED = "abandoned"


class LoyaltyPipelineRun(Base):
    """Audit row for one reward pipeline attempt over a purchase."""

    __tablename__ = "loyalty_pipeline_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_id = Column(
        UUID(as_uuid=True),
        ForeignKey("purchases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(
        SqlEnum(PipelineRunStatusEnum, name="loyalty_pipeline_run_status_enum"),
        nullable=False,
        default=PipelineRunStatusEnum.RUNNING,
    )
    attempt = Column(Integer, nullable=False, default=1, server_default="1")
    triggered_by = Column(String(32), nullable=True)
    achievements_unlocked = Column(Integer, nullable=False, default=0, server_default="0")
    badges_awarded = Column(Integer, nullable=False, default=0, server_default="0")
    cashback_transaction_id = Column(UUID(as_uuid=True), nullable=True)
    skip_reason = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
