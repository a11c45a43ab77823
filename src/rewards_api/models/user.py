from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    total_points = Column(Integer, nullable=False, default=0, server_default="0")
    total_cashback = Column(Numeric(14, 2), nullable=False, default=0, server_default="0")
    bank_account_number = Column(String(32), nullable=True)
    bank_code = Column(String(16), nullable=True)
    current_badge_id = Column(
        UUID(as_uuid=True),
        ForeignKey("badges.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    current_badge = relationship("Badge", foreign_keys=[current_badge_id])
