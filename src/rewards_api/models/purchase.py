from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, JSON, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class PurchaseStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_reference = Column(String, nullable=True, unique=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=True)
    status = Column(
        SqlEnum(PurchaseStatusEnum, name="purchase_status_enum"),
        nullable=False,
        default=PurchaseStatusEnum.PENDING,
        server_default=PurchaseStatusEnum.PENDING.name,
    )
    items = Column(JSON, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    processed_for_loyalty = Column(Boolean, nullable=False, default=False, server_default="false")
    loyalty_processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")

    @property
    def is_eligible_for_loyalty(self) -> bool:
        return self.status == PurchaseStatusEnum.COMPLETED and not self.processed_for_loyalty
