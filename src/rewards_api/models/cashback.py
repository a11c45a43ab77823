"""Cashback transaction ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, JSON, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from rewards_api.db.base import Base


class CashbackTransactionStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CashbackTransaction(Base):
    """Cashback payout attempt, at most one per purchase."""

    __tablename__ = "cashback_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Unique: doubles as the per-purchase idempotency key for pipeline re-entry.
    purchase_id = Column(
        UUID(as_uuid=True),
        ForeignKey("purchases.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        SqlEnum(CashbackTransactionStatusEnum, name="cashback_transaction_status_enum"),
        nullable=False,
        default=CashbackTransactionStatusEnum.PENDING,
        server_default=CashbackTransactionStatusEnum.PENDING.name,
    )
    provider = Column(String(32), nullable=False)
    reference = Column(String, nullable=True)
    provider_response = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")
    purchase = relationship("Purchase")
