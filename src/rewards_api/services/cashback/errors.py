"""Exceptions raised by the cashback orchestrator."""

from __future__ import annotations

from uuid import UUID

from rewards_api.models.cashback import CashbackTransactionStatusEnum


class CashbackError(RuntimeError):
    """Base exception for cashback payment failures."""


class InvalidCashbackTransitionError(CashbackError):
    """Raised when a status change violates the cashback state machine."""

    def __init__(
        self,
        current_status: CashbackTransactionStatusEnum,
        requested_status: CashbackTransactionStatusEnum,
    ) -> None:
        message = f"Cannot transition cashback from {current_status.value} to {requested_status.value}"
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class CashbackTransactionNotFoundError(CashbackError):
    """Raised when retrying a transaction that does not exist."""

    def __init__(self, transaction_id: UUID) -> None:
        super().__init__(f"Cashback transaction {transaction_id} not found")
        self.transaction_id = transaction_id
