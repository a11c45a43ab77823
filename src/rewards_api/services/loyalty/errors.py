"""Exceptions raised by the loyalty reward pipeline."""

from __future__ import annotations

from uuid import UUID


class LoyaltyError(RuntimeError):
    """Base exception for loyalty pipeline failures."""


class PurchaseNotFoundError(LoyaltyError):
    """Raised when a pipeline run references a missing purchase."""

    def __init__(self, purchase_id: UUID) -> None:
        super().__init__(f"Purchase {purchase_id} not found")
        self.purchase_id = purchase_id


class UserNotFoundError(LoyaltyError):
    """Raised when the purchase owner cannot be loaded."""

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id
