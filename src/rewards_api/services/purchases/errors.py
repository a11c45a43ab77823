from __future__ import annotations

from uuid import UUID

from rewards_api.models.purchase import PurchaseStatusEnum


class PurchaseStateError(RuntimeError):
    """Raised when a purchase cannot move to the requested status."""

    def __init__(self, purchase_id: UUID, current_status: PurchaseStatusEnum, requested_status: PurchaseStatusEnum) -> None:
        super().__init__(
            f"Cannot transition purchase {purchase_id} from {current_status.value} to {requested_status.value}"
        )
        self.purchase_id = purchase_id
        self.current_status = current_status
        self.requested_status = requested_status
