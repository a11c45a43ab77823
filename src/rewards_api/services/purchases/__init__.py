"""Purchase services."""

from .errors import PurchaseStateError  # noqa: F401
from .service import PurchaseService, dispatch_purchase_completed, generate_order_reference  # noqa: F401

__all__ = [
    "PurchaseService",
    "PurchaseStateError",
    "dispatch_purchase_completed",
    "generate_order_reference",
]
