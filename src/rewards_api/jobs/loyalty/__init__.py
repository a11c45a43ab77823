"""Loyalty job exports."""

from .cashback_retry import retry_cashback_transaction, retry_failed_cashback  # noqa: F401
from .events import dispatch_loyalty_events  # noqa: F401
from .rewards import (  # noqa: F401
    abandon_purchase_rewards,
    process_purchase_rewards,
    requeue_unprocessed_purchases,
)

__all__ = [
    "abandon_purchase_rewards",
    "dispatch_loyalty_events",
    "process_purchase_rewards",
    "requeue_unprocessed_purchases",
    "retry_cashback_transaction",
    "retry_failed_cashback",
]
