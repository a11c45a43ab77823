"""Background workers supporting async processing."""

from .cashback_retry import CashbackRetryWorker
from .loyalty_events import LoyaltyEventWorker
from .runner import run_workers

__all__ = [
    "CashbackRetryWorker",
    "LoyaltyEventWorker",
    "run_workers",
]
