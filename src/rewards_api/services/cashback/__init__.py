"""Cashback calculation and payout services."""

from .calculator import badge_bonus_rate, base_rate, calculate_cashback  # noqa: F401
from .cashback_service import (  # noqa: F401
    CashbackPaymentService,
    CashbackSummary,
    CashbackTransactionSnapshot,
    provider_reference,
)
from .errors import (  # noqa: F401
    CashbackError,
    CashbackTransactionNotFoundError,
    InvalidCashbackTransitionError,
)
