"""Cashback rate tables."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from rewards_api.models.loyalty import BadgeLevel

CENT = Decimal("0.01")

# (minimum purchase amount, rate); first match wins, bounds inclusive.
BASE_RATE_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("50000"), Decimal("0.05")),
    (Decimal("20000"), Decimal("0.03")),
    (Decimal("5000"), Decimal("0.02")),
)
DEFAULT_BASE_RATE = Decimal("0.01")

BADGE_BONUS_RATES: dict[BadgeLevel, Decimal] = {
    BadgeLevel.NONE: Decimal("0"),
    BadgeLevel.BRONZE: Decimal("0"),
    BadgeLevel.SILVER: Decimal("0.005"),
    BadgeLevel.GOLD: Decimal("0.01"),
    BadgeLevel.PLATINUM: Decimal("0.015"),
    BadgeLevel.DIAMOND: Decimal("0.02"),
}


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def base_rate(amount: Decimal | int | float | str) -> Decimal:
    """Return the purchase-size rate for ``amount``."""

    value = _to_decimal(amount)
    for threshold, rate in BASE_RATE_TIERS:
        if value >= threshold:
            return rate
    return DEFAULT_BASE_RATE


def badge_bonus_rate(badge_level: int | None) -> Decimal:
    """Return the additive bonus for a badge level; unknown levels earn nothing."""

    if not badge_level:
        return BADGE_BONUS_RATES[BadgeLevel.NONE]
    try:
        level = BadgeLevel(int(badge_level))
    except ValueError:
        return Decimal("0")
    return BADGE_BONUS_RATES[level]


def calculate_cashback(amount: Decimal | int | float | str, badge_level: int | None = None) -> Decimal:
    """Compute the cashback owed on ``amount`` for a holder of ``badge_level``.

    The result is rounded half-up to two decimal places.
    """

    value = _to_decimal(amount)
    if value <= 0:
        return Decimal("0.00")
    rate = base_rate(value) + badge_bonus_rate(badge_level)
    return (value * rate).quantize(CENT, rounding=ROUND_HALF_UP)


__all__ = ["badge_bonus_rate", "base_rate", "calculate_cashback"]
