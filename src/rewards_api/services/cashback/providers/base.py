"""Payment provider contract for cashback transfers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Protocol

from rewards_api.models.user import User


class ProviderTransportError(RuntimeError):
    """Raised when a provider cannot be reached at all."""


@dataclass(slots=True)
class TransferResult:
    """Outcome reported by a provider for one transfer attempt."""

    success: bool
    reference: str | None = None
    error: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    """Protocol every cashback payout provider implements.

    Declines are reported as ``TransferResult(success=False)``. Only transport
    faults may raise.
    """

    @property
    def name(self) -> str:
        """Short identifier persisted on cashback transactions."""

    async def transfer(
        self,
        user: User,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, Any],
    ) -> TransferResult:
        """Move ``amount`` to ``user``."""


__all__ = ["PaymentProvider", "ProviderTransportError", "TransferResult"]
