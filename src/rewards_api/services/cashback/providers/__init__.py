"""Cashback payout provider adapters."""

from __future__ import annotations

from typing import Callable

from rewards_api.core.settings import settings

from .base import PaymentProvider, ProviderTransportError, TransferResult
from .mock import MockPaymentProvider
from .payout import PayoutTransferProvider, to_minor_units


def _build_mock() -> PaymentProvider:
    return MockPaymentProvider(
        success_rate=settings.mock_provider_success_rate,
        latency_seconds=settings.mock_provider_latency_seconds,
    )


def _build_payout() -> PaymentProvider:
    return PayoutTransferProvider(
        secret_key=settings.payout_secret_key,
        base_url=settings.payout_api_base_url,
        timeout_seconds=settings.payout_timeout_seconds,
        default_bank_code=settings.payout_default_bank_code,
        recipient_type=settings.payout_recipient_type,
    )


_REGISTRY: dict[str, Callable[[], PaymentProvider]] = {
    "mock": _build_mock,
    "paystack": _build_payout,
}


def build_payment_provider(name: str | None = None) -> PaymentProvider:
    """Instantiate the configured provider; unknown names raise ``ValueError``."""

    key = (name or settings.cashback_provider or "").strip().lower()
    factory = _REGISTRY.get(key)
    if factory is None:
        raise ValueError(f"Unknown cashback provider '{key}'")
    return factory()


__all__ = [
    "MockPaymentProvider",
    "PaymentProvider",
    "PayoutTransferProvider",
    "ProviderTransportError",
    "TransferResult",
    "build_payment_provider",
    "to_minor_units",
]
