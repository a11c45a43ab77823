"""In-process provider used in development and tests."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping
from uuid import uuid4

from loguru import logger

from rewards_api.models.user import User

from .base import TransferResult


class MockPaymentProvider:
    """Simulated payout provider with a configurable success rate."""

    def __init__(
        self,
        *,
        success_rate: float = 1.0,
        latency_seconds: float = 0.0,
        rng: Callable[[], float] | None = None,
    ) -> None:
        self._success_rate = min(max(success_rate, 0.0), 1.0)
        self._latency_seconds = max(latency_seconds, 0.0)
        self._rng = rng or random.random
        self.transfers: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "mock"

    async def transfer(
        self,
        user: User,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, Any],
    ) -> TransferResult:
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)

        self.transfers.append(
            {"user_id": user.id, "amount": amount, "currency": currency, "metadata": dict(metadata)}
        )

        if self._success_rate < 1.0 and self._rng() >= self._success_rate:
            logger.info("Mock transfer declined", user_id=str(user.id), amount=str(amount))
            return TransferResult(
                success=False,
                error="Mock transfer failed - simulated failure",
                raw_response={"status": False, "message": "Insufficient funds in test account"},
            )

        reference = f"MOCK_{uuid4().hex[:13].upper()}"
        return TransferResult(
            success=True,
            reference=reference,
            raw_response={
                "status": True,
                "message": "Mock transfer successful",
                "data": {
                    "amount": str(amount),
                    "currency": currency,
                    "recipient": user.email,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            },
        )


__all__ = ["MockPaymentProvider"]
