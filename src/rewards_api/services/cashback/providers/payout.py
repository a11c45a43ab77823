"""REST payout provider (Paystack-compatible transfer API)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

import httpx
from loguru import logger

from rewards_api.models.user import User

from .base import ProviderTransportError, TransferResult


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to its smallest unit (kobo, cents)."""

    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PayoutTransferProvider:
    """Create a transfer recipient, then initiate a balance transfer to it.

    The transfer reference is supplied by the caller so a resumed transfer
    reuses it and the remote API can de-duplicate.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        default_bank_code: str = "058",
        recipient_type: str = "nuban",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("Payout secret key must be configured")
        if not base_url:
            raise ValueError("Payout base URL must be configured")
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._default_bank_code = default_bank_code
        self._recipient_type = recipient_type
        self._http_client = http_client

    @property
    def name(self) -> str:
        return "paystack"

    async def transfer(
        self,
        user: User,
        amount: Decimal,
        currency: str,
        metadata: Mapping[str, Any],
    ) -> TransferResult:
        if not user.bank_account_number:
            logger.warning("Payout skipped; user has no bank account on file", user_id=str(user.id))
            return TransferResult(
                success=False,
                error="No bank account on file for cashback payout",
                raw_response={"status": False, "message": "missing_bank_account"},
            )

        client = self._http_client or httpx.AsyncClient(timeout=self._timeout_seconds)
        owns_client = self._http_client is None
        try:
            recipient_payload = await self._post(
                client,
                "/transferrecipient",
                {
                    "type": self._recipient_type,
                    "name": user.display_name or user.email,
                    "account_number": user.bank_account_number,
                    "bank_code": user.bank_code or self._default_bank_code,
                    "currency": currency,
                },
            )
            if not _is_ok(recipient_payload):
                return TransferResult(
                    success=False,
                    error=recipient_payload.get("message") or "Failed to create recipient",
                    raw_response=recipient_payload,
                )
            recipient_code = (recipient_payload.get("data") or {}).get("recipient_code")

            transfer_payload = await self._post(
                client,
                "/transfer",
                {
                    "source": "balance",
                    "amount": to_minor_units(amount),
                    "recipient": recipient_code,
                    "reason": metadata.get("description") or "Loyalty cashback",
                    "reference": metadata.get("reference"),
                    "currency": currency,
                },
            )
        finally:
            if owns_client:
                await client.aclose()

        if not _is_ok(transfer_payload):
            logger.warning(
                "Payout transfer declined",
                user_id=str(user.id),
                message=transfer_payload.get("message"),
            )
            return TransferResult(
                success=False,
                error=transfer_payload.get("message") or "Transfer failed",
                raw_response=transfer_payload,
            )

        data = transfer_payload.get("data") or {}
        return TransferResult(
            success=True,
            reference=data.get("reference") or metadata.get("reference"),
            raw_response=transfer_payload,
        )

    async def _post(self, client: httpx.AsyncClient, path: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._secret_key}",
            "Content-Type": "application/json",
        }
        try:
            response = await client.post(f"{self._base_url}{path}", json=body, headers=headers)
        except httpx.TransportError as exc:
            raise ProviderTransportError(f"Payout provider unreachable: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {"status": False, "message": f"Unexpected response ({response.status_code})"}
        if not isinstance(payload, dict):
            payload = {"status": False, "message": "Malformed provider response", "body": payload}
        if response.is_error:
            payload["status"] = False
            payload.setdefault("message", f"HTTP {response.status_code}")
        return payload


def _is_ok(payload: Mapping[str, Any]) -> bool:
    return bool(payload.get("status"))


__all__ = ["PayoutTransferProvider", "to_minor_units"]
