"""Tests for cashback payout providers."""

import json
from decimal import Decimal
from uuid import uuid4

import httpx
import pytest

from rewards_api.models.user import User
from rewards_api.services.cashback.providers import (
    MockPaymentProvider,
    PayoutTransferProvider,
    ProviderTransportError,
    build_payment_provider,
    to_minor_units,
)


def _user() -> User:
    return User(
        id=uuid4(),
        email="payee@example.com",
        display_name="Payee",
        bank_account_number="0001112223",
        bank_code="044",
    )


def _provider(handler) -> PayoutTransferProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PayoutTransferProvider(
        secret_key="sk_test_123",
        base_url="https://payouts.test/",
        http_client=client,
    )


@pytest.mark.asyncio
async def test_payout_provider_creates_recipient_then_transfers() -> None:
    requests: list[tuple[str, dict]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode())
        requests.append((request.url.path, body))
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        if request.url.path == "/transferrecipient":
            return httpx.Response(200, json={"status": True, "data": {"recipient_code": "RCP_1"}})
        return httpx.Response(
            200,
            json={"status": True, "data": {"reference": body["reference"], "status": "success"}},
        )

    result = await _provider(handler).transfer(
        _user(),
        Decimal("3000.50"),
        "NGN",
        {"reference": "CASHBACK_abc", "description": "Cashback for purchase #ORD-1"},
    )

    assert result.success is True
    assert result.reference == "CASHBACK_abc"
    assert [path for path, _ in requests] == ["/transferrecipient", "/transfer"]
    recipient = requests[0][1]
    assert recipient["account_number"] == "0001112223"
    assert recipient["bank_code"] == "044"
    transfer = requests[1][1]
    assert transfer["amount"] == 300050
    assert transfer["recipient"] == "RCP_1"
    assert transfer["reason"] == "Cashback for purchase #ORD-1"


@pytest.mark.asyncio
async def test_payout_provider_refuses_users_without_bank_account() -> None:
    requests: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"status": True, "data": {}})

    user = _user()
    user.bank_account_number = None

    result = await _provider(handler).transfer(user, Decimal("10"), "NGN", {"reference": "CASHBACK_x"})

    assert result.success is False
    assert result.error == "No bank account on file for cashback payout"
    assert requests == []


@pytest.mark.asyncio
async def test_payout_provider_reports_recipient_failure() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"status": False, "message": "Invalid account number"})

    result = await _provider(handler).transfer(_user(), Decimal("10"), "NGN", {"reference": "CASHBACK_x"})

    assert result.success is False
    assert result.error == "Invalid account number"


@pytest.mark.asyncio
async def test_payout_provider_reports_declined_transfer() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/transferrecipient":
            return httpx.Response(200, json={"status": True, "data": {"recipient_code": "RCP_1"}})
        return httpx.Response(400, json={"status": False, "message": "Insufficient balance"})

    result = await _provider(handler).transfer(_user(), Decimal("10"), "NGN", {"reference": "CASHBACK_x"})

    assert result.success is False
    assert result.error == "Insufficient balance"
    assert result.raw_response["message"] == "Insufficient balance"


@pytest.mark.asyncio
async def test_payout_provider_handles_non_json_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="Bad gateway")

    result = await _provider(handler).transfer(_user(), Decimal("10"), "NGN", {"reference": "CASHBACK_x"})

    assert result.success is False
    assert result.error == "Unexpected response (502)"


@pytest.mark.asyncio
async def test_payout_provider_raises_on_transport_fault() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderTransportError):
        await _provider(handler).transfer(_user(), Decimal("10"), "NGN", {"reference": "CASHBACK_x"})


def test_payout_provider_requires_credentials() -> None:
    with pytest.raises(ValueError):
        PayoutTransferProvider(secret_key="", base_url="https://payouts.test")


def test_minor_unit_conversion_rounds_half_up() -> None:
    assert to_minor_units(Decimal("3000.50")) == 300050
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units(Decimal("12")) == 1200


@pytest.mark.asyncio
async def test_mock_provider_success_and_failure() -> None:
    user = _user()

    succeeding = MockPaymentProvider(success_rate=1.0)
    result = await succeeding.transfer(user, Decimal("5"), "NGN", {"reference": "CASHBACK_1"})
    assert result.success is True
    assert result.reference.startswith("MOCK_")
    assert len(result.reference) == len("MOCK_") + 13

    failing = MockPaymentProvider(success_rate=0.5, rng=lambda: 0.9)
    result = await failing.transfer(user, Decimal("5"), "NGN", {"reference": "CASHBACK_2"})
    assert result.success is False
    assert result.error == "Mock transfer failed - simulated failure"
    assert len(failing.transfers) == 1


def test_provider_registry() -> None:
    assert build_payment_provider("mock").name == "mock"
    assert build_payment_provider("MOCK").name == "mock"
    with pytest.raises(ValueError):
        build_payment_provider("carrier-pigeon")
