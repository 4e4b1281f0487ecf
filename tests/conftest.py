"""Shared fixtures for all tests."""

import asyncio
from collections.abc import Iterator
from decimal import Decimal

import pytest

from multistore.application.concurrency import reset_concurrency
from multistore.infrastructure.config import settings
from multistore.infrastructure.repositories import reset_stores
from multistore.infrastructure.wallet_gateway import (
    GatewayChargeRequest,
    GatewayChargeResult,
    set_wallet_gateway,
)


class ScriptedGateway:
    """Wallet gateway fake that plays back queued outcomes.

    Each charge pops the next outcome: an exception instance is raised,
    "hang" sleeps past any reasonable timeout, anything else (or an
    empty queue) succeeds.
    """

    def __init__(self, *outcomes: object) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[GatewayChargeRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def charge(self, request: GatewayChargeRequest) -> GatewayChargeResult:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(3600)
        return GatewayChargeResult(
            wallet_transaction_id=f"GW-{self.calls:04d}",
            response_payload={"status": "success", "reference": request.transaction_reference},
        )

    async def close(self) -> None:
        return None


@pytest.fixture(autouse=True)
def reset_state() -> Iterator[None]:
    """Give every test fresh stores, locks and gateway."""
    reset_stores()
    reset_concurrency()
    set_wallet_gateway(None)
    yield
    reset_stores()
    reset_concurrency()
    set_wallet_gateway(None)


@pytest.fixture
def gateway() -> ScriptedGateway:
    """Install a scripted wallet gateway that succeeds by default."""
    fake = ScriptedGateway()
    set_wallet_gateway(fake)
    return fake


@pytest.fixture(autouse=True)
def flat_shipping(monkeypatch: pytest.MonkeyPatch) -> None:
    """Price orders with a 5.00 flat shipping charge, no tax and no coupons."""
    monkeypatch.setattr(settings, "flat_shipping_amount", Decimal("5.00"))
    monkeypatch.setattr(settings, "free_shipping_threshold", None)
    monkeypatch.setattr(settings, "tax_rate_percent", Decimal("0"))
    monkeypatch.setattr(settings, "coupon_discounts", {})
