"""Wallet gateway clients.

Provides the port used by wallet reconciliation to charge a customer's
e-wallet, an HTTP client for a real provider and a simulated gateway
for development. Every charge carries the local transaction reference
so the provider can deduplicate repeated calls.
"""

import asyncio
import random
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import httpx
import structlog

from multistore.domain.exceptions import (
    GatewayDeclinedError,
    GatewayTimeoutError,
    GatewayUnavailableError,
)
from multistore.domain.value_objects import WalletType
from multistore.infrastructure.config import settings

logger = structlog.get_logger()

# Provider-side faults that say nothing about the customer's wallet.
_UNAVAILABLE_STATUS_CODES = frozenset({401, 403, 429})


# ============================================================================
# Gateway Port
# ============================================================================


@dataclass(frozen=True)
class GatewayChargeRequest:
    """Charge instruction sent to a wallet provider."""

    wallet_type: WalletType
    wallet_phone: str
    amount: Decimal
    currency: str
    transaction_reference: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "wallet_type": self.wallet_type.value,
            "wallet_phone": self.wallet_phone,
            "amount": str(self.amount),
            "currency": self.currency,
            "transaction_reference": self.transaction_reference,
        }


@dataclass(frozen=True)
class GatewayChargeResult:
    """Successful charge outcome."""

    wallet_transaction_id: str
    response_payload: dict[str, Any] = field(default_factory=dict)
    fees: Decimal | None = None


class WalletGateway(Protocol):
    """Port for charging customer e-wallets.

    Implementations raise GatewayDeclinedError, GatewayTimeoutError or
    GatewayUnavailableError instead of returning a failed result.
    """

    async def charge(self, request: GatewayChargeRequest) -> GatewayChargeResult: ...

    async def close(self) -> None: ...


# ============================================================================
# HTTP Gateway
# ============================================================================


class HttpWalletGateway:
    """HTTP client for a wallet provider.

    Posts charges to ``/charges`` with the transaction reference as the
    Idempotency-Key header.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize wallet gateway client.

        Args:
            base_url: Provider base URL.
            api_key: Bearer token for the provider.
            timeout: Request timeout in seconds.
            transport: Optional transport override (used by tests).
        """
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def charge(self, request: GatewayChargeRequest) -> GatewayChargeResult:
        """Charge a wallet.

        Args:
            request: Charge instruction.

        Returns:
            Provider transaction id and raw response.

        Raises:
            GatewayDeclinedError: Provider refused the charge (other 4xx).
            GatewayTimeoutError: No answer within the timeout.
            GatewayUnavailableError: Transport failure, 5xx, or 401/403/429 response.
        """
        reference = request.transaction_reference
        try:
            client = await self._get_client()
            response = await client.post(
                "/charges",
                json=request.to_payload(),
                headers={"Idempotency-Key": reference},
            )
        except httpx.TimeoutException as e:
            logger.warning("Wallet gateway timed out", reference=reference, error=str(e))
            raise GatewayTimeoutError(
                f"Wallet gateway timed out for {reference}",
                details={"transaction_reference": reference},
            ) from e
        except httpx.RequestError as e:
            logger.warning("Wallet gateway unreachable", reference=reference, error=str(e))
            raise GatewayUnavailableError(
                f"Wallet gateway unreachable: {e}",
                details={"transaction_reference": reference},
            ) from e

        body = _json_body(response)
        if response.status_code >= 500 or response.status_code in _UNAVAILABLE_STATUS_CODES:
            raise GatewayUnavailableError(
                f"Wallet gateway error {response.status_code}",
                details={"status_code": response.status_code, "response": body},
            )
        if response.status_code >= 400:
            raise GatewayDeclinedError(
                body.get("message") or f"Charge declined ({response.status_code})",
                details={"status_code": response.status_code, "response": body},
            )

        wallet_transaction_id = body.get("wallet_transaction_id") or body.get("id")
        if not wallet_transaction_id:
            raise GatewayUnavailableError(
                "Wallet gateway response missing transaction id",
                details={"response": body},
            )
        fees = body.get("fees")
        return GatewayChargeResult(
            wallet_transaction_id=str(wallet_transaction_id),
            response_payload=body,
            fees=Decimal(str(fees)) if fees is not None else None,
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"raw": response.text}
    return body if isinstance(body, dict) else {"data": body}


# ============================================================================
# Simulated Gateway
# ============================================================================


class SimulatedWalletGateway:
    """Stand-in wallet provider for development and demos.

    Succeeds with a configured probability after a configured delay.
    Repeated charges for the same reference return the first outcome.
    """

    def __init__(
        self,
        success_rate: float = 0.9,
        latency_seconds: float = 0.0,
        seed: int | None = None,
    ) -> None:
        self.success_rate = success_rate
        self.latency_seconds = latency_seconds
        self._rng = random.Random(seed)
        self._outcomes: dict[str, GatewayChargeResult | GatewayDeclinedError] = {}
        self.calls = 0

    async def close(self) -> None:
        return None

    async def charge(self, request: GatewayChargeRequest) -> GatewayChargeResult:
        """Simulate a charge.

        Raises:
            GatewayDeclinedError: When the simulated provider declines.
        """
        self.calls += 1
        reference = request.transaction_reference
        if reference not in self._outcomes:
            if self.latency_seconds:
                await asyncio.sleep(self.latency_seconds)
            self._outcomes[reference] = self._roll(request)

        outcome = self._outcomes[reference]
        if isinstance(outcome, GatewayDeclinedError):
            raise outcome
        return outcome

    def _roll(self, request: GatewayChargeRequest) -> GatewayChargeResult | GatewayDeclinedError:
        if self._rng.random() < self.success_rate:
            wallet_transaction_id = f"{request.wallet_type.value.upper()}-{secrets.token_hex(6).upper()}"
            logger.info(
                "Simulated wallet charge succeeded",
                reference=request.transaction_reference,
                wallet_transaction_id=wallet_transaction_id,
            )
            return GatewayChargeResult(
                wallet_transaction_id=wallet_transaction_id,
                response_payload={
                    "status": "success",
                    "wallet_transaction_id": wallet_transaction_id,
                    "amount": str(request.amount),
                    "currency": request.currency,
                },
            )
        logger.info("Simulated wallet charge declined", reference=request.transaction_reference)
        return GatewayDeclinedError(
            "Insufficient wallet balance",
            details={"status": "declined", "transaction_reference": request.transaction_reference},
            message_ar="رصيد المحفظة غير كاف",
        )


# ============================================================================
# Gateway Singleton
# ============================================================================


_wallet_gateway: WalletGateway | None = None


def get_wallet_gateway() -> WalletGateway:
    """Get the wallet gateway configured in settings."""
    global _wallet_gateway
    if _wallet_gateway is None:
        if settings.wallet_gateway_mode == "http":
            _wallet_gateway = HttpWalletGateway(
                base_url=settings.wallet_gateway_url,
                api_key=settings.wallet_gateway_api_key,
                timeout=settings.wallet_gateway_timeout_seconds,
            )
        else:
            _wallet_gateway = SimulatedWalletGateway(
                success_rate=settings.simulated_gateway_success_rate,
                latency_seconds=settings.simulated_gateway_latency_seconds,
            )
        logger.info("Wallet gateway configured", mode=settings.wallet_gateway_mode)
    return _wallet_gateway


def set_wallet_gateway(gateway: WalletGateway | None) -> None:
    """Replace the gateway singleton (for testing)."""
    global _wallet_gateway
    _wallet_gateway = gateway


async def close_wallet_gateway() -> None:
    """Close and forget the gateway singleton."""
    global _wallet_gateway
    if _wallet_gateway is not None:
        await _wallet_gateway.close()
    _wallet_gateway = None
