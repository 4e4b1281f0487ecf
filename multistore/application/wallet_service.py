"""Wallet payment application service.

Charges e-wallet payments through the wallet gateway and reconciles the
outcome back into the payment and its order:
- process_wallet_payment: one gateway run for a wallet transaction
- reconcile_payment: copy a settled transaction's outcome onto its payment
- reconcile_pending: recovery sweep for work interrupted mid-way
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from multistore.application.concurrency import (
    KeyedLockRegistry,
    get_lock_registry,
    payment_lock_key,
    wallet_lock_key,
)
from multistore.application.order_service import (
    OrderService,
    get_order_service,
    log_domain_events,
)
from multistore.domain.base import utcnow
from multistore.domain.entities import Payment, WalletTransaction
from multistore.domain.exceptions import (
    DomainError,
    GatewayError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    PaymentNotFoundError,
    WalletTransactionNotFoundError,
)
from multistore.domain.state_machines import PaymentStatus
from multistore.infrastructure.config import settings
from multistore.infrastructure.repositories import (
    PaymentStore,
    WalletTransactionStore,
    get_payment_store,
    get_wallet_transaction_store,
)
from multistore.infrastructure.wallet_gateway import (
    GatewayChargeRequest,
    GatewayChargeResult,
    WalletGateway,
    get_wallet_gateway,
)

logger = structlog.get_logger()

PROCESSING_ERROR = "processing_error"

_FAILURE_REASONS = {
    "declined": "Payment declined by wallet provider",
    "timeout": "Wallet provider did not respond in time",
    "gateway_error": "Wallet provider unavailable",
    PROCESSING_ERROR: "Wallet payment processing failed",
}

SWEEP_PAGE_SIZE = 100

_CLOSED_UNPAID = frozenset({PaymentStatus.FAILED, PaymentStatus.CANCELLED})


@dataclass
class ReconciliationReport:
    """Outcome of one recovery sweep.

    ``mismatched`` lists wallet charges that settled after their payment
    was rejected or cancelled; the money moved and needs a manual refund.
    """

    reconciled: int = 0
    reprocessed: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    mismatched: list[dict[str, str]] = field(default_factory=list)


def failure_reason(transaction: WalletTransaction) -> str:
    """Derive a payment failure reason from a failed wallet transaction."""
    base = _FAILURE_REASONS.get(transaction.failure_code or "", _FAILURE_REASONS[PROCESSING_ERROR])
    if transaction.error_message:
        return f"{base}: {transaction.error_message}"
    return base


class WalletPaymentService:
    """Application service for e-wallet charging and reconciliation.

    Wallet transaction and payment are saved separately. A crash between
    the two writes leaves a settled transaction next to a PROCESSING
    payment, which reconcile_pending repairs.
    """

    def __init__(
        self,
        payment_store: PaymentStore | None = None,
        wallet_store: WalletTransactionStore | None = None,
        order_service: OrderService | None = None,
        gateway: WalletGateway | None = None,
        locks: KeyedLockRegistry | None = None,
        request_id: str | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        """Initialize service.

        Args:
            payment_store: Payment persistence.
            wallet_store: Wallet transaction persistence.
            order_service: Order service for order-level payment status.
            gateway: Wallet gateway client.
            locks: Per-aggregate lock registry.
            request_id: Request ID for correlation.
            timeout_seconds: Bound on one gateway call.
            max_attempts: Gateway calls per run when the provider is unavailable.
            retry_backoff_seconds: Pause between those calls.
        """
        self.payment_store = payment_store or get_payment_store()
        self.wallet_store = wallet_store or get_wallet_transaction_store()
        self.locks = locks or get_lock_registry()
        self.order_service = order_service or OrderService(locks=self.locks, request_id=request_id)
        self.gateway = gateway or get_wallet_gateway()
        self.request_id = request_id
        self.timeout_seconds = timeout_seconds or settings.wallet_gateway_timeout_seconds
        self.max_attempts = max_attempts or settings.wallet_gateway_max_attempts
        self.retry_backoff_seconds = (
            settings.wallet_gateway_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_wallet_payment(self, wallet_transaction_id: str) -> WalletTransaction:
        """Charge a wallet transaction and reconcile its payment.

        A transaction that is already settled is returned untouched and the
        gateway is not called.

        Args:
            wallet_transaction_id: Wallet transaction to process.

        Returns:
            The wallet transaction after this run.

        Raises:
            WalletTransactionNotFoundError: If no such transaction exists.
        """
        async with self.locks.acquire(wallet_lock_key(wallet_transaction_id)):
            transaction = await self._get_transaction(wallet_transaction_id)
            if transaction.is_terminal():
                logger.info(
                    "Wallet transaction already settled",
                    wallet_transaction_id=wallet_transaction_id,
                    status=transaction.status.value,
                    request_id=self.request_id,
                )
                return transaction

            if transaction.status == PaymentStatus.PENDING:
                expected_version = transaction.version
                transaction.start_processing()
                await self.wallet_store.save(transaction, expected_version)

            expected_version = transaction.version
            try:
                result = await self._charge(transaction)
            except GatewayError as e:
                transaction.fail(
                    failure_code=e.failure_code,
                    error_message=e.message,
                    response_payload=e.details or None,
                )
            except Exception as e:
                logger.exception(
                    "Wallet charge raised unexpectedly",
                    wallet_transaction_id=wallet_transaction_id,
                    request_id=self.request_id,
                )
                transaction.fail(failure_code=PROCESSING_ERROR, error_message=str(e))
            else:
                transaction.complete(
                    wallet_transaction_id=result.wallet_transaction_id,
                    response_payload=result.response_payload,
                    fees=result.fees,
                )
            await self.wallet_store.save(transaction, expected_version)

        logger.info(
            "Wallet transaction settled",
            wallet_transaction_id=wallet_transaction_id,
            reference=transaction.transaction_reference,
            status=transaction.status.value,
            failure_code=transaction.failure_code,
            attempts=transaction.attempts,
            request_id=self.request_id,
        )
        log_domain_events(transaction, self.request_id)

        await self.reconcile_payment(transaction)
        return transaction

    async def _charge(self, transaction: WalletTransaction) -> GatewayChargeResult:
        request = GatewayChargeRequest(
            wallet_type=transaction.wallet_type,
            wallet_phone=transaction.wallet_phone,
            amount=transaction.amount,
            currency=transaction.currency,
            transaction_reference=transaction.transaction_reference,
        )
        attempt = 0
        while True:
            attempt += 1
            transaction.record_attempt()
            try:
                return await asyncio.wait_for(
                    self.gateway.charge(request), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise GatewayTimeoutError(
                    f"No response from wallet gateway within {self.timeout_seconds}s",
                    details={"timeout_seconds": self.timeout_seconds},
                ) from e
            except GatewayUnavailableError:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Wallet gateway unavailable, retrying",
                    reference=transaction.transaction_reference,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )
                await asyncio.sleep(self.retry_backoff_seconds)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile_payment(self, transaction: WalletTransaction) -> Payment:
        """Apply a settled wallet transaction's outcome to its payment and order.

        Safe to repeat: a payment that is already terminal is left alone and
        the order update is idempotent. A completed charge on a rejected or
        cancelled payment is logged as an error and nothing is changed.

        Raises:
            PaymentNotFoundError: If the payment is gone.
        """
        async with self.locks.acquire(payment_lock_key(transaction.payment_id)):
            payment = await self.payment_store.get(transaction.payment_id)
            if payment is None:
                raise PaymentNotFoundError(transaction.payment_id)

            if not transaction.is_terminal() or payment.is_terminal():
                changed = False
            else:
                expected_version = payment.version
                if transaction.status == PaymentStatus.COMPLETED:
                    payment.complete(
                        gateway_transaction_id=transaction.wallet_transaction_id,
                        gateway_response=transaction.response_payload,
                    )
                else:
                    payment.fail(
                        reason=failure_reason(transaction),
                        failure_code=transaction.failure_code or PROCESSING_ERROR,
                        gateway_response=transaction.response_payload,
                    )
                await self.payment_store.save(payment, expected_version)
                changed = True

        if changed:
            logger.info(
                "Payment reconciled",
                payment_id=str(payment.id),
                wallet_transaction_id=str(transaction.id),
                status=payment.status.value,
                request_id=self.request_id,
            )
            log_domain_events(payment, self.request_id)

        if transaction.status == PaymentStatus.COMPLETED and payment.status in _CLOSED_UNPAID:
            self._log_settlement_mismatch(payment, transaction)
        elif payment.status == PaymentStatus.COMPLETED and transaction.status == PaymentStatus.COMPLETED:
            await self.order_service.record_payment_success(payment.order_id)
        elif payment.status == PaymentStatus.FAILED and transaction.status != PaymentStatus.COMPLETED:
            await self.order_service.record_payment_failure(payment.order_id)
        return payment

    async def reconcile_pending(self, stale_after: timedelta | None = None) -> ReconciliationReport:
        """Finish wallet payments interrupted by a crash or restart.

        Payments still PROCESSING next to a settled wallet transaction are
        reconciled. Wallet transactions that have not moved for
        ``stale_after`` are processed again; the gateway charges at most
        once per reference.

        Args:
            stale_after: Age after which an unsettled transaction is retried.

        Returns:
            Counts of repaired items, per-item errors and charges that
            settled on closed payments.
        """
        stale_after = stale_after or timedelta(seconds=settings.reconciliation_stale_after_seconds)
        now = utcnow()
        report = ReconciliationReport()

        for payment in await self._processing_payments():
            transaction = await self.wallet_store.get_by_payment_id(str(payment.id))
            if transaction is None or not transaction.is_terminal():
                continue
            try:
                await self.reconcile_payment(transaction)
                report.reconciled += 1
            except DomainError as e:
                self._record_sweep_error(report, transaction, e)

        unsettled = await self.wallet_store.list_by_status({PaymentStatus.PENDING, PaymentStatus.PROCESSING})
        for transaction in unsettled:
            if not transaction.is_stale(stale_after, now):
                continue
            try:
                await self.process_wallet_payment(str(transaction.id))
                report.reprocessed += 1
            except DomainError as e:
                self._record_sweep_error(report, transaction, e)

        for transaction in await self.wallet_store.list_by_status({PaymentStatus.COMPLETED}):
            payment = await self.payment_store.get(transaction.payment_id)
            if payment is None or payment.status not in _CLOSED_UNPAID:
                continue
            self._log_settlement_mismatch(payment, transaction)
            report.mismatched.append(
                {
                    "wallet_transaction_id": str(transaction.id),
                    "payment_id": str(payment.id),
                    "payment_status": payment.status.value,
                    "provider_transaction_id": transaction.wallet_transaction_id or "",
                }
            )

        logger.info(
            "Wallet reconciliation sweep finished",
            reconciled=report.reconciled,
            reprocessed=report.reprocessed,
            errors=len(report.errors),
            mismatched=len(report.mismatched),
            request_id=self.request_id,
        )
        return report

    async def _processing_payments(self) -> list[Payment]:
        payments: list[Payment] = []
        page = 1
        while True:
            batch, total = await self.payment_store.list_by_status(
                PaymentStatus.PROCESSING, page=page, page_size=SWEEP_PAGE_SIZE
            )
            payments.extend(batch)
            if not batch or len(payments) >= total:
                return payments
            page += 1

    def _log_settlement_mismatch(self, payment: Payment, transaction: WalletTransaction) -> None:
        logger.error(
            "Wallet charge settled after payment was closed",
            payment_id=str(payment.id),
            order_id=payment.order_id,
            payment_status=payment.status.value,
            wallet_transaction_id=str(transaction.id),
            provider_transaction_id=transaction.wallet_transaction_id,
            amount=str(transaction.amount),
            request_id=self.request_id,
        )

    def _record_sweep_error(
        self, report: ReconciliationReport, transaction: WalletTransaction, error: DomainError
    ) -> None:
        logger.warning(
            "Wallet reconciliation failed for transaction",
            wallet_transaction_id=str(transaction.id),
            error_code=error.error_code,
            error=error.message,
            request_id=self.request_id,
        )
        report.errors.append(
            {
                "wallet_transaction_id": str(transaction.id),
                "error_code": error.error_code,
                "message": error.message,
            }
        )

    async def _get_transaction(self, wallet_transaction_id: str) -> WalletTransaction:
        transaction = await self.wallet_store.get(wallet_transaction_id)
        if transaction is None:
            raise WalletTransactionNotFoundError(wallet_transaction_id)
        return transaction


def get_wallet_payment_service(request_id: str | None = None) -> WalletPaymentService:
    """Get wallet payment service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        WalletPaymentService instance.
    """
    return WalletPaymentService(
        order_service=get_order_service(request_id),
        request_id=request_id,
    )
