"""Payment application service.

Orchestrates payment lifecycle management including:
- Creating payments and dispatching them by payment method
- Manual confirm, reject, refund and cancel
- Propagating payment outcomes to the order-level payment status
- Lookups and statistics
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from decimal import Decimal

import structlog

from multistore.application.concurrency import (
    BackgroundTaskRunner,
    KeyedLockRegistry,
    get_lock_registry,
    get_task_runner,
    payment_lock_key,
)
from multistore.application.order_service import (
    OrderService,
    get_order_service,
    log_domain_events,
)
from multistore.application.wallet_service import PROCESSING_ERROR, WalletPaymentService
from multistore.domain.base import utcnow
from multistore.domain.entities import (
    Order,
    Payment,
    WalletTransaction,
    format_display_id,
    generate_transaction_id,
    generate_wallet_reference,
)
from multistore.domain.exceptions import (
    InvalidStateTransitionError,
    InvalidWalletPhoneError,
    PaymentNotFoundError,
    PaymentProcessingError,
    ValidationError,
    WalletTransactionNotFoundError,
)
from multistore.domain.state_machines import OrderPaymentStatus, PaymentStatus
from multistore.domain.value_objects import PaymentMethod, quantize_amount
from multistore.infrastructure.repositories import (
    PaymentStore,
    WalletTransactionStore,
    get_payment_store,
    get_wallet_transaction_store,
)

logger = structlog.get_logger()


# ============================================================================
# Payment Data Transfer Objects
# ============================================================================


@dataclass
class CreatePaymentDTO:
    """Payment request for an existing order."""

    order_id: str
    payment_method: PaymentMethod
    amount: Decimal
    currency: str | None = None
    wallet_phone: str | None = None
    bank_reference: str | None = None
    delivery_address: str | None = None
    notes: str | None = None


@dataclass
class PaymentStatistics:
    """Aggregate payment figures."""

    total_payments: int = 0
    completed_payments: int = 0
    failed_payments: int = 0
    pending_payments: int = 0
    processing_payments: int = 0
    total_completed_amount: Decimal = Decimal("0.00")
    today_completed_amount: Decimal = Decimal("0.00")
    payments_by_method: dict[str, int] = field(default_factory=dict)


DispatchHandler = Callable[[Payment, CreatePaymentDTO], Awaitable[None]]


def _ensure_order_accepts_payment(order: Order) -> None:
    """Refuse new money on an order whose payment status can no longer become PAID."""
    current = order.payment_status
    if current == OrderPaymentStatus.PAID or current.can_transition_to(OrderPaymentStatus.PAID):
        return
    raise InvalidStateTransitionError(
        entity_type="Order",
        entity_id=str(order.id),
        current_state=current.value,
        target_state=OrderPaymentStatus.PAID.value,
        allowed_transitions=[s.value for s in current.allowed_transitions()],
        reason="Order payment was refunded",
    )


# ============================================================================
# Payment Service
# ============================================================================


class PaymentService:
    """Application service for managing payments.

    Each payment method has exactly one dispatch handler. E-wallet
    payments return PROCESSING right away; the gateway call runs on the
    background task runner and its outcome is reconciled later.
    """

    def __init__(
        self,
        payment_store: PaymentStore | None = None,
        wallet_store: WalletTransactionStore | None = None,
        order_service: OrderService | None = None,
        wallet_service: WalletPaymentService | None = None,
        runner: BackgroundTaskRunner | None = None,
        locks: KeyedLockRegistry | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            payment_store: Payment persistence.
            wallet_store: Wallet transaction persistence.
            order_service: Order service for lookups and payment status.
            wallet_service: Wallet charging and reconciliation.
            runner: Background task runner for gateway calls.
            locks: Per-aggregate lock registry.
            request_id: Request ID for correlation.
        """
        self.payment_store = payment_store or get_payment_store()
        self.wallet_store = wallet_store or get_wallet_transaction_store()
        self.locks = locks or get_lock_registry()
        self.order_service = order_service or OrderService(locks=self.locks, request_id=request_id)
        self.wallet_service = wallet_service or WalletPaymentService(
            payment_store=self.payment_store,
            wallet_store=self.wallet_store,
            order_service=self.order_service,
            locks=self.locks,
            request_id=request_id,
        )
        self.runner = runner or get_task_runner()
        self.request_id = request_id

        self._handlers: dict[PaymentMethod, DispatchHandler] = {
            PaymentMethod.JEEB: self._dispatch_wallet,
            PaymentMethod.FLOUSI: self._dispatch_wallet,
            PaymentMethod.MOBILE_MONEY: self._dispatch_wallet,
            PaymentMethod.CASH_ON_DELIVERY: self._dispatch_cash_on_delivery,
            PaymentMethod.BANK_TRANSFER: self._dispatch_bank_transfer,
        }

    # -------------------------------------------------------------------------
    # Creation & Dispatch
    # -------------------------------------------------------------------------

    async def create_payment(self, request: CreatePaymentDTO) -> Payment:
        """Create a payment for an order and dispatch it.

        Args:
            request: Payment request.

        Returns:
            The payment as left by its handler: PROCESSING for e-wallets,
            PENDING for cash on delivery and bank transfer.

        Raises:
            ValidationError: If the amount or wallet phone is invalid.
            OrderNotFoundError: If the order does not exist.
            InvalidStateTransitionError: If the order was refunded.
            PaymentProcessingError: If dispatch failed; the payment is
                already saved as FAILED.
        """
        amount = quantize_amount(request.amount)
        if amount <= 0:
            raise ValidationError(
                "Payment amount must be greater than zero",
                field="amount",
                message_ar="يجب أن يكون مبلغ الدفع أكبر من صفر",
            )
        method = request.payment_method
        wallet_type = method.wallet_type
        if wallet_type is not None and not wallet_type.supports_phone_number(request.wallet_phone):
            raise InvalidWalletPhoneError(wallet_type.value, wallet_type.arabic_name, request.wallet_phone)

        order = await self.order_service.get_order(request.order_id)
        _ensure_order_accepts_payment(order)
        if request.currency and request.currency.upper() != order.currency:
            logger.warning(
                "Payment currency ignored, using order currency",
                order_id=str(order.id),
                requested_currency=request.currency,
                currency=order.currency,
                request_id=self.request_id,
            )

        payment = Payment.create(
            display_id=format_display_id("PAY", await self.payment_store.next_sequence()),
            transaction_id=generate_transaction_id(),
            order_id=str(order.id),
            payment_method=method,
            amount=amount,
            currency=order.currency,
            delivery_address=request.delivery_address,
            notes=request.notes,
        )
        await self.payment_store.add(payment)
        logger.info(
            "Payment created",
            payment_id=str(payment.id),
            order_id=payment.order_id,
            method=method.value,
            amount=str(payment.amount),
            transaction_id=payment.transaction_id,
            request_id=self.request_id,
        )
        log_domain_events(payment, self.request_id)

        handler = self._handlers[method]
        try:
            await handler(payment, request)
        except Exception as e:
            logger.exception(
                "Payment dispatch failed",
                payment_id=str(payment.id),
                method=method.value,
                request_id=self.request_id,
            )
            await self._fail_dispatch(payment, str(e))
            raise PaymentProcessingError(str(payment.id), str(e)) from e

        return payment

    async def _dispatch_wallet(self, payment: Payment, request: CreatePaymentDTO) -> None:
        wallet_type = payment.payment_method.wallet_type
        transaction = WalletTransaction.create(
            display_id=format_display_id("WTX", await self.wallet_store.next_sequence()),
            transaction_reference=generate_wallet_reference(),
            payment=payment,
            wallet_type=wallet_type,
            wallet_phone=request.wallet_phone,
        )
        await self.wallet_store.add(transaction)

        expected_version = payment.version
        payment.start_processing()
        await self.payment_store.save(payment, expected_version)
        log_domain_events(payment, self.request_id)

        self.runner.spawn(
            self.wallet_service.process_wallet_payment(str(transaction.id)),
            name=f"wallet-charge-{transaction.transaction_reference}",
        )
        logger.info(
            "Wallet payment scheduled",
            payment_id=str(payment.id),
            wallet_transaction_id=str(transaction.id),
            reference=transaction.transaction_reference,
            wallet_type=wallet_type.value,
            request_id=self.request_id,
        )

    async def _dispatch_cash_on_delivery(self, payment: Payment, request: CreatePaymentDTO) -> None:
        logger.info(
            "Cash on delivery payment awaiting collection",
            payment_id=str(payment.id),
            request_id=self.request_id,
        )

    async def _dispatch_bank_transfer(self, payment: Payment, request: CreatePaymentDTO) -> None:
        if request.bank_reference:
            payment.gateway_transaction_id = request.bank_reference
            await self.payment_store.save(payment, payment.version)
        logger.info(
            "Bank transfer payment awaiting confirmation",
            payment_id=str(payment.id),
            bank_reference=request.bank_reference,
            request_id=self.request_id,
        )

    async def _fail_dispatch(self, payment: Payment, reason: str) -> None:
        """Leave the payment, and its wallet transaction if any, FAILED."""
        transaction = await self.wallet_store.get_by_payment_id(str(payment.id))
        if transaction is not None and not transaction.is_terminal():
            expected_version = transaction.version
            transaction.fail(failure_code=PROCESSING_ERROR, error_message=reason)
            await self.wallet_store.save(transaction, expected_version)

        async with self.locks.acquire(payment_lock_key(str(payment.id))):
            stored = await self.payment_store.get(str(payment.id))
            if stored is None or stored.is_terminal():
                return
            expected_version = stored.version
            stored.fail(reason=reason, failure_code=PROCESSING_ERROR)
            await self.payment_store.save(stored, expected_version)
        log_domain_events(stored, self.request_id)

    # -------------------------------------------------------------------------
    # Manual Transitions
    # -------------------------------------------------------------------------

    async def confirm_payment(
        self, payment_id: str, gateway_transaction_id: str | None = None
    ) -> Payment:
        """Confirm a pending payment and mark its order paid.

        Raises:
            PaymentNotFoundError: If no such payment exists.
            InvalidStateTransitionError: If the payment is not pending, or
                its order was refunded and cannot be paid again.
        """
        payment = await self.get_payment(payment_id)
        _ensure_order_accepts_payment(await self.order_service.get_order(payment.order_id))

        payment = await self._mutate(
            payment_id, "confirm", lambda p: p.confirm(gateway_transaction_id)
        )
        await self.order_service.record_payment_success(payment.order_id)
        return payment

    async def reject_payment(self, payment_id: str, reason: str) -> Payment:
        """Reject an unsettled payment.

        The order-level payment status becomes FAILED unless the order
        is already paid.
        """
        payment = await self._mutate(payment_id, "reject", lambda p: p.reject(reason))
        await self.order_service.record_payment_failure(payment.order_id)
        return payment

    async def refund_payment(self, payment_id: str, reason: str | None = None) -> Payment:
        """Refund a completed payment and mark its order refunded.

        Raises:
            InvalidStateTransitionError: If the payment is not completed.
        """
        payment = await self._mutate(payment_id, "refund", lambda p: p.refund(reason))
        await self.order_service.record_refund(payment.order_id)
        return payment

    async def cancel_payment(self, payment_id: str, reason: str | None = None) -> Payment:
        """Cancel a pending payment. The order is not touched."""
        return await self._mutate(payment_id, "cancel", lambda p: p.cancel(reason))

    async def _mutate(
        self, payment_id: str, operation: str, mutate: Callable[[Payment], None]
    ) -> Payment:
        async with self.locks.acquire(payment_lock_key(payment_id)):
            payment = await self.get_payment(payment_id)
            expected_version = payment.version
            previous_status = payment.status
            mutate(payment)
            await self.payment_store.save(payment, expected_version)

        logger.info(
            "Payment updated",
            payment_id=payment_id,
            operation=operation,
            from_status=previous_status.value,
            to_status=payment.status.value,
            request_id=self.request_id,
        )
        log_domain_events(payment, self.request_id)
        return payment

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> Payment:
        """Get a payment by ID.

        Raises:
            PaymentNotFoundError: If no such payment exists.
        """
        payment = await self.payment_store.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    async def get_payment_by_display_id(self, display_id: str) -> Payment:
        payment = await self.payment_store.get_by_display_id(display_id)
        if payment is None:
            raise PaymentNotFoundError(display_id, field="display_id")
        return payment

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Payment:
        payment = await self.payment_store.get_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFoundError(transaction_id, field="transaction_id")
        return payment

    async def get_wallet_transaction(self, payment_id: str) -> WalletTransaction:
        transaction = await self.wallet_store.get_by_payment_id(payment_id)
        if transaction is None:
            raise WalletTransactionNotFoundError(payment_id, field="payment_id")
        return transaction

    async def list_order_payments(self, order_id: str) -> list[Payment]:
        return await self.payment_store.list_by_order(order_id)

    async def list_payments_by_status(
        self, status: PaymentStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        return await self.payment_store.list_by_status(status, page=page, page_size=page_size)

    async def list_payments_by_method(
        self, method: PaymentMethod, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        return await self.payment_store.list_by_method(method, page=page, page_size=page_size)

    async def get_statistics(self) -> PaymentStatistics:
        """Summarize payment counts and completed amounts."""
        start_of_day = datetime.combine(utcnow().date(), time.min, tzinfo=timezone.utc)
        by_method = await self.payment_store.count_by_method()
        return PaymentStatistics(
            total_payments=await self.payment_store.count(),
            completed_payments=await self.payment_store.count_by_status(PaymentStatus.COMPLETED),
            failed_payments=await self.payment_store.count_by_status(PaymentStatus.FAILED),
            pending_payments=await self.payment_store.count_by_status(PaymentStatus.PENDING),
            processing_payments=await self.payment_store.count_by_status(PaymentStatus.PROCESSING),
            total_completed_amount=await self.payment_store.sum_by_status(PaymentStatus.COMPLETED),
            today_completed_amount=await self.payment_store.sum_by_status(
                PaymentStatus.COMPLETED, since=start_of_day
            ),
            payments_by_method={method.value: count for method, count in by_method.items()},
        )


def get_payment_service(request_id: str | None = None) -> PaymentService:
    """Get payment service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        PaymentService instance.
    """
    return PaymentService(order_service=get_order_service(request_id), request_id=request_id)
