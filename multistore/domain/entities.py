"""Domain entities for the multistore order and payment core.

Entities are domain objects with identity that persists across state changes.
This module contains the aggregates Order, Payment and WalletTransaction.
Status fields are only ever changed through the transition methods below.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from multistore.domain.base import AggregateRoot, utcnow
from multistore.domain.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderCreated,
    OrderDelivered,
    OrderPaymentStatusChanged,
    OrderProcessingStarted,
    OrderShipped,
    PaymentCreated,
    PaymentStatusChanged,
    WalletTransactionStatusChanged,
)
from multistore.domain.exceptions import InvalidStateTransitionError, ValidationError
from multistore.domain.pricing import OrderAmounts
from multistore.domain.state_machines import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    validate_order_payment_transition,
    validate_order_transition,
    validate_payment_transition,
    validate_wallet_transaction_transition,
)
from multistore.domain.value_objects import (
    DEFAULT_CURRENCY,
    Address,
    CustomerInfo,
    OrderId,
    PaymentId,
    PaymentMethod,
    WalletTransactionId,
    WalletType,
    quantize_amount,
)


# ============================================================================
# Reference Generators
# ============================================================================


def format_display_id(prefix: str, sequence: int) -> str:
    """Format a human-facing id such as 'ORD-000123'."""
    return f"{prefix}-{sequence:06d}"


def generate_order_number(now: datetime | None = None) -> str:
    """Generate a unique order number, e.g. 'ORD-20240131-9F2C11AB'."""
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def generate_transaction_id() -> str:
    """Generate a payment transaction id, e.g. 'TXN-1706700000000-3FA2B1'."""
    return f"TXN-{int(utcnow().timestamp() * 1000)}-{secrets.token_hex(3).upper()}"


def generate_wallet_reference() -> str:
    """Generate a wallet transaction reference, e.g. 'WLT-1706700000000-0C9D2E'."""
    return f"WLT-{int(utcnow().timestamp() * 1000)}-{secrets.token_hex(3).upper()}"


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class OrderItem:
    """A line item in an order.

    Order items are immutable snapshots of the product at the time
    the order was placed.

    Attributes:
        product_id: Product identifier.
        product_name: Product name at time of order.
        quantity: Ordered quantity.
        unit_price: Price per unit at time of order.
        product_name_ar: Arabic product name.
        product_sku: SKU if available.
        attributes: Free-form variant attributes (size, colour...).
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    product_name_ar: str | None = None
    product_sku: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_price", quantize_amount(self.unit_price))

    @property
    def total_price(self) -> Decimal:
        """Unit price multiplied by quantity."""
        return quantize_amount(self.unit_price * self.quantity)


@dataclass(kw_only=True)
class Order(AggregateRoot[OrderId]):
    """Order aggregate root.

    Tracks an order from placement through fulfilment. The order keeps
    its own payment summary (payment_status); shipping reads only that
    summary, never the payments themselves.

    Attributes:
        id: Internal order identifier.
        display_id: Human-facing id, e.g. 'ORD-000123'.
        order_number: Globally unique order number.
        customer: Customer contact details.
        items: Order lines (at least one).
        subtotal: Sum of line totals.
        tax_amount: Tax charged.
        shipping_amount: Shipping charged.
        discount_amount: Discount granted.
        total_amount: subtotal + tax + shipping - discount.
        status: Order lifecycle status.
        payment_status: Order-level payment summary.
        status_history: Append-only audit trail of transitions.
    """

    id: OrderId
    display_id: str
    order_number: str
    customer: CustomerInfo
    items: list[OrderItem] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    shipping_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")
    currency: str = DEFAULT_CURRENCY
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    user_id: str | None = None
    shipping_address: Address | None = None
    billing_address: Address | None = None
    shipping_method: str | None = None
    tracking_number: str | None = None
    coupon_code: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    external_quote_id: str | None = None
    external_invoice_id: str | None = None
    external_sync_status: str | None = None
    external_synced_at: datetime | None = None
    status_history: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        *,
        display_id: str,
        order_number: str,
        customer: CustomerInfo,
        items: list[OrderItem],
        amounts: OrderAmounts,
        user_id: str | None = None,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        shipping_method: str | None = None,
        coupon_code: str | None = None,
        notes: str | None = None,
        order_id: OrderId | None = None,
    ) -> "Order":
        """Create a new pending order.

        Args:
            display_id: Human-facing id.
            order_number: Unique order number.
            customer: Customer contact details.
            items: Order lines, already validated by the calculator.
            amounts: Computed amounts.
            user_id: Owning user, if known.
            shipping_address: Delivery address.
            billing_address: Billing address.
            shipping_method: Chosen shipping method.
            coupon_code: Coupon entered by the customer.
            notes: Free-form order notes.
            order_id: Optional pre-generated order ID.

        Returns:
            New Order in PENDING with payment status PENDING.
        """
        order = cls(
            id=order_id or OrderId.generate(),
            display_id=display_id,
            order_number=order_number,
            customer=customer,
            items=list(items),
            subtotal=amounts.subtotal.amount,
            tax_amount=amounts.tax.amount,
            shipping_amount=amounts.shipping.amount,
            discount_amount=amounts.discount.amount,
            total_amount=amounts.total.amount,
            currency=amounts.currency,
            user_id=user_id,
            shipping_address=shipping_address,
            billing_address=billing_address,
            shipping_method=shipping_method,
            coupon_code=coupon_code,
            notes=notes,
        )
        order.status_history.append(
            {
                "from_status": None,
                "to_status": OrderStatus.PENDING.value,
                "reason": "Order placed",
                "actor": "customer",
                "metadata": None,
                "created_at": order.created_at.isoformat(),
            }
        )
        order._record_event(
            OrderCreated(
                aggregate_id=str(order.id),
                aggregate_type="Order",
                order_id=str(order.id),
                order_number=order_number,
                user_id=user_id,
                total=str(order.total_amount),
                currency=order.currency,
                item_count=order.item_count,
            )
        )
        return order

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def item_count(self) -> int:
        """Sum of all item quantities."""
        return sum(item.quantity for item in self.items)

    @property
    def amounts_balance(self) -> bool:
        """Check the amount identities hold for this order."""
        lines = quantize_amount(sum((i.total_price for i in self.items), start=Decimal("0")))
        expected_total = self.subtotal + self.tax_amount + self.shipping_amount - self.discount_amount
        return lines == self.subtotal and expected_total == self.total_amount

    def can_be_cancelled(self) -> bool:
        return self.status.is_cancellable()

    def is_shippable(self) -> bool:
        """Check whether ship() would succeed right now."""
        return (
            self.status == OrderStatus.PROCESSING
            and self.payment_status == OrderPaymentStatus.PAID
        )

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def confirm(self, trigger: str = "manual", actor: str = "admin") -> None:
        """Confirm the order.

        Args:
            trigger: What caused the confirmation ('manual' or 'payment').
            actor: Who initiated the transition.

        Raises:
            InvalidStateTransitionError: If the order is not pending.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.CONFIRMED)
        self._apply_status(OrderStatus.CONFIRMED, actor=actor, metadata={"trigger": trigger})
        self._record_event(
            OrderConfirmed(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
                trigger=trigger,
            )
        )

    def start_processing(self, actor: str = "admin") -> None:
        """Start fulfilment of a confirmed order.

        Raises:
            InvalidStateTransitionError: If the order is not confirmed.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.PROCESSING)
        self._apply_status(OrderStatus.PROCESSING, actor=actor)
        self._record_event(
            OrderProcessingStarted(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
            )
        )

    def ship(self, tracking_number: str, actor: str = "admin") -> None:
        """Mark order as shipped.

        Only a processing order whose payment status is PAID can ship.

        Args:
            tracking_number: Carrier tracking number.
            actor: Who initiated the transition.

        Raises:
            InvalidStateTransitionError: If not processing or not paid.
            ValidationError: If the tracking number is blank.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.SHIPPED)
        if self.payment_status != OrderPaymentStatus.PAID:
            raise InvalidStateTransitionError(
                entity_type="Order",
                entity_id=str(self.id),
                current_state=self.status.value,
                target_state=OrderStatus.SHIPPED.value,
                allowed_transitions=[s.value for s in self.status.allowed_transitions()],
                reason=f"Order must be paid before shipping (payment status '{self.payment_status.value}')",
            )
        if not tracking_number or not tracking_number.strip():
            raise ValidationError(
                "Tracking number is required to ship an order",
                field="tracking_number",
                message_ar="رقم التتبع مطلوب لشحن الطلب",
            )

        self.tracking_number = tracking_number.strip()
        self.shipped_at = utcnow()
        self._apply_status(
            OrderStatus.SHIPPED,
            actor=actor,
            metadata={"tracking_number": self.tracking_number},
        )
        self._record_event(
            OrderShipped(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
                tracking_number=self.tracking_number,
                shipped_at=self.shipped_at,
            )
        )

    def deliver(self, actor: str = "admin") -> None:
        """Mark order as delivered.

        Raises:
            InvalidStateTransitionError: If the order is not shipped.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.DELIVERED)
        self.delivered_at = utcnow()
        self._apply_status(OrderStatus.DELIVERED, actor=actor)
        self._record_event(
            OrderDelivered(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
                delivered_at=self.delivered_at,
            )
        )

    def cancel(self, reason: str | None = None, actor: str = "customer") -> None:
        """Cancel the order.

        Args:
            reason: Cancellation reason.
            actor: Who initiated cancellation.

        Raises:
            InvalidStateTransitionError: If the order is past CONFIRMED.
        """
        validate_order_transition(str(self.id), self.status, OrderStatus.CANCELLED)
        self.cancellation_reason = reason
        self.cancelled_at = utcnow()
        self._apply_status(OrderStatus.CANCELLED, actor=actor, reason=reason)
        self._record_event(
            OrderCancelled(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
                reason=reason or "",
            )
        )

    def update_payment_status(
        self, new_status: OrderPaymentStatus, actor: str = "system"
    ) -> bool:
        """Set the order-level payment status.

        A PAID status on a pending order also confirms the order. This
        is the only automatic coupling from payments to the order.

        Args:
            new_status: New order-level payment status.
            actor: Who initiated the change.

        Returns:
            True if anything changed, False if the status was already set.

        Raises:
            InvalidStateTransitionError: If the payment status change is invalid.
        """
        validate_order_payment_transition(str(self.id), self.payment_status, new_status)
        if new_status == self.payment_status:
            return False

        previous = self.payment_status
        self.payment_status = new_status
        self._touch()
        self._record_event(
            OrderPaymentStatusChanged(
                aggregate_id=str(self.id),
                aggregate_type="Order",
                order_id=str(self.id),
                from_status=previous.value,
                to_status=new_status.value,
            )
        )

        if new_status == OrderPaymentStatus.PAID and self.status == OrderStatus.PENDING:
            self.confirm(trigger="payment", actor=actor)
        return True

    def _apply_status(
        self,
        target: OrderStatus,
        actor: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        from_status = self.status
        self.status = target
        self._touch()
        self.status_history.append(
            {
                "from_status": from_status.value,
                "to_status": target.value,
                "reason": reason,
                "actor": actor,
                "metadata": metadata,
                "created_at": self.updated_at.isoformat(),
            }
        )


# ============================================================================
# Payment Aggregate Root
# ============================================================================


@dataclass(kw_only=True)
class Payment(AggregateRoot[PaymentId]):
    """Payment aggregate root.

    One payment per attempt; an order may collect several. Payments
    reference their order by id only.

    Attributes:
        id: Internal payment identifier.
        display_id: Human-facing id, e.g. 'PAY-000001'.
        transaction_id: Unique local transaction id ('TXN-...').
        order_id: Owning order id.
        payment_method: How the customer pays.
        amount: Amount to collect (> 0).
        status: Payment lifecycle status.
        payment_gateway: '<method>_gateway' for e-wallets, None otherwise.
        gateway_transaction_id: Provider or bank reference.
        failure_reason: Human-readable failure reason.
        failure_code: Machine-readable failure kind.
    """

    id: PaymentId
    display_id: str
    transaction_id: str
    order_id: str
    payment_method: PaymentMethod
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    status: PaymentStatus = PaymentStatus.PENDING
    payment_gateway: str | None = None
    gateway_transaction_id: str | None = None
    gateway_response: dict[str, Any] | None = None
    delivery_address: str | None = None
    notes: str | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    processed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        *,
        display_id: str,
        transaction_id: str,
        order_id: str,
        payment_method: PaymentMethod,
        amount: Decimal,
        currency: str = DEFAULT_CURRENCY,
        delivery_address: str | None = None,
        notes: str | None = None,
        payment_id: PaymentId | None = None,
    ) -> "Payment":
        """Create a new pending payment.

        Raises:
            ValidationError: If amount is not positive.
        """
        amount = quantize_amount(amount)
        if amount <= 0:
            raise ValidationError(
                "Payment amount must be greater than zero",
                field="amount",
                message_ar="يجب أن يكون مبلغ الدفع أكبر من صفر",
            )
        payment = cls(
            id=payment_id or PaymentId.generate(),
            display_id=display_id,
            transaction_id=transaction_id,
            order_id=order_id,
            payment_method=payment_method,
            amount=amount,
            currency=currency.upper(),
            payment_gateway=payment_method.gateway_name,
            delivery_address=delivery_address,
            notes=notes,
        )
        payment._record_event(
            PaymentCreated(
                aggregate_id=str(payment.id),
                aggregate_type="Payment",
                payment_id=str(payment.id),
                order_id=order_id,
                payment_method=payment_method.value,
                amount=str(amount),
                currency=payment.currency,
                transaction_id=transaction_id,
            )
        )
        return payment

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    def can_be_processed(self) -> bool:
        return self.status == PaymentStatus.PENDING

    def is_successful(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def start_processing(self) -> None:
        """Hand the payment to an asynchronous processor.

        Raises:
            InvalidStateTransitionError: If not pending.
        """
        self._transition(PaymentStatus.PROCESSING)

    def confirm(self, gateway_transaction_id: str | None = None) -> None:
        """Confirm a pending payment manually (cash collected, transfer seen).

        Args:
            gateway_transaction_id: External reference, if any.

        Raises:
            InvalidStateTransitionError: If the payment is not pending.
        """
        if self.status != PaymentStatus.PENDING:
            raise InvalidStateTransitionError(
                entity_type="Payment",
                entity_id=str(self.id),
                current_state=self.status.value,
                target_state=PaymentStatus.COMPLETED.value,
                allowed_transitions=[s.value for s in self.status.allowed_transitions()],
                reason="Only pending payments can be confirmed",
            )
        if gateway_transaction_id:
            self.gateway_transaction_id = gateway_transaction_id
        self.processed_at = utcnow()
        self._transition(PaymentStatus.COMPLETED, reason="confirmed")

    def complete(
        self,
        gateway_transaction_id: str | None,
        gateway_response: dict[str, Any] | None = None,
    ) -> None:
        """Record a successful gateway outcome.

        Raises:
            InvalidStateTransitionError: If the payment is already settled.
        """
        validate_payment_transition(str(self.id), self.status, PaymentStatus.COMPLETED)
        self.gateway_transaction_id = gateway_transaction_id or self.gateway_transaction_id
        self.gateway_response = gateway_response
        self.processed_at = utcnow()
        self._transition(PaymentStatus.COMPLETED, reason="gateway_completed")

    def fail(
        self,
        reason: str,
        failure_code: str,
        gateway_response: dict[str, Any] | None = None,
    ) -> None:
        """Mark the payment as failed.

        Args:
            reason: Human-readable failure reason.
            failure_code: Machine-readable failure kind.
            gateway_response: Raw gateway response, if any.

        Raises:
            InvalidStateTransitionError: If the payment is already settled.
        """
        validate_payment_transition(str(self.id), self.status, PaymentStatus.FAILED)
        self.failure_reason = reason
        self.failure_code = failure_code
        if gateway_response is not None:
            self.gateway_response = gateway_response
        self.processed_at = utcnow()
        self._transition(PaymentStatus.FAILED, reason=reason)

    def reject(self, reason: str) -> None:
        """Reject the payment manually.

        Raises:
            InvalidStateTransitionError: If the payment is already settled.
        """
        self.fail(reason=reason, failure_code="rejected")

    def refund(self, reason: str | None = None) -> None:
        """Refund a completed payment.

        Raises:
            InvalidStateTransitionError: If the payment is not completed.
        """
        self._transition(PaymentStatus.REFUNDED, reason=reason or "refunded")

    def cancel(self, reason: str | None = None) -> None:
        """Cancel a payment that has not been processed yet.

        Raises:
            InvalidStateTransitionError: If the payment is not pending.
        """
        self._transition(PaymentStatus.CANCELLED, reason=reason or "cancelled")

    def _transition(self, target: PaymentStatus, reason: str | None = None) -> None:
        validate_payment_transition(str(self.id), self.status, target)
        from_status = self.status
        self.status = target
        self._touch()
        self._record_event(
            PaymentStatusChanged(
                aggregate_id=str(self.id),
                aggregate_type="Payment",
                payment_id=str(self.id),
                order_id=self.order_id,
                from_status=from_status.value,
                to_status=target.value,
                reason=reason,
            )
        )


# ============================================================================
# Wallet Transaction Aggregate
# ============================================================================


@dataclass(kw_only=True)
class WalletTransaction(AggregateRoot[WalletTransactionId]):
    """Gateway-facing record of an e-wallet payment.

    Created alongside an e-wallet Payment. Once terminal it is never
    resurrected; a retry is a new Payment with a new transaction.

    Attributes:
        id: Internal identifier.
        display_id: Human-facing id, e.g. 'WTX-000001'.
        transaction_reference: Local unique reference sent to the gateway.
        payment_id: Owning payment id.
        wallet_type: Wallet provider.
        wallet_phone: Customer wallet phone number.
        amount: Amount to charge (equals the payment amount).
        wallet_transaction_id: Provider's transaction id, on success.
        failure_code: 'declined', 'timeout', 'gateway_error' or 'processing_error'.
        attempts: Gateway calls made so far.
    """

    id: WalletTransactionId
    display_id: str
    transaction_reference: str
    payment_id: str
    wallet_type: WalletType
    wallet_phone: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    fees: Decimal = Decimal("0.00")
    status: PaymentStatus = PaymentStatus.PENDING
    wallet_transaction_id: str | None = None
    request_payload: dict[str, Any] | None = None
    response_payload: dict[str, Any] | None = None
    error_message: str | None = None
    failure_code: str | None = None
    attempts: int = 0
    processed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        *,
        display_id: str,
        transaction_reference: str,
        payment: Payment,
        wallet_type: WalletType,
        wallet_phone: str,
    ) -> "WalletTransaction":
        """Create a pending wallet transaction for an e-wallet payment."""
        return cls(
            id=WalletTransactionId.generate(),
            display_id=display_id,
            transaction_reference=transaction_reference,
            payment_id=str(payment.id),
            wallet_type=wallet_type,
            wallet_phone=wallet_phone,
            amount=payment.amount,
            currency=payment.currency,
            request_payload={
                "transaction_reference": transaction_reference,
                "wallet_type": wallet_type.value,
                "wallet_phone": wallet_phone,
                "amount": str(payment.amount),
                "currency": payment.currency,
            },
        )

    def is_terminal(self) -> bool:
        return self.status.is_terminal()

    def is_stale(self, stale_after: timedelta, now: datetime | None = None) -> bool:
        """Check if a non-terminal transaction has not moved for too long."""
        if self.is_terminal():
            return False
        return (now or utcnow()) - self.updated_at >= stale_after

    def record_attempt(self) -> None:
        self.attempts += 1

    def start_processing(self) -> None:
        """Mark the transaction as in flight with the gateway.

        Raises:
            InvalidStateTransitionError: If not pending.
        """
        self._transition(PaymentStatus.PROCESSING)

    def complete(
        self,
        wallet_transaction_id: str,
        response_payload: dict[str, Any] | None = None,
        fees: Decimal | None = None,
    ) -> None:
        """Record a successful charge.

        Raises:
            InvalidStateTransitionError: If not processing.
        """
        validate_wallet_transaction_transition(str(self.id), self.status, PaymentStatus.COMPLETED)
        self.wallet_transaction_id = wallet_transaction_id
        self.response_payload = response_payload
        if fees is not None:
            self.fees = quantize_amount(fees)
        self.processed_at = utcnow()
        self._transition(PaymentStatus.COMPLETED)

    def fail(
        self,
        failure_code: str,
        error_message: str,
        response_payload: dict[str, Any] | None = None,
    ) -> None:
        """Record a failed charge.

        Raises:
            InvalidStateTransitionError: If already terminal.
        """
        validate_wallet_transaction_transition(str(self.id), self.status, PaymentStatus.FAILED)
        self.failure_code = failure_code
        self.error_message = error_message
        if response_payload is not None:
            self.response_payload = response_payload
        self.processed_at = utcnow()
        self._transition(PaymentStatus.FAILED)

    def _transition(self, target: PaymentStatus) -> None:
        validate_wallet_transaction_transition(str(self.id), self.status, target)
        from_status = self.status
        self.status = target
        self._touch()
        self._record_event(
            WalletTransactionStatusChanged(
                aggregate_id=str(self.id),
                aggregate_type="WalletTransaction",
                wallet_transaction_id=str(self.id),
                payment_id=self.payment_id,
                transaction_reference=self.transaction_reference,
                from_status=from_status.value,
                to_status=target.value,
                failure_code=self.failure_code,
            )
        )
