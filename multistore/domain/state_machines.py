"""State machines for domain entities.

Deterministic state machines that define valid state transitions
for orders, the order-level payment status, payments and wallet
transactions. Aggregates consult these tables before mutating.
"""

from enum import Enum

from multistore.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        PENDING ─────────────────────────────► CANCELLED
          │                                       ▲
          │ confirm (manual or payment PAID)      │
          ▼                                       │
        CONFIRMED ────────────────────────────────┘
          │
          │ start_processing
          ▼
        PROCESSING
          │
          │ ship (requires payment_status == PAID)
          ▼
        SHIPPED
          │
          │ deliver
          ▼
        DELIVERED

    REFUNDED is a recognised value with no inbound transition.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_ORDER_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_cancellable(self) -> bool:
        """Check if order can be cancelled.

        Returns:
            True if order is pending or confirmed.
        """
        return self in {OrderStatus.PENDING, OrderStatus.CONFIRMED}

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no further transitions are possible.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0

    @property
    def display_name_ar(self) -> str:
        return _ORDER_STATUS_AR[self]


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal state
    OrderStatus.CANCELLED: set(),  # Terminal state
    OrderStatus.REFUNDED: set(),  # Terminal state
}

_ORDER_STATUS_AR: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "في الانتظار",
    OrderStatus.CONFIRMED: "مؤكد",
    OrderStatus.PROCESSING: "قيد التجهيز",
    OrderStatus.SHIPPED: "تم الشحن",
    OrderStatus.DELIVERED: "تم التسليم",
    OrderStatus.CANCELLED: "ملغي",
    OrderStatus.REFUNDED: "مسترد",
}


# ============================================================================
# Order-Level Payment Status
# ============================================================================


class OrderPaymentStatus(str, Enum):
    """Payment summary carried on the order itself.

    State diagram:
        PENDING ──────► FAILED
          │   ▲           │
          │   └───────────┤ retry
          │ pay           │
          ▼               │
        PAID ◄────────────┘
          │
          ├──────────► PARTIALLY_REFUNDED
          │                  │
          ▼                  ▼
        REFUNDED ◄───────────┘
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"

    def can_transition_to(self, target: "OrderPaymentStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderPaymentStatus"]:
        """Get list of valid target states."""
        return sorted(_ORDER_PAYMENT_TRANSITIONS.get(self, set()), key=lambda s: s.value)


_ORDER_PAYMENT_TRANSITIONS: dict[OrderPaymentStatus, set[OrderPaymentStatus]] = {
    OrderPaymentStatus.PENDING: {OrderPaymentStatus.PAID, OrderPaymentStatus.FAILED},
    OrderPaymentStatus.FAILED: {OrderPaymentStatus.PENDING, OrderPaymentStatus.PAID},
    OrderPaymentStatus.PAID: {
        OrderPaymentStatus.REFUNDED,
        OrderPaymentStatus.PARTIALLY_REFUNDED,
    },
    OrderPaymentStatus.PARTIALLY_REFUNDED: {OrderPaymentStatus.REFUNDED},
    OrderPaymentStatus.REFUNDED: set(),  # Terminal state
}


# ============================================================================
# Payment State Machine
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle states.

    State diagram:
        PENDING ───────────────┬──────────────► CANCELLED
          │   │                │
          │   │ confirm        │ reject / fail
          │   ▼                ▼
          │ COMPLETED ◄──┐   FAILED
          │   │          │     ▲
          │   │ refund   │     │
          │   ▼          │     │
          │ REFUNDED     │     │
          │              │     │
          │ start_processing   │
          ▼              │     │
        PROCESSING ──────┴─────┘

    Wallet transactions share this vocabulary with their own table:
    a completed wallet transaction is final and never refunded.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["PaymentStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_PAYMENT_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        """Check if the payment outcome is settled.

        COMPLETED still allows a refund but no longer awaits an outcome.

        Returns:
            True unless the payment is pending or processing.
        """
        return self not in {PaymentStatus.PENDING, PaymentStatus.PROCESSING}

    @property
    def display_name_ar(self) -> str:
        return _PAYMENT_STATUS_AR[self]


_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),  # Terminal state
    PaymentStatus.CANCELLED: set(),  # Terminal state
    PaymentStatus.REFUNDED: set(),  # Terminal state
}

_WALLET_TRANSACTION_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

_PAYMENT_STATUS_AR: dict[PaymentStatus, str] = {
    PaymentStatus.PENDING: "في الانتظار",
    PaymentStatus.PROCESSING: "جاري المعالجة",
    PaymentStatus.COMPLETED: "مكتمل",
    PaymentStatus.FAILED: "فشل",
    PaymentStatus.CANCELLED: "ملغي",
    PaymentStatus.REFUNDED: "مسترد",
}


def wallet_transaction_allowed_transitions(current: PaymentStatus) -> list[PaymentStatus]:
    """Get valid target states for a wallet transaction."""
    return sorted(_WALLET_TRANSACTION_TRANSITIONS.get(current, set()), key=lambda s: s.value)


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_order_payment_transition(
    order_id: str,
    current_status: OrderPaymentStatus,
    target_status: OrderPaymentStatus,
) -> None:
    """Validate and raise if an order-level payment status change is invalid.

    Setting the status it already has is accepted.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if current_status == target_status:
        return
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="OrderPayment",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_payment_transition(
    payment_id: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
) -> None:
    """Validate and raise if payment state transition is invalid.

    Args:
        payment_id: Payment identifier for error message.
        current_status: Current payment status.
        target_status: Target payment status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Payment",
            entity_id=payment_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_wallet_transaction_transition(
    transaction_id: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
) -> None:
    """Validate and raise if wallet transaction state transition is invalid.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    allowed = _WALLET_TRANSACTION_TRANSITIONS.get(current_status, set())
    if target_status not in allowed:
        raise InvalidStateTransitionError(
            entity_type="WalletTransaction",
            entity_id=transaction_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[
                s.value for s in wallet_transaction_allowed_transitions(current_status)
            ],
        )
