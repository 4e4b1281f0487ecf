"""Domain events for the multistore order and payment core.

Domain events represent significant occurrences in the domain.
Application services log them after the owning aggregate is persisted;
they also form the audit trail of payment outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from multistore.domain.base import DomainEvent, utcnow


# ============================================================================
# Order Events
# ============================================================================


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Event raised when an order is placed."""

    event_type: ClassVar[str] = "order.created"

    order_id: str = ""
    order_number: str = ""
    user_id: str | None = None
    total: str = "0.00"
    currency: str = ""
    item_count: int = 0

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "total": self.total,
            "currency": self.currency,
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class OrderConfirmed(DomainEvent):
    """Event raised when an order is confirmed."""

    event_type: ClassVar[str] = "order.confirmed"

    order_id: str = ""
    trigger: str = ""  # 'payment' or 'manual'

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {"order_id": self.order_id, "trigger": self.trigger}


@dataclass(frozen=True)
class OrderProcessingStarted(DomainEvent):
    """Event raised when fulfilment of an order starts."""

    event_type: ClassVar[str] = "order.processing"

    order_id: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {"order_id": self.order_id}


@dataclass(frozen=True)
class OrderShipped(DomainEvent):
    """Event raised when order is shipped."""

    event_type: ClassVar[str] = "order.shipped"

    order_id: str = ""
    tracking_number: str | None = None
    shipped_at: datetime = field(default_factory=utcnow)

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "tracking_number": self.tracking_number,
            "shipped_at": self.shipped_at.isoformat(),
        }


@dataclass(frozen=True)
class OrderDelivered(DomainEvent):
    """Event raised when order is delivered."""

    event_type: ClassVar[str] = "order.delivered"

    order_id: str = ""
    delivered_at: datetime = field(default_factory=utcnow)

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "delivered_at": self.delivered_at.isoformat(),
        }


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Event raised when order is cancelled."""

    event_type: ClassVar[str] = "order.cancelled"

    order_id: str = ""
    reason: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {"order_id": self.order_id, "reason": self.reason}


@dataclass(frozen=True)
class OrderPaymentStatusChanged(DomainEvent):
    """Event raised when the order-level payment status changes."""

    event_type: ClassVar[str] = "order.payment_status_changed"

    order_id: str = ""
    from_status: str = ""
    to_status: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }


# ============================================================================
# Payment Events
# ============================================================================


@dataclass(frozen=True)
class PaymentCreated(DomainEvent):
    """Event raised when a payment attempt is recorded."""

    event_type: ClassVar[str] = "payment.created"

    payment_id: str = ""
    order_id: str = ""
    payment_method: str = ""
    amount: str = "0.00"
    currency: str = ""
    transaction_id: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "amount": self.amount,
            "currency": self.currency,
            "transaction_id": self.transaction_id,
        }


@dataclass(frozen=True)
class PaymentStatusChanged(DomainEvent):
    """Event raised on every payment state transition."""

    event_type: ClassVar[str] = "payment.status_changed"

    payment_id: str = ""
    order_id: str = ""
    from_status: str = ""
    to_status: str = ""
    reason: str | None = None

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "reason": self.reason,
        }


# ============================================================================
# Wallet Transaction Events
# ============================================================================


@dataclass(frozen=True)
class WalletTransactionStatusChanged(DomainEvent):
    """Event raised on every wallet transaction state transition."""

    event_type: ClassVar[str] = "wallet_transaction.status_changed"

    wallet_transaction_id: str = ""
    payment_id: str = ""
    transaction_reference: str = ""
    from_status: str = ""
    to_status: str = ""
    failure_code: str | None = None

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "wallet_transaction_id": self.wallet_transaction_id,
            "payment_id": self.payment_id,
            "transaction_reference": self.transaction_reference,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "failure_code": self.failure_code,
        }


# ============================================================================
# Event Registry
# ============================================================================


EVENT_REGISTRY: dict[str, type[DomainEvent]] = {
    # Order events
    OrderCreated.event_type: OrderCreated,
    OrderConfirmed.event_type: OrderConfirmed,
    OrderProcessingStarted.event_type: OrderProcessingStarted,
    OrderShipped.event_type: OrderShipped,
    OrderDelivered.event_type: OrderDelivered,
    OrderCancelled.event_type: OrderCancelled,
    OrderPaymentStatusChanged.event_type: OrderPaymentStatusChanged,
    # Payment events
    PaymentCreated.event_type: PaymentCreated,
    PaymentStatusChanged.event_type: PaymentStatusChanged,
    # Wallet events
    WalletTransactionStatusChanged.event_type: WalletTransactionStatusChanged,
}


def get_event_class(event_type: str) -> type[DomainEvent] | None:
    """Get event class by event type string.

    Args:
        event_type: Event type identifier (e.g., 'order.created').

    Returns:
        Event class if found, None otherwise.
    """
    return EVENT_REGISTRY.get(event_type)
