"""Domain layer - Aggregates, value objects, state machines, domain events.

This module exports the core domain building blocks:

- **Entities**: Objects with identity (Order, Payment, WalletTransaction)
- **Value Objects**: Immutable objects compared by value (Money, Address, typed IDs)
- **State Machines**: Deterministic state transitions (OrderStatus, PaymentStatus)
- **Pricing**: Order amount calculation with pluggable rules
- **Domain Events**: Represent significant domain occurrences
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from multistore.domain import OrderItem, ShippingRule, compute_amounts

    items = [OrderItem(product_id="p-1", product_name="Coffee", quantity=2,
                       unit_price=Decimal("100.00"))]
    amounts = compute_amounts(items, shipping_rule=ShippingRule(Decimal("5.00")))
    print(amounts.total)  # 205.00 YER
"""

# Base classes
from multistore.domain.base import AggregateRoot, DomainEvent, Entity, ValueObject

# Entities
from multistore.domain.entities import (
    Order,
    OrderItem,
    Payment,
    WalletTransaction,
    format_display_id,
    generate_order_number,
    generate_transaction_id,
    generate_wallet_reference,
)

# Events
from multistore.domain.events import EVENT_REGISTRY, get_event_class

# Exceptions
from multistore.domain.exceptions import (
    BusinessRuleError,
    ConcurrencyError,
    DomainError,
    DuplicateResourceError,
    GatewayDeclinedError,
    GatewayError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    IntegrityError,
    InvalidStateTransitionError,
    InvalidWalletPhoneError,
    NotFoundError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PaymentProcessingError,
    ValidationError,
    WalletTransactionNotFoundError,
)

# Pricing
from multistore.domain.pricing import (
    CouponDiscountRule,
    OrderAmounts,
    PercentageTaxRule,
    ShippingRule,
    compute_amounts,
)

# State machines
from multistore.domain.state_machines import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
)

# Value objects
from multistore.domain.value_objects import (
    DEFAULT_CURRENCY,
    Address,
    CustomerInfo,
    Money,
    OrderId,
    PaymentId,
    PaymentMethod,
    WalletTransactionId,
    WalletType,
)

__all__ = [
    # Base
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Entities
    "Order",
    "OrderItem",
    "Payment",
    "WalletTransaction",
    "format_display_id",
    "generate_order_number",
    "generate_transaction_id",
    "generate_wallet_reference",
    # Events
    "EVENT_REGISTRY",
    "get_event_class",
    # Exceptions
    "BusinessRuleError",
    "ConcurrencyError",
    "DomainError",
    "DuplicateResourceError",
    "GatewayDeclinedError",
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "IntegrityError",
    "InvalidStateTransitionError",
    "InvalidWalletPhoneError",
    "NotFoundError",
    "OrderNotFoundError",
    "PaymentNotFoundError",
    "PaymentProcessingError",
    "ValidationError",
    "WalletTransactionNotFoundError",
    # Pricing
    "CouponDiscountRule",
    "OrderAmounts",
    "PercentageTaxRule",
    "ShippingRule",
    "compute_amounts",
    # State machines
    "OrderPaymentStatus",
    "OrderStatus",
    "PaymentStatus",
    # Value objects
    "DEFAULT_CURRENCY",
    "Address",
    "CustomerInfo",
    "Money",
    "OrderId",
    "PaymentId",
    "PaymentMethod",
    "WalletTransactionId",
    "WalletType",
]
