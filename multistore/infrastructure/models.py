"""SQLAlchemy models for database tables.

Provides ORM models for orders, order items, payments, wallet
transactions and display-id sequences. JSON columns use JSONB on
PostgreSQL and plain JSON elsewhere.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from multistore.infrastructure.database import Base

JsonType = JSON().with_variant(JSONB(), "postgresql")
Amount = Numeric(12, 2, asdecimal=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Tracks the full order lifecycle from placement to delivery. The
    version column backs optimistic concurrency on every update.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    display_id = Column(String(20), nullable=False, unique=True)
    order_number = Column(String(50), nullable=False, unique=True)
    user_id = Column(String(36), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)

    # Customer info
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # Addresses (structured blobs)
    shipping_address = Column(JsonType, nullable=True)
    billing_address = Column(JsonType, nullable=True)

    # Totals
    subtotal = Column(Amount, nullable=False)
    tax_amount = Column(Amount, nullable=False, default=0)
    shipping_amount = Column(Amount, nullable=False, default=0)
    discount_amount = Column(Amount, nullable=False, default=0)
    total_amount = Column(Amount, nullable=False)
    currency = Column(String(3), nullable=False, default="YER")

    # Shipping info
    shipping_method = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=True)

    coupon_code = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    # External accounting sync (pass-through)
    external_quote_id = Column(String(100), nullable=True)
    external_invoice_id = Column(String(100), nullable=True)
    external_sync_status = Column(String(50), nullable=True)
    external_synced_at = Column(DateTime(timezone=True), nullable=True)

    status_history = Column(JsonType, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )


class OrderItemModel(Base):
    """Order item model for database persistence.

    Immutable snapshot of a product line, written once with the order.
    """

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(100), nullable=False)
    product_name = Column(String(500), nullable=False)
    product_name_ar = Column(String(500), nullable=True)
    product_sku = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Amount, nullable=False)
    total_price = Column(Amount, nullable=False)
    attributes = Column(JsonType, nullable=True)

    # Relationships
    order = relationship("OrderModel", back_populates="items")


# ============================================================================
# Payment Models
# ============================================================================


class PaymentModel(Base):
    """Payment model for database persistence.

    One row per payment attempt. References its order by id only.
    """

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True)
    display_id = Column(String(20), nullable=False, unique=True)
    transaction_id = Column(String(100), nullable=False, unique=True)
    order_id = Column(String(36), nullable=False, index=True)
    payment_method = Column(String(30), nullable=False, index=True)
    payment_gateway = Column(String(50), nullable=True)
    amount = Column(Amount, nullable=False)
    currency = Column(String(3), nullable=False, default="YER")
    status = Column(String(20), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)
    gateway_transaction_id = Column(String(100), nullable=True)
    gateway_response = Column(JsonType, nullable=True)
    delivery_address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    failure_code = Column(String(30), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class WalletTransactionModel(Base):
    """Wallet transaction model for database persistence."""

    __tablename__ = "wallet_transactions"

    id = Column(String(36), primary_key=True)
    display_id = Column(String(20), nullable=False, unique=True)
    transaction_reference = Column(String(100), nullable=False, unique=True)
    payment_id = Column(
        String(36),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    wallet_type = Column(String(30), nullable=False)
    wallet_phone = Column(String(30), nullable=False)
    amount = Column(Amount, nullable=False)
    currency = Column(String(3), nullable=False, default="YER")
    fees = Column(Amount, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)
    wallet_transaction_id = Column(String(100), nullable=True)
    request_payload = Column(JsonType, nullable=True)
    response_payload = Column(JsonType, nullable=True)
    error_message = Column(Text, nullable=True)
    failure_code = Column(String(30), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now)


# ============================================================================
# Sequences
# ============================================================================


class SequenceModel(Base):
    """Named counters backing human-facing display ids."""

    __tablename__ = "sequences"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
