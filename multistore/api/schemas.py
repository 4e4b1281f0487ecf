"""API schemas for the multistore API.

Pydantic models for request/response validation and serialization.
Every response is wrapped in the bilingual ApiResponse envelope.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from multistore.domain.state_machines import OrderPaymentStatus, OrderStatus, PaymentStatus
from multistore.domain.value_objects import PaymentMethod

T = TypeVar("T")


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope.

    Successful and failed calls share this shape; ``errors`` is only
    populated on failure.
    """

    success: bool = Field(..., description="Whether the call succeeded")
    message: str = Field(..., description="Human-readable message (English)")
    message_ar: str | None = Field(default=None, description="Human-readable message (Arabic)")
    data: T | None = Field(default=None, description="Response payload")
    errors: list[ErrorDetail] | None = Field(default=None, description="Error details")
    status_code: int = Field(default=200, description="HTTP status code")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Server time of the response",
    )
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class PaginatedData(BaseModel, Generic[T]):
    """Page of items."""

    items: list[T] = Field(..., description="Items on this page")
    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


# ============================================================================
# Order Schemas
# ============================================================================


class AddressSchema(BaseModel):
    """Postal address."""

    line1: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    line2: str | None = None
    district: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str = Field(default="YE", min_length=2, max_length=2)


class OrderItemRequest(BaseModel):
    """Order line in a create-order request."""

    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    product_name_ar: str | None = None
    product_sku: str | None = None
    quantity: int = Field(..., description="Quantity (at least 1)")
    unit_price: Decimal = Field(..., description="Unit price (greater than zero)")
    attributes: dict[str, Any] = Field(default_factory=dict)


class CreateOrderRequest(BaseModel):
    """Request to place an order."""

    customer_email: str = Field(..., description="Customer email")
    customer_name: str | None = None
    customer_phone: str | None = None
    user_id: str | None = None
    items: list[OrderItemRequest] = Field(..., description="Order lines")
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    shipping_method: str | None = None
    coupon_code: str | None = None
    notes: str | None = Field(default=None, max_length=2000)


class UpdateOrderStatusRequest(BaseModel):
    """Request to move an order to a new status."""

    status: OrderStatus
    tracking_number: str | None = None
    reason: str | None = None


class UpdatePaymentStatusRequest(BaseModel):
    """Request to set the order-level payment status."""

    payment_status: OrderPaymentStatus


class ShipOrderRequest(BaseModel):
    """Request to ship an order."""

    tracking_number: str = Field(..., description="Carrier tracking number")


class CancelRequest(BaseModel):
    """Request carrying an optional reason."""

    reason: str | None = Field(default=None, max_length=500)


class OrderItemResponse(BaseModel):
    """Order line snapshot."""

    product_id: str
    product_name: str
    product_name_ar: str | None = None
    product_sku: str | None = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    attributes: dict[str, Any] = Field(default_factory=dict)


class StatusHistoryEntry(BaseModel):
    """Status history entry."""

    from_status: str | None = None
    to_status: str
    reason: str | None = None
    actor: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: str


class OrderResponse(BaseModel):
    """Full order representation."""

    id: str
    display_id: str
    order_number: str
    user_id: str | None = None
    status: OrderStatus
    status_ar: str
    payment_status: OrderPaymentStatus
    customer_email: str
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    items: list[OrderItemResponse]
    item_count: int
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    currency: str
    shipping_method: str | None = None
    tracking_number: str | None = None
    coupon_code: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)
    version: int
    created_at: datetime
    updated_at: datetime
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None


# ============================================================================
# Payment Schemas
# ============================================================================


class CreatePaymentRequest(BaseModel):
    """Request to pay for an order."""

    order_id: str = Field(..., description="Order to pay for")
    payment_method: PaymentMethod
    amount: Decimal = Field(..., description="Amount to collect (greater than zero)")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    wallet_phone: str | None = Field(default=None, description="Required for e-wallet methods")
    bank_reference: str | None = Field(default=None, description="Bank transfer reference")
    delivery_address: str | None = None
    notes: str | None = Field(default=None, max_length=2000)


class ConfirmPaymentRequest(BaseModel):
    """Request to confirm a pending payment."""

    gateway_transaction_id: str | None = None


class RejectPaymentRequest(BaseModel):
    """Request to reject a payment."""

    reason: str = Field(..., min_length=1, max_length=500)


class WalletTransactionResponse(BaseModel):
    """Wallet transaction attached to an e-wallet payment."""

    id: str
    display_id: str
    transaction_reference: str
    wallet_type: str
    wallet_phone: str
    status: PaymentStatus
    wallet_transaction_id: str | None = None
    fees: Decimal
    failure_code: str | None = None
    error_message: str | None = None
    attempts: int
    processed_at: datetime | None = None


class PaymentResponse(BaseModel):
    """Full payment representation."""

    id: str
    display_id: str
    transaction_id: str
    order_id: str
    payment_method: PaymentMethod
    payment_method_ar: str
    payment_gateway: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    status_ar: str
    gateway_transaction_id: str | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    delivery_address: str | None = None
    notes: str | None = None
    processed_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    wallet_transaction: WalletTransactionResponse | None = None


class PaymentStatisticsResponse(BaseModel):
    """Aggregate payment figures."""

    total_payments: int
    completed_payments: int
    failed_payments: int
    pending_payments: int
    processing_payments: int
    total_completed_amount: Decimal
    today_completed_amount: Decimal
    payments_by_method: dict[str, int]


class ReconciliationResponse(BaseModel):
    """Outcome of a reconciliation sweep."""

    reconciled: int
    reprocessed: int
    errors: list[dict[str, str]] = Field(default_factory=list)
    mismatched: list[dict[str, str]] = Field(default_factory=list)
