"""Order application service.

Orchestrates order lifecycle management including:
- Creating priced orders
- Status transitions (confirm, start processing, ship, deliver, cancel)
- Order-level payment status updates driven by payments
- Lookups and paginated listings
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from multistore.application.concurrency import (
    KeyedLockRegistry,
    get_lock_registry,
    order_lock_key,
)
from multistore.domain.base import AggregateRoot
from multistore.domain.entities import (
    Order,
    OrderItem,
    format_display_id,
    generate_order_number,
)
from multistore.domain.exceptions import (
    DuplicateResourceError,
    InvalidStateTransitionError,
    OrderNotFoundError,
)
from multistore.domain.pricing import (
    CouponDiscountRule,
    OrderAmounts,
    PercentageTaxRule,
    ShippingRule,
    compute_amounts,
)
from multistore.domain.state_machines import OrderPaymentStatus, OrderStatus
from multistore.domain.value_objects import Address, CustomerInfo
from multistore.infrastructure.config import settings
from multistore.infrastructure.repositories import OrderStore, get_order_store

logger = structlog.get_logger()

ORDER_NUMBER_ATTEMPTS = 3


# ============================================================================
# Order Data Transfer Objects
# ============================================================================


@dataclass
class CreateOrderItemDTO:
    """Order line as submitted by the caller."""

    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    product_name_ar: str | None = None
    product_sku: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateOrderDTO:
    """Order placement request."""

    customer_email: str
    items: list[CreateOrderItemDTO]
    customer_name: str | None = None
    customer_phone: str | None = None
    user_id: str | None = None
    shipping_address: Address | None = None
    billing_address: Address | None = None
    shipping_method: str | None = None
    coupon_code: str | None = None
    notes: str | None = None
    currency: str | None = None


def log_domain_events(aggregate: AggregateRoot, request_id: str | None = None) -> None:
    """Drain and log the events an aggregate recorded since it was loaded."""
    for event in aggregate.collect_events():
        logger.info(
            "Domain event",
            event_type=event.event_type,
            aggregate_type=event.aggregate_type,
            aggregate_id=event.aggregate_id,
            payload=event.to_dict()["payload"],
            request_id=request_id,
        )


# ============================================================================
# Order Service
# ============================================================================


class OrderService:
    """Application service for managing orders.

    Every mutation loads the order under its lock, applies one aggregate
    method and saves with the version it loaded.
    """

    def __init__(
        self,
        order_store: OrderStore | None = None,
        locks: KeyedLockRegistry | None = None,
        request_id: str | None = None,
    ) -> None:
        """Initialize service.

        Args:
            order_store: Order persistence.
            locks: Per-aggregate lock registry.
            request_id: Request ID for correlation.
        """
        self.order_store = order_store or get_order_store()
        self.locks = locks or get_lock_registry()
        self.request_id = request_id

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def price(self, items: list[CreateOrderItemDTO], coupon_code: str | None = None) -> OrderAmounts:
        """Compute order amounts with the configured shipping, tax and coupons.

        Raises:
            ValidationError: If the lines are invalid.
            BusinessRuleError: If the discount exceeds the order value.
        """
        return compute_amounts(
            items,
            currency=settings.default_currency,
            discount_code=coupon_code,
            shipping_rule=ShippingRule(
                flat_amount=settings.flat_shipping_amount,
                free_shipping_threshold=settings.free_shipping_threshold,
            ),
            tax_rule=PercentageTaxRule(settings.tax_rate_percent) if settings.tax_rate_percent else None,
            discount_rule=CouponDiscountRule(settings.coupon_discounts) if settings.coupon_discounts else None,
        )

    async def create_order(self, request: CreateOrderDTO) -> Order:
        """Create a pending order.

        Args:
            request: Order placement request.

        Returns:
            The persisted order.

        Raises:
            ValidationError: If customer or lines are invalid.
            BusinessRuleError: If pricing rules reject the order.
        """
        customer = CustomerInfo(
            email=request.customer_email,
            name=request.customer_name,
            phone=request.customer_phone,
        )
        amounts = self.price(request.items, request.coupon_code)
        if request.currency and request.currency.upper() != amounts.currency:
            logger.info(
                "Order currency overridden by store currency",
                requested=request.currency,
                currency=amounts.currency,
            )
        items = [
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                product_name_ar=item.product_name_ar,
                product_sku=item.product_sku,
                attributes=dict(item.attributes),
            )
            for item in request.items
        ]

        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order = Order.create(
                display_id=format_display_id("ORD", await self.order_store.next_sequence()),
                order_number=generate_order_number(),
                customer=customer,
                items=items,
                amounts=amounts,
                user_id=request.user_id,
                shipping_address=request.shipping_address,
                billing_address=request.billing_address,
                shipping_method=request.shipping_method,
                coupon_code=request.coupon_code,
                notes=request.notes,
            )
            try:
                await self.order_store.add(order)
                break
            except DuplicateResourceError:
                if attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning(
                    "Order number collision, regenerating",
                    order_number=order.order_number,
                    attempt=attempt,
                )

        logger.info(
            "Order created",
            order_id=str(order.id),
            display_id=order.display_id,
            order_number=order.order_number,
            total=str(order.total_amount),
            item_count=order.item_count,
            request_id=self.request_id,
        )
        log_domain_events(order, self.request_id)
        return order

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        """Get an order by ID.

        Raises:
            OrderNotFoundError: If no such order exists.
        """
        order = await self.order_store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_order_by_display_id(self, display_id: str) -> Order:
        order = await self.order_store.get_by_display_id(display_id)
        if order is None:
            raise OrderNotFoundError(display_id, field="display_id")
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        order = await self.order_store.get_by_order_number(order_number)
        if order is None:
            raise OrderNotFoundError(order_number, field="order_number")
        return order

    async def list_orders(self, page: int = 1, page_size: int = 20) -> tuple[list[Order], int]:
        return await self.order_store.list_all(page=page, page_size=page_size)

    async def list_user_orders(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        return await self.order_store.list_by_user(user_id, page=page, page_size=page_size)

    async def list_orders_by_status(
        self, status: OrderStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        return await self.order_store.list_by_status(status, page=page, page_size=page_size)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def confirm_order(self, order_id: str, actor: str = "admin") -> Order:
        """Confirm a pending order manually."""
        return await self._mutate(order_id, "confirm", lambda o: o.confirm(actor=actor))

    async def start_processing(self, order_id: str, actor: str = "admin") -> Order:
        """Start fulfilment of a confirmed order."""
        return await self._mutate(
            order_id, "start_processing", lambda o: o.start_processing(actor=actor)
        )

    async def ship_order(self, order_id: str, tracking_number: str, actor: str = "admin") -> Order:
        """Ship a processing, paid order.

        Raises:
            InvalidStateTransitionError: If not processing or not paid.
            ValidationError: If the tracking number is blank.
        """
        return await self._mutate(
            order_id, "ship", lambda o: o.ship(tracking_number, actor=actor)
        )

    async def deliver_order(self, order_id: str, actor: str = "admin") -> Order:
        """Mark a shipped order as delivered."""
        return await self._mutate(order_id, "deliver", lambda o: o.deliver(actor=actor))

    async def cancel_order(
        self, order_id: str, reason: str | None = None, actor: str = "customer"
    ) -> Order:
        """Cancel a pending or confirmed order."""
        return await self._mutate(
            order_id, "cancel", lambda o: o.cancel(reason=reason, actor=actor)
        )

    async def update_order_status(
        self,
        order_id: str,
        target: OrderStatus,
        tracking_number: str | None = None,
        reason: str | None = None,
        actor: str = "admin",
    ) -> Order:
        """Move an order to a target status through its named operation.

        Args:
            order_id: Order identifier.
            target: Requested status.
            tracking_number: Required when the target is SHIPPED.
            reason: Cancellation reason when the target is CANCELLED.
            actor: Who initiated the change.

        Raises:
            InvalidStateTransitionError: If the target has no operation or
                the operation's guard fails.
        """
        if target == OrderStatus.CONFIRMED:
            return await self.confirm_order(order_id, actor=actor)
        if target == OrderStatus.PROCESSING:
            return await self.start_processing(order_id, actor=actor)
        if target == OrderStatus.SHIPPED:
            return await self.ship_order(order_id, tracking_number or "", actor=actor)
        if target == OrderStatus.DELIVERED:
            return await self.deliver_order(order_id, actor=actor)
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, reason=reason, actor=actor)

        order = await self.get_order(order_id)
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=order.status.value,
            target_state=target.value,
            allowed_transitions=[s.value for s in order.status.allowed_transitions()],
            reason=f"No operation moves an order to '{target.value}'",
        )

    # -------------------------------------------------------------------------
    # Payment Status
    # -------------------------------------------------------------------------

    async def update_payment_status(
        self, order_id: str, new_status: OrderPaymentStatus, actor: str = "system"
    ) -> Order:
        """Set the order-level payment status.

        PAID on a pending order also confirms it.

        Raises:
            OrderNotFoundError: If no such order exists.
            InvalidStateTransitionError: If the status change is not allowed.
        """
        return await self._mutate(
            order_id,
            "update_payment_status",
            lambda o: o.update_payment_status(new_status, actor=actor),
        )

    async def record_payment_success(self, order_id: str) -> Order:
        """Mark the order-level payment status PAID unless a refund already closed it."""
        return await self._apply_payment_outcome(order_id, OrderPaymentStatus.PAID)

    async def record_payment_failure(self, order_id: str) -> Order:
        """Mark the order-level payment status FAILED unless a payment already settled it."""
        return await self._apply_payment_outcome(order_id, OrderPaymentStatus.FAILED)

    async def record_refund(self, order_id: str) -> Order:
        """Mark the order-level payment status REFUNDED when the order was paid."""
        return await self._apply_payment_outcome(order_id, OrderPaymentStatus.REFUNDED)

    async def _apply_payment_outcome(self, order_id: str, target: OrderPaymentStatus) -> Order:
        def apply(order: Order) -> bool:
            if order.payment_status == target:
                return False
            if not order.payment_status.can_transition_to(target):
                logger.info(
                    "Order payment status kept",
                    order_id=order_id,
                    payment_status=order.payment_status.value,
                    requested=target.value,
                    request_id=self.request_id,
                )
                return False
            return order.update_payment_status(target)

        return await self._mutate(order_id, "update_payment_status", apply)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _mutate(
        self,
        order_id: str,
        operation: str,
        mutate: Callable[[Order], bool | None],
    ) -> Order:
        """Load, mutate and save an order under its lock.

        ``mutate`` returning False means nothing changed and the save is
        skipped.
        """
        async with self.locks.acquire(order_lock_key(order_id)):
            order = await self.get_order(order_id)
            expected_version = order.version
            previous_status = order.status
            if mutate(order) is False:
                return order
            await self.order_store.save(order, expected_version)

        logger.info(
            "Order updated",
            order_id=order_id,
            operation=operation,
            from_status=previous_status.value,
            to_status=order.status.value,
            payment_status=order.payment_status.value,
            request_id=self.request_id,
        )
        log_domain_events(order, self.request_id)
        return order


def get_order_service(request_id: str | None = None) -> OrderService:
    """Get order service instance.

    Args:
        request_id: Request ID for correlation.

    Returns:
        OrderService instance.
    """
    return OrderService(request_id=request_id)
