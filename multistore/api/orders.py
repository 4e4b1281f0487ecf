"""Order API endpoints.

Provides endpoints for order lifecycle management:
- POST /api/v1/orders - place an order
- GET /api/v1/orders - list orders (paginated)
- GET /api/v1/orders/{id}, /display/{display_id}, /number/{order_number}
- GET /api/v1/orders/user/{user_id}, /status/{status}
- PUT /api/v1/orders/{id}/status - move to a status through its operation
- PUT /api/v1/orders/{id}/payment-status - set the order-level payment status
- PUT /api/v1/orders/{id}/ship, /deliver, /cancel
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from multistore.api.responses import page_of, success
from multistore.api.schemas import (
    AddressSchema,
    ApiResponse,
    CancelRequest,
    CreateOrderRequest,
    OrderItemResponse,
    OrderResponse,
    PaginatedData,
    ShipOrderRequest,
    StatusHistoryEntry,
    UpdateOrderStatusRequest,
    UpdatePaymentStatusRequest,
)
from multistore.application.order_service import (
    CreateOrderDTO,
    CreateOrderItemDTO,
    OrderService,
    get_order_service,
)
from multistore.domain.entities import Order
from multistore.domain.state_machines import OrderStatus
from multistore.domain.value_objects import Address

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> OrderService:
    """Get order service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_order_service(request_id=request_id)


# ============================================================================
# Converters
# ============================================================================


def _address_schema(address: Address | None) -> AddressSchema | None:
    if address is None:
        return None
    return AddressSchema(**address.to_dict())


def _address(schema: AddressSchema | None) -> Address | None:
    if schema is None:
        return None
    return Address(**schema.model_dump())


def order_to_response(order: Order) -> OrderResponse:
    """Convert an Order aggregate to OrderResponse."""
    return OrderResponse(
        id=str(order.id),
        display_id=order.display_id,
        order_number=order.order_number,
        user_id=order.user_id,
        status=order.status,
        status_ar=order.status.display_name_ar,
        payment_status=order.payment_status,
        customer_email=order.customer.email,
        customer_name=order.customer.name,
        customer_phone=order.customer.phone,
        shipping_address=_address_schema(order.shipping_address),
        billing_address=_address_schema(order.billing_address),
        items=[
            OrderItemResponse(
                product_id=item.product_id,
                product_name=item.product_name,
                product_name_ar=item.product_name_ar,
                product_sku=item.product_sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                attributes=item.attributes,
            )
            for item in order.items
        ],
        item_count=order.item_count,
        subtotal=order.subtotal,
        tax_amount=order.tax_amount,
        shipping_amount=order.shipping_amount,
        discount_amount=order.discount_amount,
        total_amount=order.total_amount,
        currency=order.currency,
        shipping_method=order.shipping_method,
        tracking_number=order.tracking_number,
        coupon_code=order.coupon_code,
        notes=order.notes,
        cancellation_reason=order.cancellation_reason,
        status_history=[StatusHistoryEntry(**entry) for entry in order.status_history],
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
        shipped_at=order.shipped_at,
        delivered_at=order.delivered_at,
        cancelled_at=order.cancelled_at,
    )


def _page(orders: list[Order], total: int, page: int, page_size: int) -> PaginatedData:
    return page_of([order_to_response(o) for o in orders], total, page, page_size)


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    request: Request,
    body: CreateOrderRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    """Create a pending order priced with the store's shipping, tax and coupon rules."""
    order = await service.create_order(
        CreateOrderDTO(
            customer_email=body.customer_email,
            customer_name=body.customer_name,
            customer_phone=body.customer_phone,
            user_id=body.user_id,
            items=[CreateOrderItemDTO(**item.model_dump()) for item in body.items],
            shipping_address=_address(body.shipping_address),
            billing_address=_address(body.billing_address),
            shipping_method=body.shipping_method,
            coupon_code=body.coupon_code,
            notes=body.notes,
        )
    )
    return success(
        request,
        order_to_response(order),
        message="Order created successfully",
        message_ar="تم إنشاء الطلب بنجاح",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("", response_model=ApiResponse[PaginatedData[OrderResponse]], summary="List orders")
async def list_orders(
    request: Request,
    service: Annotated[OrderService, Depends(get_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    orders, total = await service.list_orders(page=page, page_size=page_size)
    return success(
        request,
        _page(orders, total, page, page_size),
        message="Orders retrieved",
        message_ar="تم جلب الطلبات",
    )


@router.get(
    "/display/{display_id}",
    response_model=ApiResponse[OrderResponse],
    summary="Get order by display id",
)
async def get_order_by_display_id(
    request: Request,
    display_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.get_order_by_display_id(display_id)
    return success(request, order_to_response(order), "Order retrieved", "تم جلب الطلب")


@router.get(
    "/number/{order_number}",
    response_model=ApiResponse[OrderResponse],
    summary="Get order by order number",
)
async def get_order_by_number(
    request: Request,
    order_number: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.get_order_by_number(order_number)
    return success(request, order_to_response(order), "Order retrieved", "تم جلب الطلب")


@router.get(
    "/user/{user_id}",
    response_model=ApiResponse[PaginatedData[OrderResponse]],
    summary="List a user's orders",
)
async def list_user_orders(
    request: Request,
    user_id: str,
    service: Annotated[OrderService, Depends(get_service)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiResponse:
    orders, total = await service.list_user_orders(user_id, page=page, page_size=page_size)
    return success(
        request,
        _page(orders, total, page, page_size),
        message="Orders retrieved",
        message_ar="تم جلب الطلبات",
    )


@router.get(
    "/status/{order_status}",
    response_model=ApiResponse[PaginatedData[OrderResponse]],
    summary="List orders in a status",
)
async def list_orders_by_status(
    request: Request,
    order_status: OrderStatus,
    service: Annotated[OrderService, Depends(get_service)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiResponse:
    orders, total = await service.list_orders_by_status(order_status, page=page, page_size=page_size)
    return success(
        request,
        _page(orders, total, page, page_size),
        message="Orders retrieved",
        message_ar="تم جلب الطلبات",
    )


@router.get("/{order_id}", response_model=ApiResponse[OrderResponse], summary="Get order")
async def get_order(
    request: Request,
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.get_order(order_id)
    return success(request, order_to_response(order), "Order retrieved", "تم جلب الطلب")


@router.put(
    "/{order_id}/status",
    response_model=ApiResponse[OrderResponse],
    summary="Update order status",
)
async def update_order_status(
    request: Request,
    order_id: str,
    body: UpdateOrderStatusRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    """Move the order to a status through the operation that owns it."""
    order = await service.update_order_status(
        order_id,
        body.status,
        tracking_number=body.tracking_number,
        reason=body.reason,
    )
    return success(
        request,
        order_to_response(order),
        message="Order status updated",
        message_ar="تم تحديث حالة الطلب",
    )


@router.put(
    "/{order_id}/payment-status",
    response_model=ApiResponse[OrderResponse],
    summary="Update order payment status",
)
async def update_payment_status(
    request: Request,
    order_id: str,
    body: UpdatePaymentStatusRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.update_payment_status(order_id, body.payment_status, actor="admin")
    return success(
        request,
        order_to_response(order),
        message="Order payment status updated",
        message_ar="تم تحديث حالة الدفع للطلب",
    )


@router.put("/{order_id}/ship", response_model=ApiResponse[OrderResponse], summary="Ship order")
async def ship_order(
    request: Request,
    order_id: str,
    body: ShipOrderRequest,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.ship_order(order_id, body.tracking_number)
    return success(request, order_to_response(order), "Order shipped", "تم شحن الطلب")


@router.put(
    "/{order_id}/deliver", response_model=ApiResponse[OrderResponse], summary="Deliver order"
)
async def deliver_order(
    request: Request,
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
) -> ApiResponse:
    order = await service.deliver_order(order_id)
    return success(request, order_to_response(order), "Order delivered", "تم تسليم الطلب")


@router.put("/{order_id}/cancel", response_model=ApiResponse[OrderResponse], summary="Cancel order")
async def cancel_order(
    request: Request,
    order_id: str,
    service: Annotated[OrderService, Depends(get_service)],
    body: CancelRequest | None = None,
) -> ApiResponse:
    order = await service.cancel_order(order_id, reason=body.reason if body else None)
    return success(request, order_to_response(order), "Order cancelled", "تم إلغاء الطلب")
