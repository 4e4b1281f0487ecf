"""Payment API endpoints.

Provides endpoints for payment lifecycle management:
- POST /api/v1/payments - create and dispatch a payment
- GET /api/v1/payments/{id}, /display/{display_id}, /transaction/{transaction_id}
- GET /api/v1/payments/order/{order_id}, /status/{status}, /method/{method}
- GET /api/v1/payments/statistics
- PUT /api/v1/payments/{id}/confirm, /reject, /refund, /cancel
- POST /api/v1/payments/reconcile - recovery sweep for wallet payments
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from multistore.api.responses import page_of, success
from multistore.api.schemas import (
    ApiResponse,
    CancelRequest,
    ConfirmPaymentRequest,
    CreatePaymentRequest,
    PaginatedData,
    PaymentResponse,
    PaymentStatisticsResponse,
    ReconciliationResponse,
    RejectPaymentRequest,
    WalletTransactionResponse,
)
from multistore.application.payment_service import (
    CreatePaymentDTO,
    PaymentService,
    get_payment_service,
)
from multistore.domain.entities import Payment, WalletTransaction
from multistore.domain.state_machines import PaymentStatus
from multistore.domain.value_objects import PaymentMethod

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service(request: Request) -> PaymentService:
    """Get payment service with request ID."""
    request_id = getattr(request.state, "request_id", None)
    return get_payment_service(request_id=request_id)


# ============================================================================
# Converters
# ============================================================================


def wallet_transaction_to_response(transaction: WalletTransaction) -> WalletTransactionResponse:
    return WalletTransactionResponse(
        id=str(transaction.id),
        display_id=transaction.display_id,
        transaction_reference=transaction.transaction_reference,
        wallet_type=transaction.wallet_type.value,
        wallet_phone=transaction.wallet_phone,
        status=transaction.status,
        wallet_transaction_id=transaction.wallet_transaction_id,
        fees=transaction.fees,
        failure_code=transaction.failure_code,
        error_message=transaction.error_message,
        attempts=transaction.attempts,
        processed_at=transaction.processed_at,
    )


def payment_to_response(
    payment: Payment, transaction: WalletTransaction | None = None
) -> PaymentResponse:
    """Convert a Payment aggregate to PaymentResponse."""
    return PaymentResponse(
        id=str(payment.id),
        display_id=payment.display_id,
        transaction_id=payment.transaction_id,
        order_id=payment.order_id,
        payment_method=payment.payment_method,
        payment_method_ar=payment.payment_method.display_name_ar,
        payment_gateway=payment.payment_gateway,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        status_ar=payment.status.display_name_ar,
        gateway_transaction_id=payment.gateway_transaction_id,
        failure_reason=payment.failure_reason,
        failure_code=payment.failure_code,
        delivery_address=payment.delivery_address,
        notes=payment.notes,
        processed_at=payment.processed_at,
        version=payment.version,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
        wallet_transaction=wallet_transaction_to_response(transaction) if transaction else None,
    )


async def _detailed(service: PaymentService, payment: Payment) -> PaymentResponse:
    transaction = None
    if payment.payment_method.is_e_wallet():
        transaction = await service.wallet_store.get_by_payment_id(str(payment.id))
    return payment_to_response(payment, transaction)


def _page(payments: list[Payment], total: int, page: int, page_size: int) -> PaginatedData:
    return page_of([payment_to_response(p) for p in payments], total, page, page_size)


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=ApiResponse[PaymentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
)
async def create_payment(
    request: Request,
    body: CreatePaymentRequest,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    """Create a payment and dispatch it by method.

    E-wallet payments come back PROCESSING; poll GET /payments/{id}
    for the outcome.
    """
    payment = await service.create_payment(CreatePaymentDTO(**body.model_dump()))
    return success(
        request,
        await _detailed(service, payment),
        message="Payment created successfully",
        message_ar="تم إنشاء الدفع بنجاح",
        status_code=status.HTTP_201_CREATED,
    )


@router.post(
    "/reconcile",
    response_model=ApiResponse[ReconciliationResponse],
    summary="Reconcile interrupted wallet payments",
)
async def reconcile_payments(
    request: Request,
    service: Annotated[PaymentService, Depends(get_service)],
    stale_after_seconds: int | None = Query(default=None, ge=0),
) -> ApiResponse:
    stale_after = timedelta(seconds=stale_after_seconds) if stale_after_seconds is not None else None
    report = await service.wallet_service.reconcile_pending(stale_after)
    return success(
        request,
        ReconciliationResponse(
            reconciled=report.reconciled,
            reprocessed=report.reprocessed,
            errors=report.errors,
            mismatched=report.mismatched,
        ),
        message="Reconciliation finished",
        message_ar="اكتملت المطابقة",
    )


@router.get(
    "/statistics",
    response_model=ApiResponse[PaymentStatisticsResponse],
    summary="Payment statistics",
)
async def get_statistics(
    request: Request,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    stats = await service.get_statistics()
    return success(
        request,
        PaymentStatisticsResponse(**vars(stats)),
        message="Payment statistics retrieved",
        message_ar="تم جلب إحصائيات المدفوعات",
    )


@router.get(
    "/display/{display_id}",
    response_model=ApiResponse[PaymentResponse],
    summary="Get payment by display id",
)
async def get_payment_by_display_id(
    request: Request,
    display_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    payment = await service.get_payment_by_display_id(display_id)
    return success(request, await _detailed(service, payment), "Payment retrieved", "تم جلب الدفع")


@router.get(
    "/transaction/{transaction_id}",
    response_model=ApiResponse[PaymentResponse],
    summary="Get payment by transaction id",
)
async def get_payment_by_transaction_id(
    request: Request,
    transaction_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    payment = await service.get_payment_by_transaction_id(transaction_id)
    return success(request, await _detailed(service, payment), "Payment retrieved", "تم جلب الدفع")


@router.get(
    "/order/{order_id}",
    response_model=ApiResponse[list[PaymentResponse]],
    summary="List an order's payments",
)
async def list_order_payments(
    request: Request,
    order_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    payments = await service.list_order_payments(order_id)
    return success(
        request,
        [payment_to_response(p) for p in payments],
        message="Payments retrieved",
        message_ar="تم جلب المدفوعات",
    )


@router.get(
    "/status/{payment_status}",
    response_model=ApiResponse[PaginatedData[PaymentResponse]],
    summary="List payments in a status",
)
async def list_payments_by_status(
    request: Request,
    payment_status: PaymentStatus,
    service: Annotated[PaymentService, Depends(get_service)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiResponse:
    payments, total = await service.list_payments_by_status(
        payment_status, page=page, page_size=page_size
    )
    return success(
        request,
        _page(payments, total, page, page_size),
        message="Payments retrieved",
        message_ar="تم جلب المدفوعات",
    )


@router.get(
    "/method/{payment_method}",
    response_model=ApiResponse[PaginatedData[PaymentResponse]],
    summary="List payments by method",
)
async def list_payments_by_method(
    request: Request,
    payment_method: PaymentMethod,
    service: Annotated[PaymentService, Depends(get_service)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> ApiResponse:
    payments, total = await service.list_payments_by_method(
        payment_method, page=page, page_size=page_size
    )
    return success(
        request,
        _page(payments, total, page, page_size),
        message="Payments retrieved",
        message_ar="تم جلب المدفوعات",
    )


@router.get("/{payment_id}", response_model=ApiResponse[PaymentResponse], summary="Get payment")
async def get_payment(
    request: Request,
    payment_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    payment = await service.get_payment(payment_id)
    return success(request, await _detailed(service, payment), "Payment retrieved", "تم جلب الدفع")


@router.put(
    "/{payment_id}/confirm",
    response_model=ApiResponse[PaymentResponse],
    summary="Confirm a pending payment",
)
async def confirm_payment(
    request: Request,
    payment_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
    body: ConfirmPaymentRequest | None = None,
) -> ApiResponse:
    payment = await service.confirm_payment(
        payment_id, gateway_transaction_id=body.gateway_transaction_id if body else None
    )
    return success(request, payment_to_response(payment), "Payment confirmed", "تم تأكيد الدفع")


@router.put(
    "/{payment_id}/reject",
    response_model=ApiResponse[PaymentResponse],
    summary="Reject a payment",
)
async def reject_payment(
    request: Request,
    payment_id: str,
    body: RejectPaymentRequest,
    service: Annotated[PaymentService, Depends(get_service)],
) -> ApiResponse:
    payment = await service.reject_payment(payment_id, body.reason)
    return success(request, payment_to_response(payment), "Payment rejected", "تم رفض الدفع")


@router.put(
    "/{payment_id}/refund",
    response_model=ApiResponse[PaymentResponse],
    summary="Refund a completed payment",
)
async def refund_payment(
    request: Request,
    payment_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
    body: CancelRequest | None = None,
) -> ApiResponse:
    payment = await service.refund_payment(payment_id, reason=body.reason if body else None)
    return success(request, payment_to_response(payment), "Payment refunded", "تم استرداد الدفع")


@router.put(
    "/{payment_id}/cancel",
    response_model=ApiResponse[PaymentResponse],
    summary="Cancel a pending payment",
)
async def cancel_payment(
    request: Request,
    payment_id: str,
    service: Annotated[PaymentService, Depends(get_service)],
    body: CancelRequest | None = None,
) -> ApiResponse:
    payment = await service.cancel_payment(payment_id, reason=body.reason if body else None)
    return success(request, payment_to_response(payment), "Payment cancelled", "تم إلغاء الدفع")
