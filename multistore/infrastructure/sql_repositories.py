"""SQLAlchemy-backed aggregate stores.

Each save is a conditional ``UPDATE ... WHERE version = :expected``; a
miss is reported as a concurrency conflict (or not-found when the row
is gone). Unique-key violations surface as DuplicateResourceError.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError as SqlIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from multistore.domain.entities import Order, OrderItem, Payment, WalletTransaction
from multistore.domain.exceptions import (
    ConcurrencyError,
    DuplicateResourceError,
    OrderNotFoundError,
    PaymentNotFoundError,
    WalletTransactionNotFoundError,
)
from multistore.domain.state_machines import OrderPaymentStatus, OrderStatus, PaymentStatus
from multistore.domain.value_objects import (
    Address,
    CustomerInfo,
    OrderId,
    PaymentId,
    PaymentMethod,
    WalletTransactionId,
    WalletType,
    quantize_amount,
)
from multistore.infrastructure.database import get_session_factory
from multistore.infrastructure.models import (
    OrderItemModel,
    OrderModel,
    PaymentModel,
    SequenceModel,
    WalletTransactionModel,
)

logger = structlog.get_logger()


def _aware(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class _SqlStore:
    """Shared session handling and sequence allocation."""

    sequence_name: str = ""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or get_session_factory()

    async def next_sequence(self) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(SequenceModel, self.sequence_name, with_for_update=True)
                if row is None:
                    row = SequenceModel(name=self.sequence_name, value=0)
                    session.add(row)
                row.value += 1
                value = row.value
        return value

    async def _insert(self, model: Any, resource: str, key: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(model)
        except SqlIntegrityError as e:
            logger.warning("Unique constraint violated", resource=resource, key=key, error=str(e.orig))
            raise DuplicateResourceError(resource, "unique key", key) from e

    async def _conditional_update(
        self,
        model_cls: Any,
        entity_id: str,
        expected_version: int,
        values: dict[str, Any],
        entity_type: str,
        not_found: Exception,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(model_cls)
                    .where(model_cls.id == entity_id, model_cls.version == expected_version)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    current = await session.scalar(
                        select(model_cls.version).where(model_cls.id == entity_id)
                    )
                    if current is None:
                        raise not_found
                    raise ConcurrencyError(entity_type, entity_id, expected_version, current)

    async def _page(self, stmt, count_stmt, page: int, page_size: int) -> tuple[list[Any], int]:
        async with self._session_factory() as session:
            total = await session.scalar(count_stmt) or 0
            rows = (
                await session.scalars(stmt.offset((page - 1) * page_size).limit(page_size))
            ).all()
        return list(rows), total


# ============================================================================
# Order Store
# ============================================================================


def _order_values(order: Order) -> dict[str, Any]:
    return {
        "display_id": order.display_id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "version": order.version,
        "customer_email": order.customer.email,
        "customer_name": order.customer.name,
        "customer_phone": order.customer.phone,
        "shipping_address": order.shipping_address.to_dict() if order.shipping_address else None,
        "billing_address": order.billing_address.to_dict() if order.billing_address else None,
        "subtotal": order.subtotal,
        "tax_amount": order.tax_amount,
        "shipping_amount": order.shipping_amount,
        "discount_amount": order.discount_amount,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "shipping_method": order.shipping_method,
        "tracking_number": order.tracking_number,
        "coupon_code": order.coupon_code,
        "notes": order.notes,
        "cancellation_reason": order.cancellation_reason,
        "external_quote_id": order.external_quote_id,
        "external_invoice_id": order.external_invoice_id,
        "external_sync_status": order.external_sync_status,
        "external_synced_at": order.external_synced_at,
        "status_history": list(order.status_history),
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "shipped_at": order.shipped_at,
        "delivered_at": order.delivered_at,
        "cancelled_at": order.cancelled_at,
    }


def _order_from_row(row: OrderModel) -> Order:
    return Order(
        id=OrderId.from_string(row.id),
        display_id=row.display_id,
        order_number=row.order_number,
        customer=CustomerInfo(
            email=row.customer_email,
            name=row.customer_name,
            phone=row.customer_phone,
        ),
        items=[
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                product_name_ar=item.product_name_ar,
                product_sku=item.product_sku,
                attributes=item.attributes or {},
            )
            for item in row.items
        ],
        subtotal=quantize_amount(row.subtotal),
        tax_amount=quantize_amount(row.tax_amount),
        shipping_amount=quantize_amount(row.shipping_amount),
        discount_amount=quantize_amount(row.discount_amount),
        total_amount=quantize_amount(row.total_amount),
        currency=row.currency,
        status=OrderStatus(row.status),
        payment_status=OrderPaymentStatus(row.payment_status),
        user_id=row.user_id,
        shipping_address=Address.from_dict(row.shipping_address),
        billing_address=Address.from_dict(row.billing_address),
        shipping_method=row.shipping_method,
        tracking_number=row.tracking_number,
        coupon_code=row.coupon_code,
        notes=row.notes,
        cancellation_reason=row.cancellation_reason,
        shipped_at=_aware(row.shipped_at),
        delivered_at=_aware(row.delivered_at),
        cancelled_at=_aware(row.cancelled_at),
        external_quote_id=row.external_quote_id,
        external_invoice_id=row.external_invoice_id,
        external_sync_status=row.external_sync_status,
        external_synced_at=_aware(row.external_synced_at),
        status_history=list(row.status_history or []),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlOrderStore(_SqlStore):
    """Order store backed by the orders and order_items tables."""

    sequence_name = "orders"

    async def add(self, order: Order) -> None:
        """Insert a new order with its items.

        Raises:
            DuplicateResourceError: If a unique key is already taken.
        """
        model = OrderModel(id=str(order.id), **_order_values(order))
        model.items = [
            OrderItemModel(
                position=position,
                product_id=item.product_id,
                product_name=item.product_name,
                product_name_ar=item.product_name_ar,
                product_sku=item.product_sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
                attributes=item.attributes or None,
            )
            for position, item in enumerate(order.items)
        ]
        await self._insert(model, "Order", order.order_number)

    async def save(self, order: Order, expected_version: int) -> None:
        """Update an order if nobody else did since it was loaded.

        Raises:
            OrderNotFoundError: If the row is gone.
            ConcurrencyError: If the stored version is not expected_version.
        """
        await self._conditional_update(
            OrderModel,
            str(order.id),
            expected_version,
            _order_values(order),
            "Order",
            OrderNotFoundError(str(order.id)),
        )

    async def _get_where(self, *criteria) -> Order | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(OrderModel).where(*criteria))
            return _order_from_row(row) if row else None

    async def get(self, order_id: str) -> Order | None:
        return await self._get_where(OrderModel.id == order_id)

    async def get_by_display_id(self, display_id: str) -> Order | None:
        return await self._get_where(OrderModel.display_id == display_id)

    async def get_by_order_number(self, order_number: str) -> Order | None:
        return await self._get_where(OrderModel.order_number == order_number)

    async def _list(self, page: int, page_size: int, *criteria) -> tuple[list[Order], int]:
        stmt = select(OrderModel).where(*criteria).order_by(OrderModel.created_at.desc())
        count_stmt = select(func.count()).select_from(OrderModel).where(*criteria)
        rows, total = await self._page(stmt, count_stmt, page, page_size)
        return [_order_from_row(r) for r in rows], total

    async def list_all(self, page: int = 1, page_size: int = 20) -> tuple[list[Order], int]:
        return await self._list(page, page_size)

    async def list_by_user(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        return await self._list(page, page_size, OrderModel.user_id == user_id)

    async def list_by_status(
        self, status: OrderStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Order], int]:
        return await self._list(page, page_size, OrderModel.status == status.value)


# ============================================================================
# Payment Store
# ============================================================================


def _payment_values(payment: Payment) -> dict[str, Any]:
    return {
        "display_id": payment.display_id,
        "transaction_id": payment.transaction_id,
        "order_id": payment.order_id,
        "payment_method": payment.payment_method.value,
        "payment_gateway": payment.payment_gateway,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status.value,
        "version": payment.version,
        "gateway_transaction_id": payment.gateway_transaction_id,
        "gateway_response": payment.gateway_response,
        "delivery_address": payment.delivery_address,
        "notes": payment.notes,
        "failure_reason": payment.failure_reason,
        "failure_code": payment.failure_code,
        "processed_at": payment.processed_at,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
    }


def _payment_from_row(row: PaymentModel) -> Payment:
    return Payment(
        id=PaymentId.from_string(row.id),
        display_id=row.display_id,
        transaction_id=row.transaction_id,
        order_id=row.order_id,
        payment_method=PaymentMethod(row.payment_method),
        amount=quantize_amount(row.amount),
        currency=row.currency,
        status=PaymentStatus(row.status),
        payment_gateway=row.payment_gateway,
        gateway_transaction_id=row.gateway_transaction_id,
        gateway_response=row.gateway_response,
        delivery_address=row.delivery_address,
        notes=row.notes,
        failure_reason=row.failure_reason,
        failure_code=row.failure_code,
        processed_at=_aware(row.processed_at),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlPaymentStore(_SqlStore):
    """Payment store backed by the payments table."""

    sequence_name = "payments"

    async def add(self, payment: Payment) -> None:
        """Insert a new payment.

        Raises:
            DuplicateResourceError: If a unique key is already taken.
        """
        await self._insert(
            PaymentModel(id=str(payment.id), **_payment_values(payment)),
            "Payment",
            payment.transaction_id,
        )

    async def save(self, payment: Payment, expected_version: int) -> None:
        """Update a payment if nobody else did since it was loaded.

        Raises:
            PaymentNotFoundError: If the row is gone.
            ConcurrencyError: If the stored version is not expected_version.
        """
        await self._conditional_update(
            PaymentModel,
            str(payment.id),
            expected_version,
            _payment_values(payment),
            "Payment",
            PaymentNotFoundError(str(payment.id)),
        )

    async def _get_where(self, *criteria) -> Payment | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(PaymentModel).where(*criteria))
            return _payment_from_row(row) if row else None

    async def get(self, payment_id: str) -> Payment | None:
        return await self._get_where(PaymentModel.id == payment_id)

    async def get_by_display_id(self, display_id: str) -> Payment | None:
        return await self._get_where(PaymentModel.display_id == display_id)

    async def get_by_transaction_id(self, transaction_id: str) -> Payment | None:
        return await self._get_where(PaymentModel.transaction_id == transaction_id)

    async def list_by_order(self, order_id: str) -> list[Payment]:
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(PaymentModel)
                    .where(PaymentModel.order_id == order_id)
                    .order_by(PaymentModel.created_at.desc())
                )
            ).all()
        return [_payment_from_row(r) for r in rows]

    async def _list(self, page: int, page_size: int, *criteria) -> tuple[list[Payment], int]:
        stmt = select(PaymentModel).where(*criteria).order_by(PaymentModel.created_at.desc())
        count_stmt = select(func.count()).select_from(PaymentModel).where(*criteria)
        rows, total = await self._page(stmt, count_stmt, page, page_size)
        return [_payment_from_row(r) for r in rows], total

    async def list_by_status(
        self, status: PaymentStatus, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        return await self._list(page, page_size, PaymentModel.status == status.value)

    async def list_by_method(
        self, method: PaymentMethod, page: int = 1, page_size: int = 20
    ) -> tuple[list[Payment], int]:
        return await self._list(page, page_size, PaymentModel.payment_method == method.value)

    async def count(self) -> int:
        async with self._session_factory() as session:
            return await session.scalar(select(func.count()).select_from(PaymentModel)) or 0

    async def count_by_status(self, status: PaymentStatus) -> int:
        async with self._session_factory() as session:
            return (
                await session.scalar(
                    select(func.count())
                    .select_from(PaymentModel)
                    .where(PaymentModel.status == status.value)
                )
                or 0
            )

    async def sum_by_status(
        self, status: PaymentStatus, since: datetime | None = None
    ) -> Decimal:
        criteria = [PaymentModel.status == status.value]
        if since is not None:
            criteria.append(PaymentModel.created_at >= since)
        async with self._session_factory() as session:
            total = await session.scalar(select(func.sum(PaymentModel.amount)).where(*criteria))
        return quantize_amount(total or 0)

    async def count_by_method(self) -> dict[PaymentMethod, int]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(PaymentModel.payment_method, func.count()).group_by(
                        PaymentModel.payment_method
                    )
                )
            ).all()
        return {PaymentMethod(method): count for method, count in rows}


# ============================================================================
# Wallet Transaction Store
# ============================================================================


def _wallet_values(transaction: WalletTransaction) -> dict[str, Any]:
    return {
        "display_id": transaction.display_id,
        "transaction_reference": transaction.transaction_reference,
        "payment_id": transaction.payment_id,
        "wallet_type": transaction.wallet_type.value,
        "wallet_phone": transaction.wallet_phone,
        "amount": transaction.amount,
        "currency": transaction.currency,
        "fees": transaction.fees,
        "status": transaction.status.value,
        "version": transaction.version,
        "wallet_transaction_id": transaction.wallet_transaction_id,
        "request_payload": transaction.request_payload,
        "response_payload": transaction.response_payload,
        "error_message": transaction.error_message,
        "failure_code": transaction.failure_code,
        "attempts": transaction.attempts,
        "processed_at": transaction.processed_at,
        "created_at": transaction.created_at,
        "updated_at": transaction.updated_at,
    }


def _wallet_from_row(row: WalletTransactionModel) -> WalletTransaction:
    return WalletTransaction(
        id=WalletTransactionId.from_string(row.id),
        display_id=row.display_id,
        transaction_reference=row.transaction_reference,
        payment_id=row.payment_id,
        wallet_type=WalletType(row.wallet_type),
        wallet_phone=row.wallet_phone,
        amount=quantize_amount(row.amount),
        currency=row.currency,
        fees=quantize_amount(row.fees),
        status=PaymentStatus(row.status),
        wallet_transaction_id=row.wallet_transaction_id,
        request_payload=row.request_payload,
        response_payload=row.response_payload,
        error_message=row.error_message,
        failure_code=row.failure_code,
        attempts=row.attempts,
        processed_at=_aware(row.processed_at),
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlWalletTransactionStore(_SqlStore):
    """Wallet transaction store backed by the wallet_transactions table."""

    sequence_name = "wallet_transactions"

    async def add(self, transaction: WalletTransaction) -> None:
        """Insert a new wallet transaction.

        Raises:
            DuplicateResourceError: If a unique key is already taken.
        """
        await self._insert(
            WalletTransactionModel(id=str(transaction.id), **_wallet_values(transaction)),
            "WalletTransaction",
            transaction.transaction_reference,
        )

    async def save(self, transaction: WalletTransaction, expected_version: int) -> None:
        """Update a wallet transaction if nobody else did since it was loaded.

        Raises:
            WalletTransactionNotFoundError: If the row is gone.
            ConcurrencyError: If the stored version is not expected_version.
        """
        await self._conditional_update(
            WalletTransactionModel,
            str(transaction.id),
            expected_version,
            _wallet_values(transaction),
            "WalletTransaction",
            WalletTransactionNotFoundError(str(transaction.id)),
        )

    async def _get_where(self, *criteria) -> WalletTransaction | None:
        async with self._session_factory() as session:
            row = await session.scalar(select(WalletTransactionModel).where(*criteria))
            return _wallet_from_row(row) if row else None

    async def get(self, transaction_id: str) -> WalletTransaction | None:
        return await self._get_where(WalletTransactionModel.id == transaction_id)

    async def get_by_payment_id(self, payment_id: str) -> WalletTransaction | None:
        return await self._get_where(WalletTransactionModel.payment_id == payment_id)

    async def get_by_reference(self, reference: str) -> WalletTransaction | None:
        return await self._get_where(WalletTransactionModel.transaction_reference == reference)

    async def list_by_status(self, statuses: set[PaymentStatus]) -> list[WalletTransaction]:
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(WalletTransactionModel)
                    .where(WalletTransactionModel.status.in_([s.value for s in statuses]))
                    .order_by(WalletTransactionModel.created_at)
                )
            ).all()
        return [_wallet_from_row(r) for r in rows]
