"""Tests for the SQLAlchemy aggregate stores against in-memory SQLite."""

from collections.abc import AsyncIterator
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from multistore.domain import (
    Address,
    CustomerInfo,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ShippingRule,
    WalletTransaction,
    WalletType,
    compute_amounts,
)
from multistore.domain.base import utcnow
from multistore.domain.exceptions import (
    ConcurrencyError,
    DuplicateResourceError,
    OrderNotFoundError,
)
from multistore.infrastructure.database import create_tables
from multistore.infrastructure.sql_repositories import (
    SqlOrderStore,
    SqlPaymentStore,
    SqlWalletTransactionStore,
)


@pytest.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


# ============================================================================
# Helpers
# ============================================================================


def make_order(number: str = "ORD-20240101-AAAAAAAA", display_id: str = "ORD-000001") -> Order:
    items = [
        OrderItem(
            product_id="p-1",
            product_name="Honey",
            product_name_ar="عسل",
            quantity=2,
            unit_price=Decimal("100.00"),
            attributes={"size": "1kg"},
        ),
        OrderItem(product_id="p-2", product_name="Coffee", quantity=1, unit_price=Decimal("50.00")),
    ]
    return Order.create(
        display_id=display_id,
        order_number=number,
        customer=CustomerInfo(email="ali@example.com", name="Ali", phone="770000000"),
        items=items,
        amounts=compute_amounts(items, shipping_rule=ShippingRule(Decimal("5.00"))),
        user_id="user-1",
        shipping_address=Address(line1="Hadda Street", city="Sana'a"),
    )


def make_payment(order_id: str = "order-1", method: PaymentMethod = PaymentMethod.JEEB) -> Payment:
    return Payment.create(
        display_id="PAY-000001",
        transaction_id="TXN-1-AAAAAA",
        order_id=order_id,
        payment_method=method,
        amount=Decimal("255.00"),
    )


class TestSqlOrderStore:
    """Tests for SqlOrderStore."""

    async def test_round_trip(self, session_factory) -> None:
        """Orders, items and addresses survive a save and load."""
        store = SqlOrderStore(session_factory)
        order = make_order()
        await store.add(order)

        loaded = await store.get(str(order.id))

        assert loaded is not None
        assert loaded.id == order.id
        assert loaded.total_amount == Decimal("255.00")
        assert [i.product_id for i in loaded.items] == ["p-1", "p-2"]
        assert loaded.items[0].attributes == {"size": "1kg"}
        assert loaded.items[0].product_name_ar == "عسل"
        assert loaded.shipping_address == order.shipping_address
        assert loaded.customer == order.customer
        assert loaded.status_history[0]["to_status"] == "pending"
        assert loaded.created_at.tzinfo is not None

    async def test_lookups(self, session_factory) -> None:
        """Orders are found by display id, number, user and status."""
        store = SqlOrderStore(session_factory)
        order = make_order()
        await store.add(order)

        assert (await store.get_by_display_id("ORD-000001")).id == order.id
        assert (await store.get_by_order_number(order.order_number)).id == order.id
        orders, total = await store.list_by_user("user-1")
        assert total == 1 and orders[0].id == order.id
        _, pending_total = await store.list_by_status(OrderStatus.PENDING)
        assert pending_total == 1
        assert await store.get("missing") is None

    async def test_duplicate_number(self, session_factory) -> None:
        """Unique constraint violations become DuplicateResourceError."""
        store = SqlOrderStore(session_factory)
        await store.add(make_order())
        with pytest.raises(DuplicateResourceError):
            await store.add(make_order(display_id="ORD-000002"))

    async def test_versioned_save(self, session_factory) -> None:
        """Saves check the expected version."""
        store = SqlOrderStore(session_factory)
        order = make_order()
        await store.add(order)

        first = await store.get(str(order.id))
        second = await store.get(str(order.id))
        first.update_payment_status(OrderPaymentStatus.PAID)
        await store.save(first, expected_version=1)

        second.cancel(reason="changed mind")
        with pytest.raises(ConcurrencyError) as exc_info:
            await store.save(second, expected_version=1)

        stored = await store.get(str(order.id))
        assert exc_info.value.actual_version == first.version
        assert stored.status == OrderStatus.CONFIRMED
        assert stored.payment_status == OrderPaymentStatus.PAID

    async def test_save_missing(self, session_factory) -> None:
        """Saving a row that does not exist raises not found."""
        with pytest.raises(OrderNotFoundError):
            await SqlOrderStore(session_factory).save(make_order(), expected_version=1)

    async def test_sequence(self, session_factory) -> None:
        """Sequences are kept per store."""
        orders = SqlOrderStore(session_factory)
        payments = SqlPaymentStore(session_factory)
        assert await orders.next_sequence() == 1
        assert await orders.next_sequence() == 2
        assert await payments.next_sequence() == 1


class TestSqlPaymentStore:
    """Tests for SqlPaymentStore."""

    async def test_round_trip_and_statistics(self, session_factory) -> None:
        """Payments persist and feed the statistics queries."""
        store = SqlPaymentStore(session_factory)
        payment = make_payment()
        await store.add(payment)

        loaded = await store.get(str(payment.id))
        loaded.start_processing()
        loaded.complete("GW-1", {"status": "success"})
        await store.save(loaded, expected_version=1)

        stored = await store.get_by_transaction_id("TXN-1-AAAAAA")
        assert stored.status == PaymentStatus.COMPLETED
        assert stored.gateway_response == {"status": "success"}
        assert stored.payment_method == PaymentMethod.JEEB
        assert await store.count() == 1
        assert await store.count_by_status(PaymentStatus.COMPLETED) == 1
        assert await store.sum_by_status(PaymentStatus.COMPLETED) == Decimal("255.00")
        assert await store.count_by_method() == {PaymentMethod.JEEB: 1}
        assert [p.id for p in await store.list_by_order("order-1")] == [payment.id]
        _, by_method = await store.list_by_method(PaymentMethod.JEEB)
        assert by_method == 1


class TestSqlWalletTransactionStore:
    """Tests for SqlWalletTransactionStore."""

    async def test_round_trip_and_status_listing(self, session_factory) -> None:
        """Wallet transactions persist and list by status."""
        store = SqlWalletTransactionStore(session_factory)
        transaction = WalletTransaction.create(
            display_id="WTX-000001",
            transaction_reference="WLT-1-AAAAAA",
            payment=make_payment(),
            wallet_type=WalletType.JEEB,
            wallet_phone="770000000",
        )
        await store.add(transaction)

        loaded = await store.get_by_reference("WLT-1-AAAAAA")
        loaded.start_processing()
        loaded.record_attempt()
        loaded.fail(failure_code="timeout", error_message="no answer")
        await store.save(loaded, expected_version=1)

        stored = await store.get_by_payment_id(transaction.payment_id)
        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_code == "timeout"
        assert stored.attempts == 1
        assert stored.request_payload["wallet_phone"] == "770000000"
        assert await store.list_by_status({PaymentStatus.PENDING}) == []
        assert len(await store.list_by_status({PaymentStatus.FAILED})) == 1
        assert not stored.is_stale(timedelta(0), utcnow())
