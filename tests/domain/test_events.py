"""Tests for domain events."""

from decimal import Decimal

from multistore.domain import (
    CustomerInfo,
    Order,
    OrderItem,
    compute_amounts,
)
from multistore.domain.events import (
    OrderCancelled,
    OrderCreated,
    PaymentStatusChanged,
    get_event_class,
)


def make_order() -> Order:
    items = [OrderItem(product_id="p-1", product_name="Honey", quantity=2, unit_price=Decimal("10"))]
    return Order.create(
        display_id="ORD-000001",
        order_number="ORD-20240101-AAAAAAAA",
        customer=CustomerInfo(email="ali@example.com"),
        items=items,
        amounts=compute_amounts(items),
    )


class TestDomainEvents:
    """Tests for event recording and serialization."""

    def test_create_records_order_created(self) -> None:
        """A new order carries one OrderCreated event."""
        order = make_order()
        events = order.collect_events()

        assert [type(e) for e in events] == [OrderCreated]
        assert order.collect_events() == []

    def test_to_dict(self) -> None:
        """Events serialize with an envelope and their own payload."""
        order = make_order()
        data = order.collect_events()[0].to_dict()

        assert data["event_type"] == "order.created"
        assert data["aggregate_type"] == "Order"
        assert data["aggregate_id"] == str(order.id)
        assert data["payload"]["order_number"] == "ORD-20240101-AAAAAAAA"
        assert data["payload"]["item_count"] == 2

    def test_cancel_records_reason(self) -> None:
        """Cancelling records the reason on the event."""
        order = make_order()
        order.collect_events()
        order.cancel(reason="changed mind")

        (event,) = order.collect_events()
        assert isinstance(event, OrderCancelled)
        assert event.to_dict()["payload"]["reason"] == "changed mind"

    def test_registry_lookup(self) -> None:
        """Event classes are found by type string."""
        assert get_event_class("order.created") is OrderCreated
        assert get_event_class(PaymentStatusChanged.event_type) is PaymentStatusChanged
        assert get_event_class("order.teleported") is None
