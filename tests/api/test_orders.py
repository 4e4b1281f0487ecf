"""Tests for order endpoints."""

from decimal import Decimal
from typing import Any

from fastapi.testclient import TestClient


# ============================================================================
# Helpers
# ============================================================================


def make_order_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "customer_email": "ali@example.com",
        "customer_name": "Ali",
        "user_id": "user-1",
        "items": [
            {
                "product_id": "p-1",
                "product_name": "Honey",
                "product_name_ar": "عسل",
                "quantity": 2,
                "unit_price": "100.00",
            },
            {"product_id": "p-2", "product_name": "Coffee", "quantity": 1, "unit_price": "50.00"},
        ],
        "shipping_address": {"line1": "Hadda Street", "city": "Sana'a"},
    }
    body.update(overrides)
    return body


def create_order(client: TestClient, **overrides: Any) -> dict[str, Any]:
    response = client.post("/api/v1/orders", json=make_order_body(**overrides))
    assert response.status_code == 201, response.text
    return response.json()["data"]


def make_shippable(client: TestClient, order_id: str) -> None:
    assert client.put(
        f"/api/v1/orders/{order_id}/payment-status", json={"payment_status": "paid"}
    ).status_code == 200
    assert client.put(
        f"/api/v1/orders/{order_id}/status", json={"status": "processing"}
    ).status_code == 200


# ============================================================================
# Create
# ============================================================================


class TestCreateOrder:
    """Tests for POST /api/v1/orders."""

    def test_create_order(self, auth_client: TestClient) -> None:
        """A new order is pending and priced."""
        response = auth_client.post("/api/v1/orders", json=make_order_body())

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message_ar"] == "تم إنشاء الطلب بنجاح"
        assert body["status_code"] == 201
        order = body["data"]
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["display_id"].startswith("ORD-")
        assert order["order_number"].startswith("ORD-")
        assert Decimal(order["subtotal"]) == Decimal("250.00")
        assert Decimal(order["shipping_amount"]) == Decimal("5.00")
        assert Decimal(order["total_amount"]) == Decimal("255.00")
        assert order["item_count"] == 3
        assert order["items"][0]["product_name_ar"] == "عسل"
        assert order["version"] == 1

    def test_empty_items_rejected(self, auth_client: TestClient) -> None:
        """An order needs at least one line."""
        response = auth_client.post("/api/v1/orders", json=make_order_body(items=[]))
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["errors"][0] == {"field": "items", "message": "VALIDATION_ERROR"}

    def test_zero_quantity_rejected(self, auth_client: TestClient) -> None:
        """Line quantities must be at least one."""
        items = [{"product_id": "p-1", "product_name": "Honey", "quantity": 0, "unit_price": "1"}]
        response = auth_client.post("/api/v1/orders", json=make_order_body(items=items))
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "items[0].quantity"

    def test_malformed_body_rejected(self, auth_client: TestClient) -> None:
        """Schema failures are reported as 400 validation errors."""
        response = auth_client.post("/api/v1/orders", json={"items": []})
        assert response.status_code == 400
        data = response.json()
        assert data["message"] == "Request validation failed"
        assert any(e["field"] == "customer_email" for e in data["errors"])


# ============================================================================
# Queries
# ============================================================================


class TestOrderQueries:
    """Tests for order lookups and listings."""

    def test_get_by_each_identifier(self, auth_client: TestClient) -> None:
        """Orders are found by id, display id and order number."""
        order = create_order(auth_client)

        for path in (
            f"/api/v1/orders/{order['id']}",
            f"/api/v1/orders/display/{order['display_id']}",
            f"/api/v1/orders/number/{order['order_number']}",
        ):
            response = auth_client.get(path)
            assert response.status_code == 200
            assert response.json()["data"]["id"] == order["id"]

    def test_not_found(self, auth_client: TestClient) -> None:
        """Unknown orders return 404 in the envelope."""
        response = auth_client.get("/api/v1/orders/does-not-exist")
        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["errors"][0]["message"] == "ORDER_NOT_FOUND"
        assert data["message_ar"]

    def test_list_paginated(self, auth_client: TestClient) -> None:
        """Listings are paginated."""
        for _ in range(3):
            create_order(auth_client)

        response = auth_client.get("/api/v1/orders", params={"page": 1, "page_size": 2})

        page = response.json()["data"]
        assert page["total"] == 3
        assert len(page["items"]) == 2
        assert page["has_more"] is True

    def test_list_by_user_and_status(self, auth_client: TestClient) -> None:
        """Orders are listed per user and per status."""
        create_order(auth_client)
        create_order(auth_client, user_id="user-2")

        by_user = auth_client.get("/api/v1/orders/user/user-2").json()["data"]
        assert by_user["total"] == 1
        pending = auth_client.get("/api/v1/orders/status/pending").json()["data"]
        assert pending["total"] == 2
        shipped = auth_client.get("/api/v1/orders/status/shipped").json()["data"]
        assert shipped["total"] == 0

    def test_invalid_status_filter(self, auth_client: TestClient) -> None:
        """Unknown statuses fail validation."""
        assert auth_client.get("/api/v1/orders/status/lost").status_code == 400


# ============================================================================
# Transitions
# ============================================================================


class TestOrderTransitions:
    """Tests for order status endpoints."""

    def test_paid_confirms_pending_order(self, auth_client: TestClient) -> None:
        """Marking a pending order paid confirms it."""
        order = create_order(auth_client)

        response = auth_client.put(
            f"/api/v1/orders/{order['id']}/payment-status", json={"payment_status": "paid"}
        )

        data = response.json()["data"]
        assert data["payment_status"] == "paid"
        assert data["status"] == "confirmed"

    def test_full_fulfilment(self, auth_client: TestClient) -> None:
        """A paid order ships and is delivered."""
        order = create_order(auth_client)
        make_shippable(auth_client, order["id"])

        shipped = auth_client.put(
            f"/api/v1/orders/{order['id']}/ship", json={"tracking_number": "TRK-1"}
        ).json()["data"]
        assert shipped["status"] == "shipped"
        assert shipped["tracking_number"] == "TRK-1"
        assert shipped["shipped_at"] is not None

        delivered = auth_client.put(f"/api/v1/orders/{order['id']}/deliver").json()["data"]
        assert delivered["status"] == "delivered"
        history = [entry["to_status"] for entry in delivered["status_history"]]
        assert history == ["pending", "confirmed", "processing", "shipped", "delivered"]

    def test_ship_unpaid_rejected(self, auth_client: TestClient) -> None:
        """Shipping needs PAID even when processing."""
        order = create_order(auth_client)
        auth_client.put(f"/api/v1/orders/{order['id']}/status", json={"status": "confirmed"})
        auth_client.put(f"/api/v1/orders/{order['id']}/status", json={"status": "processing"})

        response = auth_client.put(
            f"/api/v1/orders/{order['id']}/ship", json={"tracking_number": "TRK-1"}
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["message"] == "INVALID_STATE_TRANSITION"

    def test_ship_via_status_endpoint(self, auth_client: TestClient) -> None:
        """PUT /status with 'shipped' routes through the ship operation."""
        order = create_order(auth_client)
        make_shippable(auth_client, order["id"])

        missing = auth_client.put(f"/api/v1/orders/{order['id']}/status", json={"status": "shipped"})
        assert missing.status_code == 400

        response = auth_client.put(
            f"/api/v1/orders/{order['id']}/status",
            json={"status": "shipped", "tracking_number": "TRK-9"},
        )
        assert response.json()["data"]["tracking_number"] == "TRK-9"

    def test_refunded_status_has_no_operation(self, auth_client: TestClient) -> None:
        """Statuses without an operation are refused."""
        order = create_order(auth_client)
        response = auth_client.put(
            f"/api/v1/orders/{order['id']}/status", json={"status": "refunded"}
        )
        assert response.status_code == 400

    def test_cancel_with_reason(self, auth_client: TestClient) -> None:
        """Pending orders can be cancelled with a reason."""
        order = create_order(auth_client)

        response = auth_client.put(
            f"/api/v1/orders/{order['id']}/cancel", json={"reason": "changed mind"}
        )

        data = response.json()["data"]
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "changed mind"

    def test_cancel_shipped_rejected(self, auth_client: TestClient) -> None:
        """Orders past CONFIRMED cannot be cancelled."""
        order = create_order(auth_client)
        make_shippable(auth_client, order["id"])
        auth_client.put(f"/api/v1/orders/{order['id']}/ship", json={"tracking_number": "TRK-1"})

        response = auth_client.put(f"/api/v1/orders/{order['id']}/cancel")

        assert response.status_code == 400
        assert auth_client.get(f"/api/v1/orders/{order['id']}").json()["data"]["status"] == "shipped"

    def test_delivered_is_terminal(self, auth_client: TestClient) -> None:
        """Nothing moves a delivered order."""
        order = create_order(auth_client)
        make_shippable(auth_client, order["id"])
        auth_client.put(f"/api/v1/orders/{order['id']}/ship", json={"tracking_number": "TRK-1"})
        auth_client.put(f"/api/v1/orders/{order['id']}/deliver")

        for target in ("pending", "confirmed", "processing", "shipped", "cancelled"):
            response = auth_client.put(
                f"/api/v1/orders/{order['id']}/status",
                json={"status": target, "tracking_number": "TRK-2"},
            )
            assert response.status_code == 400, target
