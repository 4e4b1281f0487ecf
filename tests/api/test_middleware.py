"""Tests for API middleware."""

import pytest
from fastapi.testclient import TestClient

from multistore.application.order_service import OrderService


class TestRequestIdMiddleware:
    """Tests for request ID correlation middleware."""

    def test_generates_request_id_if_not_provided(self, client: TestClient) -> None:
        """Should generate request ID if not in request headers."""
        response = client.get("/health")
        assert response.status_code == 200
        # UUID format
        assert len(response.headers["X-Request-ID"]) == 36

    def test_uses_provided_request_id(self, client: TestClient) -> None:
        """Should use request ID from request headers."""
        response = client.get("/health", headers={"X-Request-ID": "custom-request-id-12345"})
        assert response.headers["X-Request-ID"] == "custom-request-id-12345"

    def test_request_id_in_envelope(self, auth_client: TestClient) -> None:
        """The envelope echoes the request ID."""
        response = auth_client.get("/api/v1/orders", headers={"X-Request-ID": "req-42"})
        assert response.json()["request_id"] == "req-42"


class TestApiKeyMiddleware:
    """Tests for API key authentication middleware."""

    def test_public_endpoints_dont_require_auth(self, client: TestClient) -> None:
        """Public endpoints should work without authentication."""
        assert client.get("/health").status_code == 200
        assert client.get("/ready").status_code == 200

    def test_missing_header_rejected(self, client: TestClient) -> None:
        """Protected endpoints should require authentication."""
        response = client.get("/api/v1/orders")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "Missing Authorization header"
        assert data["message_ar"] == "غير مصرح بالوصول"
        assert data["request_id"] == response.headers["X-Request-ID"]

    def test_invalid_auth_format_rejected(self, client: TestClient) -> None:
        """Invalid authorization header format should be rejected."""
        response = client.get("/api/v1/orders", headers={"Authorization": "InvalidFormat"})
        assert response.status_code == 401
        assert "Bearer <api_key>" in response.json()["message"]

    def test_invalid_api_key_rejected(self, client: TestClient) -> None:
        """Invalid API key should be rejected."""
        response = client.get("/api/v1/orders", headers={"Authorization": "Bearer invalid-key"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid API key"

    def test_valid_api_key_accepted(self, client: TestClient, auth_headers: dict[str, str]) -> None:
        """Valid API key should be accepted."""
        response = client.get("/api/v1/orders", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["success"] is True


class TestErrorHandling:
    """Tests for error rendering."""

    def test_unknown_route_is_enveloped(self, auth_client: TestClient) -> None:
        """Routing 404s use the standard envelope."""
        response = auth_client.get("/api/v1/nothing-here")
        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["errors"] == []

    def test_unexpected_error_hides_details(
        self, auth_client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Unexpected exceptions become a generic 500."""

        async def explode(self, page: int = 1, page_size: int = 20):
            raise RuntimeError("database password is hunter2")

        monkeypatch.setattr(OrderService, "list_orders", explode)

        response = auth_client.get("/api/v1/orders")

        assert response.status_code == 500
        data = response.json()
        assert data["message"] == "An internal error occurred"
        assert data["message_ar"] == "حدث خطأ داخلي"
        assert "hunter2" not in response.text
