"""Shared fixtures for E2E tests.

The scenarios drive the API end to end with in-memory stores and a
scripted wallet gateway.
"""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from multistore.infrastructure.config import settings
from multistore.main import app


@pytest.fixture
def auth_client() -> Iterator[TestClient]:
    """Create test client with valid API key authentication."""
    with TestClient(
        app,
        headers={
            "Authorization": f"Bearer {settings.api_key}",
            "X-Request-ID": "e2e-test-request",
        },
    ) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def no_retry_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retry wallet calls without pausing."""
    monkeypatch.setattr(settings, "wallet_gateway_retry_backoff_seconds", 0.0)
