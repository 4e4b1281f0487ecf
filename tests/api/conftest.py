"""Shared fixtures for API tests."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from multistore.infrastructure.config import settings
from multistore.main import app


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Create test client without authentication."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_client() -> Iterator[TestClient]:
    """Create test client with valid API key authentication."""
    with TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.api_key}"},
    ) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {settings.api_key}"}
