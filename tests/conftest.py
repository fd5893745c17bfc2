"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("WEBHOOK_PROXY_UPSTREAM_URL", "http://mock-upstream:5678")
    monkeypatch.setenv("WEBHOOK_PROXY_LOG_JSON", "false")
    monkeypatch.setenv("WEBHOOK_PROXY_LOG_LEVEL", "debug")

    import webhook_proxy.config.loader as loader
    loader._settings = None
    yield
    loader._settings = None


@pytest.fixture
def upstream_response():
    return httpx.Response(
        status_code=200,
        headers={"content-type": "application/json", "x-custom": "value"},
        content=b'{"message": "upstream response"}',
    )


@pytest.fixture
def proxy_client(upstream_response):
    """Test client with a mocked upstream HTTP client and a real pipeline."""
    import webhook_proxy.main as main_module

    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=upstream_response)

    with TestClient(main_module.app, raise_server_exceptions=False) as c:
        # Replace after lifespan so the mock isn't overwritten
        real_client = main_module._http_client
        main_module._http_client = mock_http
        main_module._pipeline = main_module._build_pipeline()
        yield c, mock_http
        main_module._http_client = real_client

    main_module._http_client = None
    main_module._pipeline = None
