"""Reverse proxy forwarding tests."""

from __future__ import annotations

import httpx
import pytest


def _forwarded_headers(mock_http) -> dict[str, str]:
    return mock_http.request.call_args.kwargs["headers"]


def test_get_forwarding(proxy_client):
    client, mock_http = proxy_client
    resp = client.get("/rest/workflows")
    assert resp.status_code == 200
    assert resp.json()["message"] == "upstream response"
    kwargs = mock_http.request.call_args.kwargs
    assert kwargs["method"] == "GET"
    assert kwargs["url"] == "http://mock-upstream:5678/rest/workflows"


def test_post_forwarding_body(proxy_client):
    client, mock_http = proxy_client
    resp = client.post("/webhook/abc", content=b'{"event":"push"}')
    assert resp.status_code == 200
    kwargs = mock_http.request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["content"] == b'{"event":"push"}'


def test_query_string_forwarding(proxy_client):
    client, mock_http = proxy_client
    client.get("/webhook/abc?q=test&page=1")
    url = mock_http.request.call_args.kwargs["url"]
    assert url == "http://mock-upstream:5678/webhook/abc?q=test&page=1"


def test_webhook_auth_cookie_not_forwarded(proxy_client):
    client, mock_http = proxy_client
    resp = client.post("/webhook/abc", headers={"Cookie": "n8n-auth=secret; tracking=1"})
    assert resp.status_code == 200
    assert _forwarded_headers(mock_http)["cookie"] == "tracking=1"


def test_webhook_only_auth_cookie_drops_header(proxy_client):
    client, mock_http = proxy_client
    client.post("/webhook-test/abc", headers={"Cookie": "n8n-auth=secret"})
    assert "cookie" not in _forwarded_headers(mock_http)


def test_form_path_sanitized(proxy_client):
    client, mock_http = proxy_client
    client.get("/form/xyz", headers={"Cookie": "a=1; n8n-auth=secret"})
    assert _forwarded_headers(mock_http)["cookie"] == "a=1"


def test_non_webhook_path_keeps_auth_cookie(proxy_client):
    """Editor and REST routes still need the session cookie."""
    client, mock_http = proxy_client
    client.get("/rest/login", headers={"Cookie": "n8n-auth=secret; tracking=1"})
    assert _forwarded_headers(mock_http)["cookie"] == "n8n-auth=secret; tracking=1"


def test_webhook_without_auth_cookie_untouched(proxy_client):
    client, mock_http = proxy_client
    client.get("/webhook/abc", headers={"Cookie": "a=1; b=2"})
    assert _forwarded_headers(mock_http)["cookie"] == "a=1; b=2"


def test_header_preservation(proxy_client):
    client, mock_http = proxy_client
    client.get("/webhook/abc", headers={"X-Custom-Header": "test-value"})
    assert _forwarded_headers(mock_http).get("x-custom-header") == "test-value"


def test_hop_by_hop_and_host_not_forwarded(proxy_client):
    client, mock_http = proxy_client
    client.get("/webhook/abc", headers={"Connection": "keep-alive"})
    forwarded = _forwarded_headers(mock_http)
    assert "connection" not in forwarded
    assert "host" not in forwarded


def test_request_id_forwarded_and_returned(proxy_client):
    client, mock_http = proxy_client
    resp = client.get("/webhook/abc")
    request_id = resp.headers["x-request-id"]
    assert len(request_id) == 8
    assert _forwarded_headers(mock_http)["x-request-id"] == request_id


def test_response_headers_preserved(proxy_client):
    client, _ = proxy_client
    resp = client.get("/webhook/abc")
    assert resp.headers.get("x-custom") == "value"


@pytest.mark.parametrize(
    "exc, status",
    [
        (httpx.ConnectTimeout("timed out"), 504),
        (httpx.ConnectError("refused"), 502),
        (httpx.RemoteProtocolError("bad"), 502),
    ],
)
def test_upstream_errors(proxy_client, exc, status):
    client, mock_http = proxy_client
    mock_http.request.side_effect = exc
    resp = client.get("/webhook/abc")
    assert resp.status_code == status


def test_invalid_content_length(proxy_client):
    client, mock_http = proxy_client
    resp = client.post("/webhook/abc", content=b"x", headers={"Content-Length": "abc"})
    assert resp.status_code == 400
    mock_http.request.assert_not_called()


def test_body_too_large(monkeypatch, upstream_response):
    from unittest.mock import AsyncMock

    from fastapi.testclient import TestClient

    import webhook_proxy.main as main_module

    monkeypatch.setenv("WEBHOOK_PROXY_MAX_BODY_BYTES", "10")
    mock_http = AsyncMock()
    mock_http.request = AsyncMock(return_value=upstream_response)

    with TestClient(main_module.app, raise_server_exceptions=False) as client:
        real_client = main_module._http_client
        main_module._http_client = mock_http
        resp = client.post("/webhook/abc", content=b"x" * 11)
        main_module._http_client = real_client

    assert resp.status_code == 413
    mock_http.request.assert_not_called()


def test_not_initialized_returns_503():
    from fastapi.testclient import TestClient

    import webhook_proxy.main as main_module

    with TestClient(main_module.app, raise_server_exceptions=False) as client:
        real_client = main_module._http_client
        main_module._http_client = None
        resp = client.get("/webhook/abc")
        main_module._http_client = real_client

    assert resp.status_code == 503


def test_webhook_auth_cookie_in_second_cookie_line(proxy_client):
    client, mock_http = proxy_client
    client.post("/webhook/abc", headers=[("cookie", "a=1"), ("cookie", "n8n-auth=secret")])
    assert _forwarded_headers(mock_http)["cookie"] == "a=1"


def test_webhook_auth_cookie_in_first_cookie_line_keeps_others(proxy_client):
    client, mock_http = proxy_client
    client.post("/webhook/abc", headers=[("cookie", "n8n-auth=secret; a=1"), ("cookie", "b=2")])
    assert _forwarded_headers(mock_http)["cookie"] == "a=1;b=2"


def test_repeated_cookie_lines_folded_on_other_paths(proxy_client):
    client, mock_http = proxy_client
    client.get("/rest/login", headers=[("cookie", "n8n-auth=secret"), ("cookie", "b=2")])
    assert _forwarded_headers(mock_http)["cookie"] == "n8n-auth=secret; b=2"
