"""FastAPI reverse proxy in front of the webhook-serving application."""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.datastructures import Headers

from webhook_proxy.config.loader import get_settings, load_settings, register_reload_handler
from webhook_proxy.health import router as health_router
from webhook_proxy.logging_config import setup_logging
from webhook_proxy.middleware.pipeline import MiddlewarePipeline, RequestContext
from webhook_proxy.middleware.webhook_sanitizer import WebhookRequestSanitizer

logger = structlog.get_logger()

_http_client: httpx.AsyncClient | None = None
_pipeline: MiddlewarePipeline | None = None


def _build_pipeline() -> MiddlewarePipeline:
    """Build the ordered middleware pipeline."""
    pipeline = MiddlewarePipeline()
    pipeline.add(WebhookRequestSanitizer(get_settings().webhook_path_prefixes))
    return pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _http_client, _pipeline

    settings = load_settings()
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)
    register_reload_handler()

    _http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout),
        follow_redirects=settings.upstream_follow_redirects,
        limits=httpx.Limits(
            max_connections=settings.upstream_max_connections,
            max_keepalive_connections=settings.upstream_max_keepalive,
        ),
    )
    _pipeline = _build_pipeline()
    sanitizer = _pipeline.get_middleware(WebhookRequestSanitizer)
    logger.info(
        "pipeline_built",
        middleware=_pipeline.names,
        webhook_prefixes=list(sanitizer.path_prefixes) if sanitizer else [],
    )

    logger.info("proxy_started", upstream=settings.upstream_url, port=settings.listen_port)

    yield

    logger.info("proxy_shutting_down")
    if _http_client:
        await _http_client.aclose()
    logger.info("proxy_stopped")


app = FastAPI(title="Webhook Proxy", lifespan=lifespan)
app.include_router(health_router)


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def _upstream_headers(request: Request) -> dict[str, str]:
    # Read from the scope, not request.headers: middleware may have rewritten
    # the scope after request.headers was cached.
    headers = {}
    for key, value in Headers(scope=request.scope).items():
        lower = key.lower()
        if lower in HOP_BY_HOP_HEADERS or lower == "host":
            continue
        if lower == "cookie":
            if not value:
                continue
            # Repeated Cookie lines are folded, never overwritten
            if "cookie" in headers:
                value = f"{headers['cookie']}; {value}"
            key = "cookie"
        headers[key] = value
    return headers


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def proxy_request(request: Request, path: str) -> Response:
    """Catch-all reverse proxy handler."""
    if _http_client is None:
        return Response(content="Proxy not initialized", status_code=503)

    settings = get_settings()
    context = RequestContext()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=context.request_id)

    if _pipeline:
        short_circuit = await _pipeline.process_request(request, context)
        if short_circuit is not None:
            return await _pipeline.process_response(short_circuit, context)

    upstream_url = f"{settings.upstream_url.rstrip('/')}/{path}"
    if request.url.query:
        upstream_url = f"{upstream_url}?{request.url.query}"

    headers = _upstream_headers(request)
    headers["x-request-id"] = context.request_id

    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > settings.max_body_bytes:
                return Response(content="Request body too large", status_code=413)
        except (ValueError, OverflowError):
            return Response(content="Invalid Content-Length", status_code=400)
    body = await request.body()
    if len(body) > settings.max_body_bytes:
        return Response(content="Request body too large", status_code=413)

    try:
        upstream_resp = await _http_client.request(
            method=request.method,
            url=upstream_url,
            headers=headers,
            content=body,
        )
    except httpx.TimeoutException:
        logger.error("upstream_timeout", url=upstream_url)
        return Response(content="Upstream timeout", status_code=504)
    except httpx.ConnectError:
        logger.error("upstream_connect_error", url=upstream_url)
        return Response(content="Upstream unreachable", status_code=502)
    except httpx.HTTPError as exc:
        logger.error("upstream_error", url=upstream_url, error=str(exc))
        return Response(content="Upstream error", status_code=502)

    logger.info(
        "request_forwarded",
        method=request.method,
        path=request.url.path,
        status=upstream_resp.status_code,
        webhook_sanitized=context.extra.get("webhook_sanitized", False),
    )

    # httpx has already decoded the body, so its length and encoding headers no longer apply
    response_headers = {
        key: value
        for key, value in upstream_resp.headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
        and key.lower() not in ("content-length", "content-encoding")
    }
    response_headers["x-request-id"] = context.request_id

    response = Response(
        content=upstream_resp.content,
        status_code=upstream_resp.status_code,
        headers=response_headers,
    )

    if _pipeline:
        response = await _pipeline.process_response(response, context)

    return response
