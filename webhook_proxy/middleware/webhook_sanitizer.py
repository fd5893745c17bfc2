"""Webhook request sanitizer: strips the session auth cookie from webhook calls.

Webhook endpoints are invoked by arbitrary third parties. The service's own
session cookie must never reach (or be forwarded by) the handlers behind
them, so it is removed from both the raw ``Cookie`` header and any
already-parsed cookie mapping before the request continues down the pipeline.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, MutableMapping, Sequence
from typing import Any

import structlog
from starlette.datastructures import MutableHeaders
from starlette.requests import Request

from webhook_proxy.config.loader import get_settings
from webhook_proxy.middleware.pipeline import Middleware, RequestContext

logger = structlog.get_logger()

AUTH_COOKIE_NAME = "n8n-auth"


def remove_cookie_from_header(request: Any, cookie_name: str) -> None:
    """Drop every ``<cookie_name>=...`` pair from the request's Cookie header.

    Surviving pairs are trimmed and re-joined with a bare ``;``. A header that
    does not contain ``<cookie_name>=`` at all is left untouched.
    """
    headers = getattr(request, "headers", None)
    if not isinstance(headers, Mapping):
        return
    cookies_header = headers.get("cookie")
    if not cookies_header or not isinstance(cookies_header, str):
        return

    cookie_to_search_for = f"{cookie_name}="
    if cookie_to_search_for not in cookies_header:
        return

    cookies = [cookie.strip() for cookie in cookies_header.split(";")]
    kept = [cookie for cookie in cookies if not cookie.startswith(cookie_to_search_for)]

    try:
        headers["cookie"] = ";".join(kept)
    except TypeError:
        # Read-only header store
        logger.debug("cookie_header_not_writable", cookie=cookie_name)
        return
    if len(kept) != len(cookies):
        logger.debug("auth_cookie_stripped", source="header", cookie=cookie_name)


def remove_cookie_from_parsed_cookies(request: Any, cookie_name: str) -> None:
    """Delete ``cookie_name`` from the request's parsed cookie mapping, if any."""
    cookies = getattr(request, "cookies", None)
    if not isinstance(cookies, MutableMapping):
        return
    if cookie_name in cookies:
        del cookies[cookie_name]
        logger.debug("auth_cookie_stripped", source="parsed", cookie=cookie_name)


def sanitize_webhook_request(request: Any, call_next: Callable[[], Any]) -> None:
    """Strip the auth cookie from ``request`` and hand over to ``call_next``.

    ``request`` only needs a mutable ``headers`` mapping and, optionally, a
    ``cookies`` mapping. Missing or odd-shaped stores are skipped. ``call_next``
    is always invoked exactly once, with no arguments.
    """
    remove_cookie_from_header(request, AUTH_COOKIE_NAME)
    remove_cookie_from_parsed_cookies(request, AUTH_COOKIE_NAME)

    call_next()


class _ScopeCookieStores:
    """Mutable header/cookie view over a Starlette request.

    Header writes go straight into the ASGI scope, so anything that reads
    the scope afterwards sees the rewritten Cookie header. ``cookies`` is the
    request's own cached dict.
    """

    def __init__(self, request: Request):
        self.headers = MutableHeaders(scope=request.scope)
        # Repeated Cookie lines are folded into one so none escapes the filter
        lines = self.headers.getlist("cookie")
        if len(lines) > 1:
            self.headers["cookie"] = "; ".join(lines)
        self.cookies = request.cookies


def _path_matches(path: str, prefixes: Sequence[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if not prefix:
            return True
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class WebhookRequestSanitizer(Middleware):
    """Remove the session auth cookie from requests to webhook endpoints.

    Requests outside ``path_prefixes`` pass through untouched. Never
    short-circuits.
    """

    def __init__(self, path_prefixes: Sequence[str] | None = None):
        if path_prefixes is None:
            path_prefixes = get_settings().webhook_path_prefixes
        self._path_prefixes = tuple(path_prefixes)

    @property
    def path_prefixes(self) -> tuple[str, ...]:
        return self._path_prefixes

    def applies_to(self, path: str) -> bool:
        return _path_matches(path, self._path_prefixes)

    async def process_request(self, request: Request, context: RequestContext) -> None:
        if not self.applies_to(request.url.path):
            return None

        def _mark_sanitized() -> None:
            context.extra["webhook_sanitized"] = True

        sanitize_webhook_request(_ScopeCookieStores(request), _mark_sanitized)
        return None
