"""Ordered middleware chain."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, TypeVar
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

M = TypeVar("M", bound="Middleware")


@dataclass
class RequestContext:
    """Per-request state shared by every middleware in the pipeline."""

    request_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = uuid4().hex[:8]


class Middleware(abc.ABC):
    """Base class for pipeline middleware."""

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Inspect or rewrite an incoming request.

        Return None to continue the pipeline, or a Response to short-circuit.
        """
        ...

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        return response


class MiddlewarePipeline:
    """Runs request handlers in registration order and response handlers in reverse."""

    def __init__(self) -> None:
        self._middleware: list[Middleware] = []
        self._enabled: dict[str, bool] = {}

    def add(self, middleware: Middleware, enabled: bool = True) -> None:
        self._middleware.append(middleware)
        self._enabled[middleware.name] = enabled
        logger.info("middleware_registered", name=middleware.name, enabled=enabled)

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Toggle a middleware by name. Unknown names are ignored."""
        if name in self._enabled:
            self._enabled[name] = enabled

    def get_middleware(self, cls: type[M]) -> M | None:
        """Return the first registered middleware of the given type."""
        for mw in self._middleware:
            if isinstance(mw, cls):
                return mw
        return None

    @property
    def names(self) -> list[str]:
        return [mw.name for mw in self._middleware]

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Run the request through every enabled middleware.

        A middleware that raises ends the chain with a 502 rather than
        propagating the error to the ASGI server.
        """
        for mw in self._middleware:
            if not self._enabled.get(mw.name, True):
                continue
            try:
                result = await mw.process_request(request, context)
            except Exception:
                logger.exception("middleware_request_error", middleware=mw.name)
                return Response(content="Internal proxy error", status_code=502)
            if isinstance(result, Response):
                logger.info("middleware_short_circuit", middleware=mw.name)
                return result
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        """Run the response back through enabled middleware, last registered first."""
        for mw in reversed(self._middleware):
            if not self._enabled.get(mw.name, True):
                continue
            try:
                response = await mw.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=mw.name)
        return response
