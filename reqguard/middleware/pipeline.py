"""Ordered middleware chain framework."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog
from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse, Response

from reqguard.exceptions import GuardError
from reqguard.middleware.path_matcher import PathExclusionMatcher
from reqguard.middleware.request_view import RequestView

logger = structlog.get_logger()


@dataclass
class RequestContext:
    """Mutable context passed through the middleware pipeline."""

    request_id: str = ""
    client_ip: str = ""
    request: RequestView | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = uuid4().hex[:8]


@dataclass
class ResponseInfo:
    """What the response path can see and change once the handler has answered."""

    status_code: int
    headers: MutableHeaders = field(default_factory=MutableHeaders)


class Middleware(abc.ABC):
    """Base class for middleware in the pipeline.

    ``order`` places the stage in the chain (lower runs first).
    ``exclude_paths`` are glob patterns this stage skips in addition to the
    pipeline-wide exclusions.
    """

    order: int = 100
    exclude_paths: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abc.abstractmethod
    async def process_request(
        self, request: RequestView, context: RequestContext
    ) -> RequestView | Response | None:
        """Process an incoming request.

        Return None to continue with the same request, a RequestView to replace
        the request seen by later stages and the handler, or a Response to
        short-circuit.
        """
        ...

    async def process_response(self, response: ResponseInfo, context: RequestContext) -> None:
        """Observe or adjust an outgoing response. Override if needed."""
        return None


class MiddlewarePipeline:
    """Ordered list of middleware. Executes request handlers forward, response handlers in reverse."""

    def __init__(self, matcher: PathExclusionMatcher | None = None) -> None:
        self._middleware: list[Middleware] = []
        self._enabled: dict[str, bool] = {}
        self._matcher = matcher or PathExclusionMatcher()

    @property
    def matcher(self) -> PathExclusionMatcher:
        return self._matcher

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._middleware)

    def add(self, middleware: Middleware, enabled: bool = True) -> None:
        """Add a middleware, keeping the chain sorted by ``order`` (stable for ties)."""
        self._middleware.append(middleware)
        self._middleware.sort(key=lambda mw: mw.order)
        self._enabled[middleware.name] = enabled
        logger.info(
            "middleware_registered",
            name=middleware.name,
            order=middleware.order,
            enabled=enabled,
        )

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Enable or disable a middleware by name."""
        if name in self._enabled:
            self._enabled[name] = enabled

    def get_middleware(self, cls: type[Middleware]) -> Middleware | None:
        """Return the first registered middleware of the given type."""
        for mw in self._middleware:
            if isinstance(mw, cls):
                return mw
        return None

    def should_skip(self, middleware: Middleware, path: str) -> bool:
        """True if the stage is disabled or the path is excluded for it."""
        if not self._enabled.get(middleware.name, True):
            return True
        return self._matcher.matches(path, middleware.exclude_paths)

    async def process_request(
        self, request: RequestView, context: RequestContext
    ) -> tuple[RequestView, Response | None]:
        """Run request through all enabled middleware in order.

        Returns the (possibly wrapped) request and a Response if any middleware
        short-circuits. A ``GuardError`` becomes a JSON error response with its
        status code; any other exception is logged and becomes a 500.
        """
        path = request.path
        context.request = request
        for mw in self._middleware:
            if self.should_skip(mw, path):
                continue
            try:
                result = await mw.process_request(request, context)
            except GuardError as exc:
                logger.warning(
                    "middleware_request_rejected",
                    middleware=mw.name,
                    error_code=exc.error_code,
                    status_code=exc.status_code,
                )
                return request, JSONResponse(status_code=exc.status_code, content=exc.to_dict())
            except Exception:
                logger.exception("middleware_request_error", middleware=mw.name)
                return request, JSONResponse(
                    status_code=500,
                    content={"error": True, "status": 500, "message": "Internal error"},
                )
            if isinstance(result, Response):
                logger.info("middleware_short_circuit", middleware=mw.name)
                return request, result
            if isinstance(result, RequestView):
                request = result
                context.request = request
        return request, None

    async def process_response(
        self, request: RequestView, response: ResponseInfo, context: RequestContext
    ) -> ResponseInfo:
        """Run response through all enabled middleware in reverse order.

        Individual middleware exceptions are caught so one broken middleware
        doesn't corrupt the response.
        """
        path = request.path
        for mw in reversed(self._middleware):
            if self.should_skip(mw, path):
                continue
            try:
                await mw.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=mw.name)
        return response
