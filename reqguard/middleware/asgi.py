"""ASGI middleware that runs the guard pipeline in front of the application."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from reqguard.masking.expression import bind_scope, reset_scope
from reqguard.middleware.pipeline import MiddlewarePipeline, RequestContext, ResponseInfo
from reqguard.middleware.request_view import RequestView, StarletteRequestView, innermost
from reqguard.middleware.xss_sanitizer import XssRequestWrapper
from reqguard.utils.network import request_path

logger = structlog.get_logger()

# Key under ``request.state`` holding the view produced by the pipeline.
GUARDED_REQUEST_KEY = "guarded_request"
REQUEST_CONTEXT_KEY = "guard_context"

PipelineSource = MiddlewarePipeline | Callable[[], MiddlewarePipeline | None]


def guarded_request(request: Request) -> RequestView:
    """The sanitized, body-cached view of *request* (or a plain view if the pipeline skipped it)."""
    view = request.scope.get("state", {}).get(GUARDED_REQUEST_KEY)
    if view is None:
        return StarletteRequestView(request)
    return view


def expression_scope(view: RequestView, context: RequestContext) -> dict[str, Any]:
    """Request variables visible to mask bypass expressions."""
    return {
        "headers": innermost(view).headers(),
        "params": {k: v[0] if len(v) == 1 else v for k, v in view.parameter_map().items()},
        "path": view.path,
        "method": view.method,
        "client_ip": context.client_ip,
        "request_id": context.request_id,
    }


class GuardMiddleware:
    """Pure ASGI middleware: request stages before the app, response stages on the way out.

    When the body-caching stage ran, the downstream app receives the
    buffered body through a replaying ``receive`` channel. When the XSS
    stage ran, it receives a scope with cleaned query string and headers.
    """

    def __init__(self, app: ASGIApp, pipeline: PipelineSource) -> None:
        self.app = app
        self._pipeline = pipeline

    def _resolve_pipeline(self) -> MiddlewarePipeline | None:
        if isinstance(self._pipeline, MiddlewarePipeline):
            return self._pipeline
        return self._pipeline()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        pipeline = self._resolve_pipeline()
        if scope["type"] != "http" or pipeline is None:
            await self.app(scope, receive, send)
            return

        context = RequestContext()
        structlog.contextvars.bind_contextvars(request_id=context.request_id)
        logger.debug("guard_request_started", method=scope.get("method"), path=request_path(scope))
        try:
            await self._handle(pipeline, context, scope, receive, send)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

    async def _handle(
        self,
        pipeline: MiddlewarePipeline,
        context: RequestContext,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        view, short_circuit = await pipeline.process_request(
            StarletteRequestView(Request(scope, receive)), context
        )

        if short_circuit is not None:
            info = ResponseInfo(status_code=short_circuit.status_code, headers=short_circuit.headers)
            await pipeline.process_response(view, info, context)
            short_circuit.status_code = info.status_code
            short_circuit.headers["x-request-id"] = context.request_id
            await short_circuit(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state[GUARDED_REQUEST_KEY] = view
        state[REQUEST_CONTEXT_KEY] = context

        xss = view.find(XssRequestWrapper)
        downstream_scope = xss.sanitized_scope(scope) if xss is not None else scope

        cached = context.extra.get("cached_body")
        downstream_receive = cached.replay_receive(receive) if cached is not None else receive

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = MutableHeaders(raw=list(message.get("headers", [])))
                info = ResponseInfo(status_code=message["status"], headers=headers)
                await pipeline.process_response(view, info, context)
                info.headers["x-request-id"] = context.request_id
                message["status"] = info.status_code
                message["headers"] = info.headers.raw
            await send(message)

        token = bind_scope(expression_scope(view, context))
        try:
            await self.app(downstream_scope, downstream_receive, send_wrapper)
        except Exception:
            if not response_started:
                # Let the logging stages see the failed request before the error propagates.
                await pipeline.process_response(view, ResponseInfo(status_code=500), context)
            raise
        finally:
            reset_scope(token)
