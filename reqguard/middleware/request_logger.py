"""Request logger middleware: one redacted structured record per request."""

from __future__ import annotations

import time

import structlog
from starlette.responses import Response

from reqguard.middleware.pipeline import Middleware, RequestContext, ResponseInfo
from reqguard.middleware.request_view import RequestView, innermost
from reqguard.utils.network import client_ip, device_fingerprint, full_url
from reqguard.utils.redaction import DEFAULT_MAX_LOG_BODY_BYTES, SensitiveContentRedactor
from reqguard.utils.sanitize import truncate_for_log

logger = structlog.get_logger()

_MAX_URL_LENGTH = 2048
_MAX_UA_LENGTH = 1024


class RequestLogger(Middleware):
    """Log method, URL, client, redacted headers/parameters/body, status and cost.

    process_request: records the start time and resolves the client IP.
    process_response: builds the record from the request view the handler saw
    and emits ``request_completed``, plus ``slow_request`` past the threshold.

    Runs after body caching and XSS wrapping (order 2) so the body comes from
    the cache and parameter values are the cleaned ones.
    """

    order = 2

    def __init__(
        self,
        redactor: SensitiveContentRedactor | None = None,
        slow_request_ms: int = 3000,
        extra_ip_headers: tuple[str, ...] = (),
        exclude_paths: tuple[str, ...] = (),
    ) -> None:
        self.redactor = redactor or SensitiveContentRedactor(max_body_bytes=DEFAULT_MAX_LOG_BODY_BYTES)
        self.slow_request_ms = slow_request_ms
        self.extra_ip_headers = tuple(extra_ip_headers)
        self.exclude_paths = tuple(exclude_paths)

    async def process_request(
        self, request: RequestView, context: RequestContext
    ) -> RequestView | Response | None:
        context.extra["_log_start"] = time.monotonic()
        if not context.client_ip:
            context.client_ip = (
                client_ip(innermost(request).headers(), request.client_host, self.extra_ip_headers) or ""
            )
        return None

    def build_record(self, request: RequestView, context: RequestContext) -> dict:
        # Header values as the client sent them, before XSS cleaning.
        headers = innermost(request).headers()
        return {
            "method": request.method,
            "url": truncate_for_log(full_url(request.path, request.query_string), _MAX_URL_LENGTH),
            "client_ip": context.client_ip,
            "fingerprint": device_fingerprint(headers),
            "user_agent": truncate_for_log(headers.get("user-agent", ""), _MAX_UA_LENGTH),
            "headers": self.redactor.redact_headers(headers),
            "params": self.redactor.redact_parameters(request.parameter_map()),
            "body": self.redactor.extract_request_body(request),
        }

    async def process_response(self, response: ResponseInfo, context: RequestContext) -> None:
        start = context.extra.get("_log_start")
        request = context.request
        if start is None or request is None:
            return None

        cost_ms = int((time.monotonic() - start) * 1000)
        record = self.build_record(request, context)
        logger.info(
            "request_completed",
            request_id=context.request_id,
            status=response.status_code,
            cost_ms=cost_ms,
            **record,
        )
        if cost_ms >= self.slow_request_ms:
            logger.warning(
                "slow_request",
                request_id=context.request_id,
                method=record["method"],
                url=record["url"],
                cost_ms=cost_ms,
                threshold_ms=self.slow_request_ms,
            )
        return None
