"""FastAPI application guarded by the request sanitization pipeline."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from reqguard.api.echo_routes import router as echo_router
from reqguard.app_context import init_app_context, teardown_app_context
from reqguard.config.loader import GuardSettings, load_settings, register_reload_handler
from reqguard.health import router as health_router
from reqguard.logging_config import setup_logging
from reqguard.middleware.asgi import GuardMiddleware
from reqguard.middleware.body_cache import BodyCachingMiddleware
from reqguard.middleware.path_matcher import PathExclusionMatcher
from reqguard.middleware.pipeline import MiddlewarePipeline
from reqguard.middleware.request_logger import RequestLogger
from reqguard.middleware.xss_sanitizer import XssSanitizer
from reqguard.utils.redaction import SensitiveContentRedactor

logger = structlog.get_logger()

_pipeline: MiddlewarePipeline | None = None


def build_pipeline(settings: GuardSettings) -> MiddlewarePipeline:
    """Build the ordered guard pipeline.

    BodyCaching at 0 so nothing downstream touches the raw stream,
    XssSanitizer at 1 wrapping the cached request, RequestLogger at 2.
    """
    matcher = PathExclusionMatcher()
    matcher.register(settings.exclude_paths, owner="settings")

    pipeline = MiddlewarePipeline(matcher)
    pipeline.add(BodyCachingMiddleware(max_body_bytes=settings.max_body_bytes))
    pipeline.add(
        XssSanitizer(exclude_paths=tuple(settings.xss_exclude_paths)),
        enabled=settings.xss_enabled,
    )
    pipeline.add(
        RequestLogger(
            redactor=SensitiveContentRedactor(max_body_bytes=settings.log_body_max_bytes),
            slow_request_ms=settings.slow_request_ms,
            extra_ip_headers=tuple(settings.extra_ip_headers),
            exclude_paths=tuple(settings.logging_exclude_paths),
        ),
        enabled=settings.request_logging_enabled,
    )
    return pipeline


def get_pipeline() -> MiddlewarePipeline | None:
    return _pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    global _pipeline

    settings = load_settings()
    setup_logging(log_level=settings.log_level, json_format=settings.log_json)
    register_reload_handler()

    init_app_context(settings)
    _pipeline = build_pipeline(settings)

    logger.info("guard_started", port=settings.listen_port, stages=len(_pipeline.middleware))

    yield

    _pipeline = None
    teardown_app_context()
    logger.info("guard_stopped")


app = FastAPI(title="reqguard", lifespan=lifespan)
app.add_middleware(GuardMiddleware, pipeline=get_pipeline)

app.include_router(health_router)
app.include_router(echo_router)
