"""Application context: named singletons, property lookup and shared services."""

from __future__ import annotations

import os
import threading
from typing import Any, TypeVar

import structlog

from reqguard.config.loader import GuardSettings, get_settings
from reqguard.masking.engine import FieldMaskEngine
from reqguard.masking.expression import ExpressionResolver
from reqguard.utils import urlcodec
from reqguard.utils.workers import BoundedWorkerPool

logger = structlog.get_logger()

T = TypeVar("T")


class AppContext:
    """Owns the process-wide services the pipeline and serializers consume."""

    def __init__(self, settings: GuardSettings) -> None:
        self.settings = settings
        self._lock = threading.Lock()
        self._registry: dict[str, Any] = {}
        self.worker_pool = BoundedWorkerPool(
            max_workers=settings.worker_max_workers,
            queue_capacity=settings.worker_queue_capacity,
            thread_name_prefix=settings.worker_thread_prefix,
        )
        self.expression_resolver = ExpressionResolver(properties=self.properties)
        self.mask_engine = FieldMaskEngine(self.expression_resolver)
        urlcodec.configure(settings.url_cache_max_entries)

        self.register("settings", settings)
        self.register("worker_pool", self.worker_pool)
        self.register("expression_resolver", self.expression_resolver)
        self.register("mask_engine", self.mask_engine)

    def register(self, name: str, obj: Any) -> None:
        with self._lock:
            self._registry[name] = obj

    def lookup(self, key: str | type[T]) -> Any:
        """Find a registered object by name, or the first one of a given type."""
        if isinstance(key, str):
            try:
                return self._registry[key]
            except KeyError:
                raise LookupError(f"No object registered as {key!r}") from None
        for obj in list(self._registry.values()):
            if isinstance(obj, key):
                return obj
        raise LookupError(f"No object registered of type {key.__name__}")

    def get_property(self, key: str, default: Any = None) -> Any:
        """Environment variable first, then the settings attribute of the same name."""
        if key in os.environ:
            return os.environ[key]
        return getattr(self.settings, key, default)

    def properties(self) -> dict[str, Any]:
        return self.settings.model_dump()

    def close(self) -> None:
        self.worker_pool.shutdown(wait=True)
        with self._lock:
            self._registry.clear()


_context: AppContext | None = None


def init_app_context(settings: GuardSettings | None = None) -> AppContext:
    """Create the process-wide context, replacing any previous one."""
    global _context
    if _context is not None:
        _context.close()
    _context = AppContext(settings or get_settings())
    logger.info("app_context_initialized")
    return _context


def get_app_context() -> AppContext:
    """Get or create the singleton application context."""
    global _context
    if _context is None:
        _context = AppContext(get_settings())
    return _context


def teardown_app_context() -> None:
    global _context
    if _context is not None:
        _context.close()
        _context = None
        logger.info("app_context_closed")
