"""Request body caching middleware: buffers the body once so it can be re-read."""

from __future__ import annotations

import io
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import parse_qsl

import structlog
from starlette.requests import ClientDisconnect
from starlette.responses import Response

from reqguard.exceptions import BodyReadError, BodyTooLargeError
from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.middleware.request_view import RequestView, RequestWrapper

logger = structlog.get_logger()

Receive = Callable[[], Awaitable[dict[str, Any]]]

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def content_charset(content_type: str | None, default: str = "utf-8") -> str:
    if not content_type:
        return default
    for part in content_type.split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip().strip('"')
    return default


@dataclass(frozen=True)
class CachedBody:
    """An immutable copy of one request's body plus its parameter snapshot."""

    content: bytes
    parameters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.content)

    def new_reader(self) -> io.BytesIO:
        """A fresh, independent reader over the buffered bytes."""
        return io.BytesIO(self.content)

    def parameter_map(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.parameters.items()}

    def replay_receive(self, receive: Receive) -> Receive:
        """ASGI receive callable that serves the buffered body to the downstream app.

        After the body has been delivered, calls fall through to the original
        channel so disconnect notifications still arrive.
        """
        delivered = False

        async def _receive() -> dict[str, Any]:
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": self.content, "more_body": False}
            return await receive()

        return _receive

    @classmethod
    async def capture(cls, request: RequestView, max_bytes: int) -> CachedBody:
        """Drain *request*'s body stream exactly once.

        The query parameter snapshot is taken before the stream is touched.
        Url-encoded form fields are decoded from the buffered bytes afterwards.
        """
        parameters = request.parameter_map()

        declared = request.content_length
        if declared is not None and declared > max_bytes:
            raise BodyTooLargeError(limit=max_bytes, size=declared)

        buffer = bytearray()
        try:
            async for chunk in request.stream():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise BodyTooLargeError(limit=max_bytes, size=len(buffer))
        except ClientDisconnect as exc:
            raise BodyReadError("Client disconnected while sending body") from exc
        except (OSError, RuntimeError) as exc:
            raise BodyReadError(f"Failed to read request body: {exc}") from exc

        content = bytes(buffer)
        content_type = request.content_type or ""
        if content and content_type.lower().startswith(FORM_CONTENT_TYPE):
            text = content.decode(content_charset(content_type), errors="replace")
            for key, value in parse_qsl(text, keep_blank_values=True):
                parameters.setdefault(key, []).append(value)

        frozen = MappingProxyType({k: tuple(v) for k, v in parameters.items()})
        return cls(content=content, parameters=frozen)


class CachingRequestWrapper(RequestWrapper):
    """Serves the body and parameters from a ``CachedBody``."""

    def __init__(self, inner: RequestView, cached: CachedBody) -> None:
        super().__init__(inner)
        self._cached = cached

    @property
    def cached_body(self) -> CachedBody:
        return self._cached

    @property
    def body_cached(self) -> bool:
        return True

    def new_reader(self) -> io.BytesIO:
        return self._cached.new_reader()

    async def body(self) -> bytes:
        return self._cached.content

    async def stream(self) -> AsyncIterator[bytes]:
        if self._cached.content:
            yield self._cached.content
        yield b""

    def get_parameter(self, name: str) -> str | None:
        values = self._cached.parameters.get(name)
        return values[0] if values else None

    def get_parameter_values(self, name: str) -> list[str] | None:
        values = self._cached.parameters.get(name)
        return list(values) if values else None

    def parameter_map(self) -> dict[str, list[str]]:
        return self._cached.parameter_map()


class BodyCachingMiddleware(Middleware):
    """Buffer the request body so later stages and the handler can all read it.

    Must run before any stage that reads the body; it is registered at order 0.
    """

    order = 0

    def __init__(self, max_body_bytes: int, exclude_paths: tuple[str, ...] = ()) -> None:
        self.max_body_bytes = max_body_bytes
        self.exclude_paths = tuple(exclude_paths)

    async def process_request(
        self, request: RequestView, context: RequestContext
    ) -> RequestView | Response | None:
        if request.find(CachingRequestWrapper) is not None:
            return None

        cached = await CachedBody.capture(request, self.max_body_bytes)
        context.extra["cached_body"] = cached
        logger.debug(
            "request_body_cached",
            request_id=context.request_id,
            size=len(cached),
            parameters=len(cached.parameters),
        )
        return CachingRequestWrapper(request, cached)
