"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from reqguard.middleware.request_view import StarletteRequestView


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("GUARD_LOG_JSON", "false")
    monkeypatch.setenv("GUARD_LOG_LEVEL", "debug")
    monkeypatch.delenv("GUARD_UNMASK_INTERNAL_CODES", raising=False)

    # Reset cached settings and application context
    import reqguard.app_context as app_context
    import reqguard.config.loader as loader
    from reqguard.utils import urlcodec

    loader._settings = None
    app_context.teardown_app_context()
    urlcodec.clear_cache()
    yield
    app_context.teardown_app_context()
    loader._settings = None


class FakeReceive:
    """ASGI receive channel that serves body chunks and counts reads."""

    def __init__(self, chunks: list[bytes], disconnect_after: int | None = None) -> None:
        self._chunks = list(chunks)
        self._disconnect_after = disconnect_after
        self.calls = 0

    async def __call__(self) -> dict:
        self.calls += 1
        if self._disconnect_after is not None and self.calls > self._disconnect_after:
            return {"type": "http.disconnect"}
        if self._chunks:
            chunk = self._chunks.pop(0)
            return {"type": "http.request", "body": chunk, "more_body": bool(self._chunks)}
        return {"type": "http.disconnect"}


@pytest.fixture
def make_view():
    """Factory for ``StarletteRequestView`` over a synthetic ASGI request.

    Returns ``(view, receive)`` so tests can check how often the transport was read.
    """

    def _make(
        method: str = "POST",
        path: str = "/api/echo",
        query: str = "",
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        chunks: list[bytes] | None = None,
        client: tuple[str, int] | None = ("10.1.1.1", 50000),
        disconnect_after: int | None = None,
    ):
        raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": query.encode(),
            "headers": raw_headers,
            "client": client,
            "server": ("testserver", 80),
        }
        receive = FakeReceive(chunks if chunks is not None else [body], disconnect_after)
        return StarletteRequestView(Request(scope, receive)), receive

    return _make


@pytest.fixture
def client():
    """Create a FastAPI test client with the full guard pipeline."""
    import reqguard.main as main_module

    main_module._pipeline = None

    from reqguard.main import app

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    main_module._pipeline = None
