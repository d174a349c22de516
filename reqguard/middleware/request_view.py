"""Read-capability interface over an inbound request, plus a composable wrapper.

Pipeline stages never subclass a framework request type. Each stage that
needs to change what downstream readers see wraps the current view in a
``RequestWrapper`` subclass and returns it; the pipeline then hands the
wrapper to every later stage.
"""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator
from typing import Any, TypeVar

from starlette.requests import Request

W = TypeVar("W", bound="RequestWrapper")


class RequestView(abc.ABC):
    """The subset of request access the pipeline and handlers rely on."""

    @property
    @abc.abstractmethod
    def method(self) -> str: ...

    @property
    @abc.abstractmethod
    def path(self) -> str: ...

    @property
    @abc.abstractmethod
    def query_string(self) -> str: ...

    @property
    @abc.abstractmethod
    def client_host(self) -> str | None: ...

    @property
    @abc.abstractmethod
    def scope(self) -> dict[str, Any]: ...

    @abc.abstractmethod
    def get_header(self, name: str) -> str | None: ...

    @abc.abstractmethod
    def get_headers(self, name: str) -> list[str]: ...

    @abc.abstractmethod
    def header_names(self) -> list[str]: ...

    @abc.abstractmethod
    def get_parameter(self, name: str) -> str | None: ...

    @abc.abstractmethod
    def get_parameter_values(self, name: str) -> list[str] | None: ...

    @abc.abstractmethod
    def parameter_map(self) -> dict[str, list[str]]: ...

    @abc.abstractmethod
    async def body(self) -> bytes: ...

    @abc.abstractmethod
    def stream(self) -> AsyncIterator[bytes]: ...

    @property
    def content_type(self) -> str | None:
        return self.get_header("content-type")

    @property
    def content_length(self) -> int | None:
        raw = self.get_header("content-length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    @property
    def body_cached(self) -> bool:
        """True once a stage has buffered the body for replay."""
        return False

    def headers(self) -> dict[str, str]:
        """First value of every header, keyed by (lower-case) name."""
        result: dict[str, str] = {}
        for name in self.header_names():
            value = self.get_header(name)
            if value is not None:
                result[name] = value
        return result

    def find(self, wrapper_type: type[W]) -> W | None:
        """Return the first wrapper of *wrapper_type* in this view's chain."""
        return None


class StarletteRequestView(RequestView):
    """Adapts a Starlette ``Request`` to ``RequestView``."""

    def __init__(self, request: Request) -> None:
        self._request = request

    @property
    def request(self) -> Request:
        return self._request

    @property
    def method(self) -> str:
        return self._request.method

    @property
    def path(self) -> str:
        return self._request.url.path

    @property
    def query_string(self) -> str:
        return self._request.url.query

    @property
    def client_host(self) -> str | None:
        return self._request.client.host if self._request.client else None

    @property
    def scope(self) -> dict[str, Any]:
        return self._request.scope

    def get_header(self, name: str) -> str | None:
        return self._request.headers.get(name)

    def get_headers(self, name: str) -> list[str]:
        return self._request.headers.getlist(name)

    def header_names(self) -> list[str]:
        return list(dict.fromkeys(self._request.headers.keys()))

    def get_parameter(self, name: str) -> str | None:
        values = self._request.query_params.getlist(name)
        return values[0] if values else None

    def get_parameter_values(self, name: str) -> list[str] | None:
        values = self._request.query_params.getlist(name)
        return values or None

    def parameter_map(self) -> dict[str, list[str]]:
        params: dict[str, list[str]] = {}
        for key, value in self._request.query_params.multi_items():
            params.setdefault(key, []).append(value)
        return params

    async def body(self) -> bytes:
        return await self._request.body()

    def stream(self) -> AsyncIterator[bytes]:
        return self._request.stream()


class RequestWrapper(RequestView):
    """Delegates every read to an inner view. Subclasses override what they change."""

    def __init__(self, inner: RequestView) -> None:
        self._inner = inner

    @property
    def inner(self) -> RequestView:
        return self._inner

    @property
    def method(self) -> str:
        return self._inner.method

    @property
    def path(self) -> str:
        return self._inner.path

    @property
    def query_string(self) -> str:
        return self._inner.query_string

    @property
    def client_host(self) -> str | None:
        return self._inner.client_host

    @property
    def scope(self) -> dict[str, Any]:
        return self._inner.scope

    @property
    def body_cached(self) -> bool:
        return self._inner.body_cached

    def get_header(self, name: str) -> str | None:
        return self._inner.get_header(name)

    def get_headers(self, name: str) -> list[str]:
        return self._inner.get_headers(name)

    def header_names(self) -> list[str]:
        return self._inner.header_names()

    def get_parameter(self, name: str) -> str | None:
        return self._inner.get_parameter(name)

    def get_parameter_values(self, name: str) -> list[str] | None:
        return self._inner.get_parameter_values(name)

    def parameter_map(self) -> dict[str, list[str]]:
        return self._inner.parameter_map()

    async def body(self) -> bytes:
        return await self._inner.body()

    def stream(self) -> AsyncIterator[bytes]:
        return self._inner.stream()

    def find(self, wrapper_type: type[W]) -> W | None:
        if isinstance(self, wrapper_type):
            return self
        return self._inner.find(wrapper_type)


def innermost(view: RequestView) -> RequestView:
    """The unwrapped view at the bottom of a wrapper chain."""
    while isinstance(view, RequestWrapper):
        view = view.inner
    return view
