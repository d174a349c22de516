"""Request body caching tests."""

from __future__ import annotations

import pytest

from reqguard.exceptions import BodyReadError, BodyTooLargeError
from reqguard.middleware.body_cache import (
    BodyCachingMiddleware,
    CachedBody,
    CachingRequestWrapper,
    content_charset,
)
from reqguard.middleware.pipeline import RequestContext


@pytest.mark.asyncio
async def test_capture_reads_stream_once_and_replays(make_view):
    view, receive = make_view(chunks=[b'{"a":', b"1}"], headers={"content-type": "application/json"})
    cached = await CachedBody.capture(view, max_bytes=1024)
    calls_after_capture = receive.calls

    assert cached.content == b'{"a":1}'
    assert cached.new_reader().read() == b'{"a":1}'
    assert cached.new_reader().read() == b'{"a":1}'
    assert len(cached) == 7
    assert receive.calls == calls_after_capture


@pytest.mark.asyncio
async def test_readers_are_independent(make_view):
    view, _ = make_view(body=b"abcdef")
    cached = await CachedBody.capture(view, max_bytes=1024)
    first = cached.new_reader()
    first.read(3)
    assert cached.new_reader().read() == b"abcdef"
    assert first.read() == b"def"


@pytest.mark.asyncio
async def test_query_parameters_captured_before_drain(make_view):
    view, _ = make_view(query="a=1&a=2&b=x", body=b"ignored")
    cached = await CachedBody.capture(view, max_bytes=1024)
    assert cached.parameter_map() == {"a": ["1", "2"], "b": ["x"]}


@pytest.mark.asyncio
async def test_form_fields_decoded_from_buffer(make_view):
    view, _ = make_view(
        query="page=2",
        headers={"content-type": "application/x-www-form-urlencoded"},
        body=b"name=J%C3%B6rg&tag=a&tag=b&empty=",
    )
    cached = await CachedBody.capture(view, max_bytes=1024)
    params = cached.parameter_map()
    assert params["page"] == ["2"]
    assert params["name"] == ["J\N{LATIN SMALL LETTER O WITH DIAERESIS}rg"]
    assert params["tag"] == ["a", "b"]
    assert params["empty"] == [""]


@pytest.mark.asyncio
async def test_parameter_snapshot_is_immutable(make_view):
    view, _ = make_view(query="a=1")
    cached = await CachedBody.capture(view, max_bytes=1024)
    with pytest.raises(TypeError):
        cached.parameters["a"] = ("2",)
    copy = cached.parameter_map()
    copy["a"].append("2")
    assert cached.parameter_map() == {"a": ["1"]}


@pytest.mark.asyncio
async def test_declared_length_over_cap_fails_fast(make_view):
    view, receive = make_view(headers={"content-length": "5000"}, body=b"x" * 10)
    with pytest.raises(BodyTooLargeError) as exc_info:
        await CachedBody.capture(view, max_bytes=100)
    assert exc_info.value.status_code == 413
    assert exc_info.value.details == {"limit": 100, "size": 5000}
    assert receive.calls == 0


@pytest.mark.asyncio
async def test_streamed_bytes_over_cap_stop_buffering(make_view):
    view, receive = make_view(chunks=[b"x" * 60, b"x" * 60, b"x" * 60])
    with pytest.raises(BodyTooLargeError):
        await CachedBody.capture(view, max_bytes=100)
    assert receive.calls == 2


@pytest.mark.asyncio
async def test_client_disconnect_raises_body_read_error(make_view):
    view, _ = make_view(chunks=[b"part", b"rest"], disconnect_after=1)
    with pytest.raises(BodyReadError) as exc_info:
        await CachedBody.capture(view, max_bytes=1024)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_replay_receive_serves_buffer_then_falls_through(make_view):
    view, receive = make_view(body=b"payload")
    cached = await CachedBody.capture(view, max_bytes=1024)
    replay = cached.replay_receive(receive)

    first = await replay()
    assert first == {"type": "http.request", "body": b"payload", "more_body": False}
    second = await replay()
    assert second["type"] == "http.disconnect"


@pytest.mark.asyncio
async def test_wrapper_serves_cached_body_and_parameters(make_view):
    view, _ = make_view(query="q=1", body=b"hello")
    cached = await CachedBody.capture(view, max_bytes=1024)
    wrapper = CachingRequestWrapper(view, cached)

    assert wrapper.body_cached is True
    assert await wrapper.body() == b"hello"
    assert await wrapper.body() == b"hello"
    assert b"".join([chunk async for chunk in wrapper.stream()]) == b"hello"
    assert wrapper.get_parameter("q") == "1"
    assert wrapper.get_parameter("missing") is None
    assert wrapper.get_parameter_values("q") == ["1"]
    assert wrapper.find(CachingRequestWrapper) is wrapper


@pytest.mark.asyncio
async def test_middleware_wraps_once(make_view):
    view, receive = make_view(body=b"data")
    stage = BodyCachingMiddleware(max_body_bytes=1024)
    context = RequestContext()

    wrapped = await stage.process_request(view, context)
    assert isinstance(wrapped, CachingRequestWrapper)
    assert context.extra["cached_body"].content == b"data"

    calls = receive.calls
    assert await stage.process_request(wrapped, RequestContext()) is None
    assert receive.calls == calls


def test_content_charset():
    assert content_charset("text/plain; charset=ISO-8859-1") == "ISO-8859-1"
    assert content_charset('application/json; charset="utf-16"') == "utf-16"
    assert content_charset("application/json") == "utf-8"
    assert content_charset(None) == "utf-8"


@pytest.mark.asyncio
async def test_repeated_parameter_resolves_to_first_value_with_or_without_cache(make_view):
    view, _ = make_view(query="q=first&q=second", body=b"")
    assert view.get_parameter("q") == "first"

    cached = await CachedBody.capture(view, max_bytes=1024)
    assert CachingRequestWrapper(view, cached).get_parameter("q") == "first"
