"""XSS sanitizer tests."""

from __future__ import annotations

import pytest

from reqguard.middleware.body_cache import BodyCachingMiddleware
from reqguard.middleware.pipeline import MiddlewarePipeline, RequestContext
from reqguard.middleware.path_matcher import PathExclusionMatcher
from reqguard.middleware.xss_sanitizer import XssRequestWrapper, XssSanitizer, clean_xss


class TestCleanXss:
    def test_none_passes_through(self):
        assert clean_xss(None) is None

    def test_plain_text_unchanged(self):
        assert clean_xss("hello world") == "hello world"

    def test_script_tag_is_escaped(self):
        """Escaping runs first, so the tag survives as inert entities."""
        assert clean_xss("<script>alert(1)</script>") == "&lt;script&gt;alert(1)&lt;/script&gt;"

    def test_javascript_scheme_removed(self):
        assert clean_xss("javascript:alert(1)") == "alert(1)"
        assert clean_xss("JaVaScRiPt:go()") == "go()"

    def test_vbscript_scheme_removed(self):
        assert clean_xss("vbscript:msgbox") == "msgbox"

    def test_event_handler_removed(self):
        assert clean_xss("x onerror = boom") == "x  boom"
        assert clean_xss("onload=f()") == "f()"

    def test_quotes_and_ampersand_escaped(self):
        assert clean_xss("a&b \"c\" 'd'") == "a&amp;b &quot;c&quot; &#x27;d&#x27;"

    def test_combined_payload(self):
        cleaned = clean_xss('<img src=x onerror="javascript:alert(1)">')
        assert "<" not in cleaned
        assert "onerror" not in cleaned
        assert "javascript:" not in cleaned


@pytest.mark.asyncio
async def test_wrapper_cleans_parameters_and_headers(make_view):
    view, _ = make_view(
        method="GET",
        query="q=%3Cb%3E&q=ok&name=javascript%3Ax",
        headers={"x-note": "<i>", "user-agent": "agent"},
    )
    wrapper = XssRequestWrapper(view)

    assert wrapper.get_parameter("q") == "&lt;b&gt;"
    assert wrapper.get_parameter_values("q") == ["&lt;b&gt;", "ok"]
    assert wrapper.get_parameter_values("missing") is None
    assert wrapper.parameter_map() == {"q": ["&lt;b&gt;", "ok"], "name": ["x"]}
    assert wrapper.get_header("x-note") == "&lt;i&gt;"
    assert wrapper.get_headers("x-note") == ["&lt;i&gt;"]
    assert wrapper.get_header("missing") is None
    assert wrapper.headers()["user-agent"] == "agent"


@pytest.mark.asyncio
async def test_body_is_not_sanitized(make_view):
    view, _ = make_view(body=b"<script>x</script>")
    pipeline = MiddlewarePipeline(PathExclusionMatcher(patterns=()))
    pipeline.add(XssSanitizer())
    pipeline.add(BodyCachingMiddleware(max_body_bytes=1024))

    wrapped, response = await pipeline.process_request(view, RequestContext())
    assert response is None
    assert isinstance(wrapped, XssRequestWrapper)
    assert await wrapped.body() == b"<script>x</script>"


@pytest.mark.asyncio
async def test_sanitizer_does_not_double_wrap(make_view):
    view, _ = make_view()
    stage = XssSanitizer()
    context = RequestContext()
    wrapped = await stage.process_request(view, context)
    assert isinstance(wrapped, XssRequestWrapper)
    assert await stage.process_request(wrapped, context) is None


def test_query_string_is_rebuilt_from_cleaned_values(make_view):
    view, _ = make_view(method="GET", query="q=%3Cb%3E&next=javascript%3Ago()&page=2")
    wrapper = XssRequestWrapper(view)
    assert wrapper.query_string == "q=%26lt%3Bb%26gt%3B&next=go%28%29&page=2"
    assert XssRequestWrapper(make_view(method="GET")[0]).query_string == ""


def test_sanitized_scope_cleans_query_and_headers(make_view):
    view, _ = make_view(
        method="GET",
        query="q=%3Cscript%3Ex%3C%2Fscript%3E",
        headers={"x-note": "javascript:go()", "content-type": "application/json"},
    )
    wrapper = XssRequestWrapper(view)

    scope = wrapper.sanitized_scope(view.scope)
    assert scope is not view.scope
    assert scope["path"] == "/api/echo"
    assert scope["query_string"] == b"q=%26lt%3Bscript%26gt%3Bx%26lt%3B%2Fscript%26gt%3B"
    assert dict(scope["headers"]) == {b"x-note": b"go()", b"content-type": b"application/json"}
    assert view.scope["query_string"] == b"q=%3Cscript%3Ex%3C%2Fscript%3E"
