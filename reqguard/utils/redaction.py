"""Redaction of request headers, parameters and bodies for safe logging.

Redaction here is textual: bodies are matched with regexes per sensitive key,
never parsed into an object graph, so it can both miss values and catch
innocent ones. It exists to keep obvious credentials out of log records.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from functools import lru_cache

import structlog

from reqguard.middleware.body_cache import CachingRequestWrapper, content_charset
from reqguard.middleware.request_view import RequestView

logger = structlog.get_logger()

# Matched case-insensitively: as substrings of header/parameter names, and as
# exact keys inside bodies.
SENSITIVE_PATTERNS: tuple[str, ...] = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "key",
    "credential",
    "auth",
    "authorization",
    "signature",
    "apiKey",
    "api_key",
    "accessToken",
    "access_token",
    "x-auth-token",
    "cookie",
    "set-cookie",
    "x-api-key",
    "x-secret",
    "refreshToken",
    "refresh_token",
    "sessionId",
    "session_id",
)

HEADER_MASK = "***"
VALUE_MASK = "****"

TEXTUAL_CONTENT_PREFIXES: tuple[str, ...] = ("application/json", "application/xml", "text/")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_MAX_LOG_BODY_BYTES = 10 * 1024

BODY_EMPTY = "Request body is empty"
BODY_NOT_CACHED = "Request body available (not extracted for performance and stream safety)"
BODY_REDACTION_FAILED = "Request body sanitization failed"


def body_too_large(size: int) -> str:
    return f"Request body too large ({size} bytes)"


def is_sensitive_name(name: str, patterns: Iterable[str] = SENSITIVE_PATTERNS) -> bool:
    """True if any sensitive pattern occurs in *name* (case-insensitive)."""
    lowered = name.lower()
    return any(p.lower() in lowered for p in patterns)


@lru_cache(maxsize=None)
def _json_patterns(key: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    quoted = re.compile(r'("' + re.escape(key) + r'")\s*:\s*"[^"]*"', re.IGNORECASE)
    bare = re.compile(r'("' + re.escape(key) + r'")\s*:\s*[^,}\]\s]+', re.IGNORECASE)
    return quoted, bare


@lru_cache(maxsize=None)
def _form_pattern(key: str) -> re.Pattern[str]:
    return re.compile("(" + re.escape(key) + ")=[^&]*", re.IGNORECASE)


@lru_cache(maxsize=None)
def _generic_pattern(key: str) -> re.Pattern[str]:
    return re.compile("(" + re.escape(key) + r")\s*[=:]\s*\S+", re.IGNORECASE)


def redact_json_text(body: str, patterns: Iterable[str] = SENSITIVE_PATTERNS) -> str:
    """Replace string and bare-literal values that follow a sensitive quoted key."""
    for key in patterns:
        quoted, bare = _json_patterns(key)
        body = quoted.sub(r'\1:"' + VALUE_MASK + '"', body)
        body = bare.sub(r'\1:"' + VALUE_MASK + '"', body)
    return body


def redact_form_text(body: str, patterns: Iterable[str] = SENSITIVE_PATTERNS) -> str:
    """Replace the value segment of sensitive ``key=value`` pairs."""
    for key in patterns:
        body = _form_pattern(key).sub(r"\1=" + VALUE_MASK, body)
    return body


def redact_generic_text(body: str, patterns: Iterable[str] = SENSITIVE_PATTERNS) -> str:
    """Replace the token after a sensitive key followed by ``=`` or ``:``."""
    for key in patterns:
        body = _generic_pattern(key).sub(r"\1=" + VALUE_MASK, body)
    return body


class SensitiveContentRedactor:
    """Builds redacted copies of headers, parameters and bodies for log records."""

    def __init__(
        self,
        patterns: Iterable[str] = SENSITIVE_PATTERNS,
        max_body_bytes: int = DEFAULT_MAX_LOG_BODY_BYTES,
    ) -> None:
        self.patterns = tuple(patterns)
        self.max_body_bytes = max_body_bytes

    def redact_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        return {
            name: HEADER_MASK if is_sensitive_name(name, self.patterns) else value
            for name, value in headers.items()
        }

    def redact_parameters(self, params: Mapping[str, list[str]]) -> dict[str, list[str]]:
        return {
            name: [VALUE_MASK] if is_sensitive_name(name, self.patterns) else list(values)
            for name, values in params.items()
        }

    def redact_body_text(self, body: str, content_type: str | None) -> str:
        """Pick the JSON, form or generic strategy by content type and apply it."""
        if not body or not body.strip():
            return body
        ctype = (content_type or "").lower()
        if ctype.startswith("application/json"):
            return redact_json_text(body, self.patterns)
        if ctype.startswith("application/x-www-form-urlencoded"):
            return redact_form_text(body, self.patterns)
        return redact_generic_text(body, self.patterns)

    def redact_body(
        self,
        raw: bytes | None,
        content_type: str | None,
        method: str,
        content_length: int | None = None,
    ) -> str | None:
        """Redacted body text, a sentinel string, or None when the body is not loggable.

        Only textual bodies of POST/PUT/PATCH requests are considered. Bodies
        over the size threshold are reported by size. Never raises.
        """
        ctype = (content_type or "").lower()
        if not ctype or not ctype.startswith(TEXTUAL_CONTENT_PREFIXES):
            return None

        size = content_length if content_length is not None else len(raw or b"")
        if size > self.max_body_bytes:
            return body_too_large(size)

        if method.upper() not in BODY_METHODS:
            return None

        if not raw:
            return BODY_EMPTY

        try:
            text = raw.decode(content_charset(content_type))
            return self.redact_body_text(text, content_type)
        except Exception as exc:
            logger.warning("body_redaction_failed", error=str(exc), content_type=content_type)
            return BODY_REDACTION_FAILED

    def extract_request_body(self, request: RequestView) -> str | None:
        """Redacted body of *request*, without ever touching an unbuffered stream.

        Header values are read from the caching wrapper, below any sanitizing
        wrapper, so the content type and length are the ones the client sent.
        """
        cached = request.find(CachingRequestWrapper)
        source = cached if cached is not None else request
        ctype = (source.content_type or "").lower()
        if not ctype or not ctype.startswith(TEXTUAL_CONTENT_PREFIXES):
            return None

        if cached is None:
            declared = source.content_length
            if declared is not None and declared > self.max_body_bytes:
                return body_too_large(declared)
            if source.method.upper() not in BODY_METHODS:
                return None
            return BODY_NOT_CACHED

        return self.redact_body(
            cached.cached_body.content,
            cached.content_type,
            cached.method,
            cached.content_length,
        )
