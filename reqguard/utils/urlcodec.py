"""UTF-8 URL encoding/decoding with shared, bounded result caches."""

from __future__ import annotations

import threading
from urllib.parse import quote_plus, unquote_plus

import structlog

from reqguard.exceptions import UrlCodecError

logger = structlog.get_logger()

DEFAULT_MAX_ENTRIES = 10_000

_lock = threading.Lock()
_encode_cache: dict[str, str] = {}
_decode_cache: dict[str, str] = {}
_max_entries = DEFAULT_MAX_ENTRIES


def configure(max_entries: int) -> None:
    """Set the per-cache entry limit. A full cache is emptied before the next insert."""
    global _max_entries
    if max_entries < 1:
        raise ValueError("max_entries must be >= 1")
    _max_entries = max_entries


def clear_cache() -> None:
    with _lock:
        _encode_cache.clear()
        _decode_cache.clear()


def cache_sizes() -> tuple[int, int]:
    """(encode, decode) cache entry counts."""
    return len(_encode_cache), len(_decode_cache)


def _store(cache: dict[str, str], key: str, value: str, name: str) -> None:
    with _lock:
        if len(cache) >= _max_entries:
            logger.debug("url_cache_cleared", cache=name, entries=len(cache))
            cache.clear()
        cache[key] = value


def url_encode(value: str | None) -> str | None:
    """Form-style encode (space -> ``+``). Blank input is returned as is."""
    if value is None or not value.strip():
        return value
    cached = _encode_cache.get(value)
    if cached is not None:
        return cached
    try:
        encoded = quote_plus(value, encoding="utf-8", errors="strict")
    except UnicodeEncodeError as exc:
        raise UrlCodecError(f"URL encoding failed: {exc.reason}", value=value) from exc
    _store(_encode_cache, value, encoded, "encode")
    return encoded


def url_decode(value: str | None) -> str | None:
    """Inverse of ``url_encode``. Invalid UTF-8 escape sequences raise ``UrlCodecError``."""
    if value is None or not value.strip():
        return value
    cached = _decode_cache.get(value)
    if cached is not None:
        return cached
    try:
        decoded = unquote_plus(value, encoding="utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise UrlCodecError(f"URL decoding failed: {exc.reason}", value=value) from exc
    _store(_decode_cache, value, decoded, "decode")
    return decoded


def url_encode_safe(value: str | None) -> str | None:
    """Like ``url_encode`` but returns the input unchanged on failure."""
    try:
        return url_encode(value)
    except UrlCodecError as exc:
        logger.warning("url_encode_failed", error=exc.message)
        return value


def url_decode_safe(value: str | None) -> str | None:
    """Like ``url_decode`` but returns the input unchanged on failure."""
    try:
        return url_decode(value)
    except UrlCodecError as exc:
        logger.warning("url_decode_failed", error=exc.message)
        return value
