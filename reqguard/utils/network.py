"""Client identity helpers: proxy-aware client IP, loopback normalization, fingerprints."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

UNKNOWN = "unknown"

# Checked in this order; the first header yielding a usable address wins.
DEFAULT_IP_HEADERS: tuple[str, ...] = (
    "X-Forwarded-For",
    "X-Real-IP",
    "Proxy-Client-IP",
    "WL-Proxy-Client-IP",
    "HTTP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
)

_IPV6_LOOPBACKS = frozenset({"::1", "0:0:0:0:0:0:0:1"})
IPV4_LOOPBACK = "127.0.0.1"


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works on plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is not None:
        return value
    lower = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lower:
            return candidate
    return None


def _usable(candidate: str | None) -> bool:
    return bool(candidate and candidate.strip()) and candidate.strip().lower() != UNKNOWN


def reverse_proxy_ip(value: str | None) -> str | None:
    """First non-blank, non-``unknown`` entry of a comma-separated proxy chain.

    ``"192.168.1.100, 10.0.0.1, unknown"`` -> ``"192.168.1.100"``;
    ``"unknown, 203.0.113.1"`` -> ``"203.0.113.1"``. Returns None when the
    chain holds no usable entry.
    """
    if value is None:
        return None
    for part in value.split(","):
        if _usable(part):
            return part.strip()
    return None


def normalize_ip(ip: str | None) -> str | None:
    """Rewrite IPv6 loopback literals to ``127.0.0.1``; everything else is unchanged."""
    if not ip:
        return ip
    if ip in _IPV6_LOOPBACKS:
        return IPV4_LOOPBACK
    return ip


def client_ip(
    headers: Mapping[str, str],
    remote_addr: str | None,
    extra_header_names: Iterable[str] = (),
) -> str | None:
    """Resolve the client address through proxy headers, falling back to the peer."""
    names = list(dict.fromkeys([*DEFAULT_IP_HEADERS, *extra_header_names]))
    for name in names:
        candidate = reverse_proxy_ip(get_header(headers, name))
        if candidate is not None:
            return normalize_ip(candidate)
    fallback = reverse_proxy_ip(remote_addr)
    return normalize_ip(fallback if fallback is not None else remote_addr)


def string_hash(value: str) -> int:
    """Deterministic signed 32-bit polynomial hash over UTF-16 code units.

    ``h = 31*h + unit`` with 32-bit wraparound. Stable across processes,
    unlike the built-in ``hash``.
    """
    data = value.encode("utf-16-be", errors="surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = (data[i] << 8) | data[i + 1]
        h = (31 * h + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def device_fingerprint(headers: Mapping[str, str]) -> str:
    """Weak heuristic client identifier from User-Agent, Accept-Language, Accept-Encoding.

    Not a security token: it is neither collision-free nor secret.
    """
    parts: list[str] = []
    user_agent = get_header(headers, "User-Agent")
    if user_agent is not None:
        parts.append(str(string_hash(user_agent)))
    accept_language = get_header(headers, "Accept-Language")
    if accept_language is not None:
        parts.append("-" + str(string_hash(accept_language)))
    accept_encoding = get_header(headers, "Accept-Encoding")
    if accept_encoding is not None:
        parts.append("-" + str(string_hash(accept_encoding)))
    return f"FP-{abs(string_hash(''.join(parts)))}"


def extract_path_from_uri(uri: str | None) -> str:
    """Strip the query string and fragment from a URI."""
    if not uri:
        return ""
    uri = uri.split("?", 1)[0]
    return uri.split("#", 1)[0]


def full_url(path: str, query_string: str | None) -> str:
    """Path plus query string, the way the request logger reports it."""
    if query_string and query_string.strip():
        return f"{path}?{query_string}"
    return path


def request_path(scope_or_uri: Mapping[str, object] | str | None) -> str:
    """Request path from an ASGI scope or a raw URI."""
    if isinstance(scope_or_uri, Mapping):
        path = scope_or_uri.get("path")
        return path if isinstance(path, str) else ""
    return extract_path_from_uri(scope_or_uri)
