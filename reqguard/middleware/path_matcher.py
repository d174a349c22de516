"""Glob path matching that decides whether a request bypasses pipeline stages."""

from __future__ import annotations

import fnmatch
import threading
from collections.abc import Iterable

import structlog

logger = structlog.get_logger()

# Operational, diagnostic and static endpoints skipped by every stage.
DEFAULT_EXCLUDE_PATHS: tuple[str, ...] = (
    "/actuator/**",
    "/swagger-ui/**",
    "/v3/api-docs/**",
    "/webjars/**",
    "/favicon.ico",
    "/error",
    "/static/**",
    "/public/**",
    "/health",
    "/ready",
)


def _segments(value: str) -> list[str]:
    return [seg for seg in value.split("/") if seg]


def _match_segments(pattern: list[str], path: list[str]) -> bool:
    if not pattern:
        return not path
    head = pattern[0]
    if head == "**":
        rest = pattern[1:]
        # ``**`` swallows zero or more whole segments
        return any(_match_segments(rest, path[i:]) for i in range(len(path) + 1))
    if not path:
        return False
    if not fnmatch.fnmatchcase(path[0], head):
        return False
    return _match_segments(pattern[1:], path[1:])


def glob_match(pattern: str, path: str) -> bool:
    """Match *path* against an Ant-style glob.

    ``*`` and ``?`` never cross a ``/``; ``**`` matches any number of
    segments, including none (``/static/**`` matches ``/static``).
    Matching is case-sensitive.
    """
    if not pattern or not path:
        return False
    if pattern.startswith("/") != path.startswith("/"):
        return False
    return _match_segments(_segments(pattern), _segments(path))


class PathExclusionMatcher:
    """Union of registered exclusion patterns, checked existentially.

    Registration takes a lock and publishes a new frozenset; ``matches``
    reads the current snapshot without locking.
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_EXCLUDE_PATHS) -> None:
        self._lock = threading.Lock()
        self._patterns: frozenset[str] = frozenset()
        self.register(patterns)

    @property
    def patterns(self) -> frozenset[str]:
        return self._patterns

    def register(self, patterns: Iterable[str] | None, owner: str = "global") -> None:
        """Add patterns to the shared set."""
        new = {p.strip() for p in (patterns or ()) if p and p.strip()}
        if not new:
            return
        with self._lock:
            added = new - self._patterns
            if not added:
                return
            self._patterns = self._patterns | added
        logger.info("exclude_paths_registered", owner=owner, added=sorted(added))

    def matches(self, path: str, extra: Iterable[str] = ()) -> bool:
        """True if *path* matches any registered pattern or any of *extra*."""
        if not path:
            return False
        if any(glob_match(p, path) for p in self._patterns):
            return True
        return any(glob_match(p, path) for p in extra)
