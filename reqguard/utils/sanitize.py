"""Shared sanitization utilities used across middleware and logging."""

from __future__ import annotations

import re

# C0 controls, DEL, C1 controls, Unicode line/paragraph separators,
# bidi overrides and the zero-width no-break space / BOM.
CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)


def strip_control_chars(value: str) -> str:
    """Strip all control characters from a string."""
    return CONTROL_CHARS_RE.sub("", value)


def truncate_for_log(value: str, max_length: int) -> str:
    """Strip control chars and truncate a value before it is logged."""
    return strip_control_chars(value)[:max_length]
