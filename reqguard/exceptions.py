"""Error types raised by the request guard pipeline.

Each error carries the HTTP status code and a machine-readable error code
so the pipeline can turn it into a JSON error response without knowing
which stage raised it.
"""

from __future__ import annotations

from typing import Any


class GuardError(Exception):
    """Base exception for request guard failures."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": True,
            "status": self.status_code,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class BodyReadError(GuardError):
    """Raised when the request body stream fails while it is being buffered.

    A body can only be drained once, so the request is failed rather than retried.
    """

    def __init__(self, message: str = "Failed to read request body") -> None:
        super().__init__(message=message, status_code=400, error_code="body_read_error")


class BodyTooLargeError(GuardError):
    """Raised when a request body exceeds the buffering cap."""

    def __init__(self, limit: int, size: int | None = None) -> None:
        details: dict[str, Any] = {"limit": limit}
        if size is not None:
            details["size"] = size
        super().__init__(
            message="Request body too large",
            status_code=413,
            error_code="body_too_large",
            details=details,
        )


class ExpressionError(GuardError):
    """Raised when a mask bypass expression cannot be parsed or evaluated."""

    def __init__(self, message: str, expression: str = "") -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="expression_error",
            details={"expression": expression} if expression else None,
        )


class UrlCodecError(GuardError):
    """Raised by the strict URL encode/decode helpers."""

    def __init__(self, message: str, value: str = "") -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="url_codec_error",
            details={"value": value[:256]} if value else None,
        )
