"""Error taxonomy for remote graph calls."""

from __future__ import annotations

from typing import Literal

import httpx

type ErrorCategory = Literal[
    "transport_error",
    "client_error",
    "server_error",
    "stream_error",
    "parse_error",
    "session_error",
    "timeout",
]

CLIENT_ERROR_STATUSES = frozenset({400, 401, 403})
_NON_RETRYABLE: frozenset[ErrorCategory] = frozenset(
    {"client_error", "session_error", "parse_error"}
)


class RemoteCallError(RuntimeError):
    """Remote call failure with explicit category."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.category not in _NON_RETRYABLE

    @classmethod
    def for_status(cls, status_code: int, reason: str) -> RemoteCallError:
        """Build the error for one non-success HTTP status."""
        category: ErrorCategory = (
            "client_error" if status_code in CLIENT_ERROR_STATUSES else "server_error"
        )
        return cls(f"HTTP {status_code}: {reason}", category=category, status_code=status_code)

    @classmethod
    def from_httpx(cls, exc: Exception) -> RemoteCallError:
        """Map an httpx failure onto the taxonomy."""
        if isinstance(exc, RemoteCallError):
            return exc
        if isinstance(exc, httpx.TimeoutException):
            return cls(str(exc) or "request timed out", category="timeout")
        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            return cls.for_status(response.status_code, response.reason_phrase)
        if isinstance(exc, httpx.HTTPError):
            return cls(str(exc) or type(exc).__name__, category="transport_error")
        return cls(str(exc), category="transport_error")
