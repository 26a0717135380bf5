"""Closed error taxonomy shared by every rate-limited API client."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Every way a request through :class:`RateLimitedClient` can fail."""

    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    SERVER = "server"
    GENERIC = "generic"
    MALFORMED_RESPONSE = "malformed_response"
    TRANSIENT = "transient"


class ApiError(Exception):
    """Base exception for external API failures.

    Raised as-is for the generic kind (unclassified status codes and
    query-language ``errors`` payloads).
    """

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail


class RateLimitError(ApiError):
    """Quota exhausted; ``reset_at`` is the epoch second it refills, if known."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: Any = None,
        reset_at: float | None = None,
    ) -> None:
        super().__init__(message, status_code, detail)
        self.reset_at = reset_at


class AuthError(ApiError):
    """401 - credential missing or invalid."""

    kind = ErrorKind.AUTH


class ApiPermissionError(ApiError):
    """403 without quota exhaustion - credential lacks scope or permission."""

    kind = ErrorKind.PERMISSION


class NotFoundError(ApiError):
    """404."""

    kind = ErrorKind.NOT_FOUND


class InvalidRequestError(ApiError):
    """422."""

    kind = ErrorKind.INVALID_REQUEST


class ServerError(ApiError):
    """5xx."""

    kind = ErrorKind.SERVER


class MalformedResponseError(ApiError):
    """2xx whose body could not be parsed."""

    kind = ErrorKind.MALFORMED_RESPONSE


class TransientError(ApiError):
    """Timeout or connection failure before any response arrived."""

    kind = ErrorKind.TRANSIENT


_BY_KIND: dict[ErrorKind, type[ApiError]] = {
    ErrorKind.RATE_LIMITED: RateLimitError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.PERMISSION: ApiPermissionError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.SERVER: ServerError,
    ErrorKind.GENERIC: ApiError,
    ErrorKind.MALFORMED_RESPONSE: MalformedResponseError,
    ErrorKind.TRANSIENT: TransientError,
}


def error_class(kind: ErrorKind) -> type[ApiError]:
    """Return the exception class raised for *kind*."""
    return _BY_KIND[kind]
