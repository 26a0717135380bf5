"""Rate-limited API client and its error taxonomy."""

from .client import ApiRequest, RateLimitedClient, RateLimitSnapshot
from .errors import (
    ApiError,
    ApiPermissionError,
    AuthError,
    ErrorKind,
    InvalidRequestError,
    MalformedResponseError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransientError,
)

__all__ = [
    "ApiRequest",
    "RateLimitedClient",
    "RateLimitSnapshot",
    "ApiError",
    "ApiPermissionError",
    "AuthError",
    "ErrorKind",
    "InvalidRequestError",
    "MalformedResponseError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "TransientError",
]
