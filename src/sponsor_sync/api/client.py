"""Rate-limit-aware, cache-aware HTTP client shared by the GitHub and Discord APIs."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..cache import CacheEntry, CacheStore
from .errors import (
    ApiError,
    ErrorKind,
    MalformedResponseError,
    RateLimitError,
    TransientError,
    error_class,
)

logger = logging.getLogger(__name__)

# Waits shorter than this are slept through; anything longer fails fast.
MAX_BLOCKING_WAIT = 60.0
DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

# (status_code, headers, message) -> (kind, message)
Classifier = Callable[[int, httpx.Headers, str], tuple[ErrorKind, str]]
# parsed payload -> (remaining, reset_at epoch seconds) or None
PayloadRateLimit = Callable[[Any], "tuple[int, float] | None"]


@dataclass
class RateLimitSnapshot:
    """What the last response told us about our remaining quota."""

    remaining: int | None = None
    reset_at: float | None = None

    def reset_in(self, now: float) -> float | None:
        if self.reset_at is None:
            return None
        return max(self.reset_at - now, 0.0)

    def as_dict(self, now: float) -> dict[str, Any]:
        return {
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "reset_in": self.reset_in(now),
        }


@dataclass
class ApiRequest:
    """A single HTTP request, relative to the client's base URL unless absolute."""

    method: str
    path: str
    params: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)


def extract_error_message(response: httpx.Response) -> str | None:
    """Pull a human-readable message out of an error body, if it parses."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(body, dict):
        return None
    if body.get("message"):
        return str(body["message"])
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    return None


class RateLimitedClient:
    """
    Execute HTTP requests against one API while tracking its rate limit.

    Each instance owns its :class:`RateLimitSnapshot`; nothing is shared
    between clients.  Provider specifics are injected:

    - ``classify`` maps a non-2xx status to an :class:`ErrorKind` and message.
    - ``payload_rate_limit`` reads a rate-limit block embedded in a response
      body; when present it overrides the headers.
    - ``on_auth_error`` is called on every 401 (health-check signal).
    """

    def __init__(
        self,
        base_url: str,
        *,
        classify: Classifier,
        name: str = "API",
        headers: dict[str, str] | None = None,
        cache: CacheStore | None = None,
        cache_prefix: str = "cache_",
        low_water_mark: int = 100,
        payload_rate_limit: PayloadRateLimit | None = None,
        on_auth_error: Callable[[], None] | None = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        safety_margin: float = 1.0,
    ):
        self.name = name
        self.cache = cache
        self.cache_prefix = cache_prefix
        self.low_water_mark = low_water_mark
        self.snapshot = RateLimitSnapshot()
        self._classify = classify
        self._payload_rate_limit = payload_rate_limit
        self._on_auth_error = on_auth_error
        self._clock = clock
        self._sleep = sleep
        self._safety_margin = safety_margin
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RateLimitedClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(
        self,
        request: ApiRequest,
        cache_key: str | None = None,
        cache_ttl: float | None = None,
    ) -> Any:
        """
        Run *request* and return the parsed JSON payload.

        With a ``cache_key``, a live cache entry short-circuits the network
        entirely, and a fully successful response is written back with
        ``expires_at = now + cache_ttl``.

        Raises:
            ApiError: one of the subclasses in :mod:`sponsor_sync.api.errors`.
        """
        if cache_key is not None:
            cached = self._get_cached(cache_key)
            if cached is not None:
                logger.debug("%s cache hit for %s", self.name, cache_key)
                return cached.data

        self._check_rate_limit()

        response = self._send(request)
        payload = self._handle_response(response)

        if cache_key is not None and cache_ttl:
            self._set_cached(cache_key, payload, cache_ttl)
        return payload

    def rate_limit_status(self) -> dict[str, Any]:
        return self.snapshot.as_dict(self._clock())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_rate_limit(self) -> None:
        """Sleep through a short rate-limit window or fail fast on a long one."""
        remaining = self.snapshot.remaining
        if remaining is None or remaining > 0:
            return

        reset_at = self.snapshot.reset_at
        if reset_at is None:
            raise RateLimitError(f"{self.name} rate limit exceeded")

        wait = reset_at - self._clock()
        if wait <= 0:
            # Window already rolled over; the next response refreshes the snapshot.
            self.snapshot.remaining = None
            return
        if wait < MAX_BLOCKING_WAIT:
            logger.info("%s rate limited. Waiting %.1f seconds...", self.name, wait)
            self._sleep(wait + self._safety_margin)
            self.snapshot.remaining = None
            return

        raise RateLimitError(
            f"{self.name} rate limit exceeded. Resets at {time.ctime(reset_at)}",
            reset_at=reset_at,
        )

    def _send(self, request: ApiRequest) -> httpx.Response:
        try:
            return self._client.request(
                request.method,
                request.path,
                params=request.params,
                json=request.json,
                headers=request.headers or None,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Connection failed: {e}") from e

    def _handle_response(self, response: httpx.Response) -> Any:
        self._update_from_headers(response.headers)

        if not response.is_success:
            self._raise_for_status(response)

        if response.status_code == 204 or not response.content:
            return None

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedResponseError(
                f"Invalid JSON response: {e}", response.status_code, response.text[:500]
            ) from e

        self._update_from_payload(payload)

        # A GraphQL 200 can still carry errors; that is not a success.
        if isinstance(payload, dict) and payload.get("errors"):
            messages = ", ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in payload["errors"]
            )
            raise ApiError(f"{self.name} error: {messages}", response.status_code, payload)

        return payload

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        message = extract_error_message(response) or f"{self.name} error: {status}"
        kind, message = self._classify(status, response.headers, message)

        if kind is ErrorKind.AUTH and self._on_auth_error is not None:
            self._on_auth_error()

        logger.debug("%s request failed (%d, %s): %s", self.name, status, kind.value, message)

        if kind is ErrorKind.RATE_LIMITED:
            raise RateLimitError(message, status, response.text[:500], reset_at=self.snapshot.reset_at)
        raise error_class(kind)(message, status, response.text[:500])

    def _update_from_headers(self, headers: httpx.Headers) -> None:
        remaining = headers.get("x-ratelimit-remaining")
        if remaining is None:
            return
        try:
            self.snapshot.remaining = int(float(remaining))
            reset = headers.get("x-ratelimit-reset")
            self.snapshot.reset_at = float(reset) if reset is not None else None
        except ValueError:
            logger.debug("Ignoring unparseable rate-limit header: %s", remaining)
            return
        self._warn_if_low()

    def _update_from_payload(self, payload: Any) -> None:
        if self._payload_rate_limit is None:
            return
        found = self._payload_rate_limit(payload)
        if found is None:
            return
        self.snapshot.remaining, self.snapshot.reset_at = found
        self._warn_if_low()

    def _warn_if_low(self) -> None:
        remaining = self.snapshot.remaining
        if remaining is not None and remaining < self.low_water_mark:
            logger.warning("%s rate limit low: %d remaining", self.name, remaining)

    def _get_cached(self, key: str) -> CacheEntry | None:
        if self.cache is None:
            return None
        full_key = f"{self.cache_prefix}{key}"
        entry = self.cache.get(full_key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self.cache.remove(full_key)
            return None
        return entry

    def _set_cached(self, key: str, data: Any, ttl: float) -> None:
        if self.cache is None:
            return
        full_key = f"{self.cache_prefix}{key}"
        self.cache.set(full_key, CacheEntry(key=full_key, data=data, expires_at=self._clock() + ttl))
