"""GitHub GraphQL client built on :class:`RateLimitedClient`."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from ..api.client import ApiRequest, RateLimitedClient
from ..api.errors import ApiError, ErrorKind
from ..cache import CacheStore
from .models import RateLimit

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "sponsor-sync/0.1"
CACHE_TTL = 5 * 60
LOW_RATE_LIMIT = 100

RATE_LIMIT_QUERY = """
query {
  rateLimit {
    remaining
    resetAt
  }
}
"""


def classify_github_response(
    status: int, headers: httpx.Headers, message: str
) -> tuple[ErrorKind, str]:
    """Map a non-2xx GitHub response to an error kind and message."""
    if status == 401:
        return ErrorKind.AUTH, "Invalid GitHub token (401 Unauthorized)"
    if status == 403:
        if headers.get("x-ratelimit-remaining") == "0":
            return ErrorKind.RATE_LIMITED, "GitHub API rate limit exceeded"
        return ErrorKind.PERMISSION, f"Access forbidden (403): {message}"
    if status == 404:
        return ErrorKind.NOT_FOUND, "GitHub resource not found (404)"
    if status == 422:
        return ErrorKind.INVALID_REQUEST, f"Invalid request (422): {message}"
    if status == 429:
        return ErrorKind.RATE_LIMITED, "GitHub API rate limit exceeded (429)"
    if 500 <= status <= 599:
        return ErrorKind.SERVER, f"GitHub server error ({status})"
    return ErrorKind.GENERIC, message


def github_payload_rate_limit(payload: Any) -> tuple[int, float] | None:
    """Read ``data.rateLimit`` from a GraphQL payload, if the query asked for it."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict) or not data.get("rateLimit"):
        return None
    try:
        rate_limit = RateLimit.model_validate(data["rateLimit"])
    except ValidationError as e:
        logger.debug("Ignoring malformed rateLimit block: %s", e)
        return None
    return rate_limit.remaining, rate_limit.reset_at.timestamp()


class GitHubClient:
    """Thin GraphQL wrapper: one POST per query, variables passed separately."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = GITHUB_GRAPHQL_URL,
        cache: CacheStore | None = None,
        on_auth_error: Callable[[], None] | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_url = api_url
        self.http = RateLimitedClient(
            api_url,
            classify=classify_github_response,
            name="GitHub API",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                "Accept": "application/vnd.github.v3+json",
            },
            cache=cache,
            cache_prefix="cache_",
            low_water_mark=LOW_RATE_LIMIT,
            payload_rate_limit=github_payload_rate_limit,
            on_auth_error=on_auth_error,
            transport=transport,
            clock=clock,
            sleep=sleep,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def query(
        self,
        graphql: str,
        variables: dict[str, Any] | None = None,
        cache_key: str | None = None,
        cache_ttl: float = CACHE_TTL,
    ) -> dict[str, Any]:
        """Run a GraphQL query and return the full response document."""
        body: dict[str, Any] = {"query": graphql}
        if variables:
            body["variables"] = variables
        result = self.http.execute(
            ApiRequest("POST", self.api_url, json=body),
            cache_key=cache_key,
            cache_ttl=cache_ttl,
        )
        if not isinstance(result, dict):
            raise ApiError("GitHub API returned an unexpected payload", detail=result)
        return result

    def rate_limit_status(self) -> dict[str, Any]:
        """
        Current quota as ``{remaining, reset_at, reset_in}``.

        When nothing is known yet, spends one cheap query to find out.  A
        failing probe is logged and the unknown snapshot returned.
        """
        if self.http.snapshot.remaining is None:
            try:
                self.query(RATE_LIMIT_QUERY)
            except ApiError as e:
                logger.warning("Could not fetch rate limit status: %s", e)
        return self.http.rate_limit_status()
