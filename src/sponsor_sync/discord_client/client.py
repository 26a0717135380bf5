"""Discord REST client: guild presence checks, single-use invites, webhook posts."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from ..api.client import ApiRequest, RateLimitedClient
from ..api.errors import ApiError, ErrorKind
from ..cache import CacheStore

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
USER_AGENT = "sponsor-sync/0.1"
MEMBER_CACHE_TTL = 5 * 60
DEFAULT_INVITE_MAX_AGE = 3600
LOW_RATE_LIMIT = 10
WEBHOOK_TIMEOUT = 10.0


def classify_discord_response(
    status: int, headers: httpx.Headers, message: str
) -> tuple[ErrorKind, str]:
    """Map a non-2xx Discord response to an error kind and message."""
    if status == 401:
        return ErrorKind.AUTH, "Invalid Discord bot token (401 Unauthorized)"
    if status == 403:
        if headers.get("x-ratelimit-remaining") == "0":
            return ErrorKind.RATE_LIMITED, "Discord API rate limit exceeded"
        return ErrorKind.PERMISSION, f"Bot lacks required permissions (403 Forbidden): {message}"
    if status == 404:
        return ErrorKind.NOT_FOUND, "Discord resource not found (404) - Check guild/channel IDs"
    if status == 422:
        return ErrorKind.INVALID_REQUEST, f"Invalid request (422): {message}"
    if status == 429:
        return ErrorKind.RATE_LIMITED, "Discord API rate limit exceeded (429)"
    if 500 <= status <= 599:
        return ErrorKind.SERVER, f"Discord server error ({status})"
    return ErrorKind.GENERIC, message


class DiscordClient:
    """
    Discord bot client for the sponsor invite flow.

    ``member_exists`` and ``notify`` never raise; ``create_invite`` raises
    distinct :class:`ApiPermissionError` / :class:`RateLimitError` /
    :class:`ApiError` so callers can word their response accordingly.
    """

    def __init__(
        self,
        bot_token: str,
        guild_id: str = "",
        invite_channel_id: str = "",
        *,
        invite_max_age: int = DEFAULT_INVITE_MAX_AGE,
        webhook_url: str = "",
        api_url: str = DISCORD_API_BASE,
        cache: CacheStore | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.guild_id = guild_id
        self.invite_channel_id = invite_channel_id
        self.invite_max_age = invite_max_age
        self.webhook_url = webhook_url
        self.http = RateLimitedClient(
            api_url,
            classify=classify_discord_response,
            name="Discord API",
            headers={
                "Authorization": f"Bot {bot_token}",
                "User-Agent": USER_AGENT,
                "Content-Type": "application/json",
            },
            cache=cache,
            cache_prefix="discord_",
            low_water_mark=LOW_RATE_LIMIT,
            transport=transport,
            clock=clock,
            sleep=sleep,
            safety_margin=0.5,
        )
        # Webhooks carry their own token and quota; keep them off the bot client.
        self._webhook_http = httpx.Client(timeout=WEBHOOK_TIMEOUT, transport=transport)

    def close(self) -> None:
        self.http.close()
        self._webhook_http.close()

    def __enter__(self) -> DiscordClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def member_exists(self, username: str) -> bool:
        """
        Return True if *username* is a member of the configured guild.

        Results are cached for five minutes.  Any failure reads as "not a
        member" so a flaky presence check never blocks the invite flow.
        """
        if not self.guild_id or not username:
            return False

        try:
            result = self.http.execute(
                ApiRequest(
                    "GET",
                    f"/guilds/{self.guild_id}/members/search",
                    params={"query": username, "limit": 1},
                ),
                cache_key=f"member_{self.guild_id}_{username.lower()}",
                cache_ttl=MEMBER_CACHE_TTL,
            )
        except ApiError as e:
            logger.error("Discord API error: %s", e)
            return False

        return isinstance(result, list) and len(result) > 0

    def create_invite(self, channel_id: str | None = None) -> str:
        """
        Create a single-use invite that expires after ``invite_max_age`` seconds.

        Returns:
            The invite code.
        """
        channel_id = channel_id or self.invite_channel_id
        if not channel_id:
            raise ApiError("No Discord channel ID configured")

        result = self.http.execute(
            ApiRequest(
                "POST",
                f"/channels/{channel_id}/invites",
                json={"max_age": self.invite_max_age, "max_uses": 1},
            )
        )
        code = result.get("code") if isinstance(result, dict) else None
        if not code:
            raise ApiError("Discord API did not return an invite code", detail=result)
        return str(code)

    def notify(self, content: str) -> bool:
        """Post *content* to the configured webhook.  Best-effort: returns success."""
        if not self.webhook_url:
            return False
        try:
            response = self._webhook_http.post(
                self.webhook_url,
                json={"content": content},
                headers={"User-Agent": USER_AGENT},
            )
        except httpx.HTTPError as e:
            logger.error("Discord webhook error: %s", e)
            return False
        if not response.is_success:
            logger.warning("Discord webhook returned %d", response.status_code)
        return response.is_success

    def rate_limit_status(self) -> dict[str, Any]:
        return self.http.rate_limit_status()
