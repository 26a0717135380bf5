"""Sponsor-only Discord invite flow."""

import logging
import time
from collections.abc import Callable
from typing import Any

from ..api.errors import ApiError, ApiPermissionError, RateLimitError
from ..config import DiscordConfig, SponsorsConfig
from ..discord_client import DiscordClient
from ..sync.directory import DISCORD_PROVIDER, GITHUB_PROVIDER, Directory, Group, IdentityLink
from .log import InviteLog

logger = logging.getLogger(__name__)

INVITE_URL = "https://discord.gg/{code}"

# reason -> (HTTP-style status, user-facing message)
REASONS: dict[str, tuple[int, str]] = {
    "not_sponsor": (403, "This feature is only available to sponsors."),
    "not_configured": (422, "Discord is not configured"),
    "discord_not_linked": (422, "Link your Discord account before requesting an invite."),
    "already_on_server": (422, "You are already a member of the Discord server."),
    "rate_limited": (429, "Too many invite requests right now. Please try again later."),
    "bot_permission": (500, "The Discord bot lacks permission to create invites."),
    "api_error": (500, "Could not create a Discord invite. Please try again later."),
}


class InviteRequestError(Exception):
    """An invite request was refused; ``reason`` is one of :data:`REASONS`."""

    def __init__(self, reason: str, detail: str | None = None):
        self.status_code, message = REASONS[reason]
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "reason": self.reason}


class InviteService:
    """Presence checks and invite issuance for members of the sponsors group."""

    def __init__(
        self,
        sponsors: SponsorsConfig,
        discord: DiscordConfig,
        directory: Directory,
        client: DiscordClient,
        invite_log: InviteLog,
        clock: Callable[[], float] = time.time,
    ):
        self.sponsors = sponsors
        self.discord = discord
        self.directory = directory
        self.client = client
        self.invite_log = invite_log
        self._clock = clock

    def user_status(self, user_id: int) -> dict[str, Any]:
        """Whether *user_id* is currently in the sponsors group, and since when."""
        group = self._member_group(user_id)
        if group is None:
            return {"is_sponsor": False, "group_id": None, "group_name": None, "joined_at": None}
        joined_at = group.joined_at.get(user_id)
        return {
            "is_sponsor": True,
            "group_id": group.id,
            "group_name": group.name,
            "joined_at": int(joined_at) if joined_at is not None else None,
        }

    def status(self, user_id: int) -> dict[str, Any]:
        """Discord link and server presence for a sponsor."""
        self._require_sponsor(user_id)
        self._require_configured()

        link = self.directory.identity_link(user_id, DISCORD_PROVIDER)
        if link is None:
            return {"has_discord_linked": False, "on_server": False, "discord_username": None}

        username = _discord_username(link)
        return {
            "has_discord_linked": True,
            "on_server": self.client.member_exists(username),
            "discord_username": username,
        }

    def generate_invite(self, user_id: int) -> dict[str, Any]:
        """
        Issue a single-use invite for a sponsor not yet on the server.

        Returns:
            ``{invite_code, invite_url, expires_at}``

        Raises:
            InviteRequestError: with a reason callers can show directly.
        """
        self._require_sponsor(user_id)
        self._require_configured()

        link = self.directory.identity_link(user_id, DISCORD_PROVIDER)
        if link is None:
            raise InviteRequestError("discord_not_linked")
        discord_username = _discord_username(link)

        if self.client.member_exists(discord_username):
            raise InviteRequestError("already_on_server")

        try:
            code = self.client.create_invite()
        except ApiPermissionError as e:
            logger.error("Discord permission error: %s", e)
            raise InviteRequestError("bot_permission", str(e)) from e
        except RateLimitError as e:
            logger.error("Discord rate limit: %s", e)
            raise InviteRequestError("rate_limited", str(e)) from e
        except ApiError as e:
            logger.error("Discord invite generation error: %s", e)
            raise InviteRequestError("api_error", str(e)) from e

        github_username = self._github_username(user_id)
        expires_at = self._clock() + self.client.invite_max_age
        try:
            self.invite_log.log_invite(
                user_id=user_id,
                invite_code=code,
                discord_username=discord_username,
                github_username=github_username,
                expires_at=expires_at,
            )
            self.client.notify(f"{github_username} generated a Discord invite (Discord: {discord_username})")
        except Exception as e:
            logger.error("Discord invite %s could not be recorded: %s", code, e)
            raise InviteRequestError("api_error", str(e)) from e
        logger.info("Issued Discord invite %s to user %d", code, user_id)

        return {
            "invite_code": code,
            "invite_url": INVITE_URL.format(code=code),
            "expires_at": int(expires_at),
        }

    def _member_group(self, user_id: int) -> Group | None:
        group = self.directory.find_group(self.sponsors.group_name)
        if group is None or user_id not in group.member_ids:
            return None
        return group

    def _require_sponsor(self, user_id: int) -> None:
        if self._member_group(user_id) is None:
            raise InviteRequestError("not_sponsor")

    def _require_configured(self) -> None:
        if not self.discord.configured:
            raise InviteRequestError("not_configured")

    def _github_username(self, user_id: int) -> str:
        link = self.directory.identity_link(user_id, GITHUB_PROVIDER)
        if link is not None:
            return link.login
        user = self.directory.get_user(user_id)
        return user.username if user else str(user_id)


def _discord_username(link: IdentityLink) -> str:
    return link.login or link.display_name or ""
