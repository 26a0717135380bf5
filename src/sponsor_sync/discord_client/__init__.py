"""Discord bot client for sponsor-only invites."""

from .client import DiscordClient, classify_discord_response

__all__ = ["DiscordClient", "classify_discord_response"]
