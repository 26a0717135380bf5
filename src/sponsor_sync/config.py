"""Configuration management for sponsor-sync."""

import re
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GITHUB_ACCOUNT_RE = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?$")
GITHUB_TOKEN_RES = (
    re.compile(r"^ghp_[a-zA-Z0-9]{36}$"),
    re.compile(r"^github_pat_[a-zA-Z0-9_]{22,255}$"),
    re.compile(r"^[a-f0-9]{40}$"),
)
DISCORD_SNOWFLAKE_RE = re.compile(r"^\d{17,19}$")
DISCORD_WEBHOOK_RE = re.compile(r"^https://(discord|discordapp)\.com/api/webhooks/\d{17,19}/[A-Za-z0-9_-]+$")
DISCORD_TOKEN_PART_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class SponsorsConfig(BaseSettings):
    """GitHub Sponsors sync configuration."""

    model_config = SettingsConfigDict(env_prefix="SPONSORS_")

    enabled: bool = Field(default=False, description="Run the scheduled sync")
    account: str = Field(default="", description="GitHub user or organization receiving sponsorships")
    token: str = Field(default="", description="GitHub token with read:org and read:user")
    group_name: str = Field(default="sponsors", description="Local group mirroring the roster")
    group_full_name: str = Field(default="Sponsors", description="Display name used when creating the group")
    title: str = Field(default="GitHub Sponsor", description="Title given to new members without one")
    badge_name: str = Field(default="GitHub Sponsor", description="Badge backfilled after additions")
    flair_icon: str = Field(default="fab-github")
    flair_color: str = Field(default="")
    flair_bg_color: str = Field(default="")
    verbose_log: bool = Field(default=False, description="Log every sponsor match")
    history_retention_days: int = Field(default=30, ge=1, description="Days of sync history to keep")
    api_url: str = Field(default="https://api.github.com/graphql")

    @field_validator("account")
    @classmethod
    def _check_account(cls, v: str) -> str:
        v = v.strip()
        if v and (not GITHUB_ACCOUNT_RE.match(v) or "--" in v):
            raise ValueError(
                "must be a valid GitHub username (1-39 alphanumeric characters or single hyphens, "
                "not starting or ending with a hyphen)"
            )
        return v

    @field_validator("token")
    @classmethod
    def _check_token(cls, v: str) -> str:
        v = v.strip()
        if v and not any(p.match(v) for p in GITHUB_TOKEN_RES):
            raise ValueError("does not look like a GitHub personal access token")
        return v

    @property
    def configured(self) -> bool:
        return bool(self.account and self.token)


class DiscordConfig(BaseSettings):
    """Discord invite configuration."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_")

    bot_token: str = Field(default="", description="Bot token with Create Invite permission")
    guild_id: str = Field(default="", description="Discord server (guild) ID")
    invite_channel_id: str = Field(default="", description="Channel the invites point to")
    invite_max_age: int = Field(default=3600, ge=0, description="Invite lifetime in seconds")
    webhook_url: str = Field(default="", description="Optional webhook for invite notifications")
    invite_retention_days: int = Field(default=30, ge=1, description="Days of invite logs to keep")
    api_url: str = Field(default="https://discord.com/api/v10")

    @field_validator("guild_id", "invite_channel_id")
    @classmethod
    def _check_snowflake(cls, v: str) -> str:
        v = v.strip()
        if v and not DISCORD_SNOWFLAKE_RE.match(v):
            raise ValueError("must be a Discord ID (17-19 digits)")
        return v

    @field_validator("webhook_url")
    @classmethod
    def _check_webhook(cls, v: str) -> str:
        v = v.strip()
        if v and not DISCORD_WEBHOOK_RE.match(v):
            raise ValueError("must be a https://discord.com/api/webhooks/<id>/<token> URL")
        return v

    @field_validator("bot_token")
    @classmethod
    def _check_bot_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return v
        parts = v.split(".")
        if len(parts) != 3 or not 50 <= len(v) <= 100 or not all(DISCORD_TOKEN_PART_RE.match(p) for p in parts):
            raise ValueError("does not look like a Discord bot token")
        return v

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.guild_id)


class StorageConfig(BaseSettings):
    """Where local state lives."""

    model_config = SettingsConfigDict(env_prefix="SPONSOR_SYNC_")

    data_dir: Path = Field(
        default=Path.home() / ".sponsor-sync",
        description="Directory for the cache, history and invite databases",
    )
    directory_file: Path | None = Field(
        default=None,
        description="YAML user directory (default: <data_dir>/directory.yaml)",
    )

    @property
    def cache_db(self) -> Path:
        return self.data_dir / "cache.db"

    @property
    def history_db(self) -> Path:
        return self.data_dir / "history.db"

    @property
    def invites_db(self) -> Path:
        return self.data_dir / "invites.db"

    @property
    def health_db(self) -> Path:
        return self.data_dir / "health.db"

    @property
    def directory_path(self) -> Path:
        return self.directory_file or self.data_dir / "directory.yaml"


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sponsors: SponsorsConfig = Field(default_factory=SponsorsConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def secrets(self) -> list[str]:
        """Credentials that must never reach a log line."""
        return [s for s in (self.sponsors.token, self.discord.bot_token, self.discord.webhook_url) if s]


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration from environment and optional YAML file."""
    if config_path:
        return AppConfig.from_yaml(config_path)
    return AppConfig()
