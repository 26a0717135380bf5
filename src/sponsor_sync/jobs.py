"""Entry points for an external scheduler.

``run_sync_job`` is meant to run every few hours and ``run_cleanup_job``
daily.  Neither raises: every failure is logged, recorded where it makes
sense, and returned in the result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from .cache import SQLiteCacheStore
from .config import AppConfig
from .github_client import GitHubClient
from .health import GITHUB_TOKEN_INVALID, HealthRegistry
from .invites import InviteLog
from .sync import FileDirectory, SponsorSync, SyncHistory, SyncReport
from .sync.directory import Directory

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    history_deleted: int = 0
    invites_expired: int = 0
    invites_deleted: int = 0
    cache_expired: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def build_sync(
    config: AppConfig,
    directory: Directory | None = None,
    health: HealthRegistry | None = None,
) -> SponsorSync:
    """Wire a :class:`SponsorSync` to the on-disk cache, directory and health store."""
    storage = config.storage
    health = health or HealthRegistry(storage.health_db)
    client = GitHubClient(
        config.sponsors.token,
        api_url=config.sponsors.api_url,
        cache=SQLiteCacheStore(storage.cache_db),
        on_auth_error=lambda: health.flag(GITHUB_TOKEN_INVALID),
    )
    return SponsorSync(
        config.sponsors,
        directory if directory is not None else FileDirectory(storage.directory_path),
        client=client,
        health=health,
    )


def run_sync_job(
    config: AppConfig,
    engine: SponsorSync | None = None,
    history: SyncHistory | None = None,
) -> dict[str, Any] | None:
    """
    Run one sponsor sync and record its outcome.

    Returns:
        The sync report as a dict (with ``error`` set on failure), or None
        when the sync is disabled.
    """
    if not config.sponsors.enabled:
        logger.debug("Sponsor sync disabled; skipping")
        return None

    logger.info("Starting GitHub sponsors sync")
    history = history or SyncHistory(config.storage.history_db)

    try:
        engine = engine or build_sync(config)
        try:
            report = engine.perform()
        finally:
            engine.close()
    except Exception as e:
        logger.exception("GitHub sponsors sync failed: %s", e)
        _record_quietly(history, None, str(e))
        return {"error": str(e)}

    if report.error:
        logger.error("GitHub sponsors sync failed: %s", report.error)
        _record_quietly(history, report, report.error)
        return report.to_dict()

    _record_quietly(history, report, None)
    try:
        history.cleanup(config.sponsors.history_retention_days)
    except Exception as e:
        logger.error("Sync history cleanup failed: %s", e)

    logger.info(
        "GitHub sponsors sync completed: %d matched, %d unmatched",
        len(report.matched_sponsors),
        len(report.unmatched_sponsors),
    )
    return report.to_dict()


def run_cleanup_job(
    config: AppConfig,
    history: SyncHistory | None = None,
    invite_log: InviteLog | None = None,
    cache: SQLiteCacheStore | None = None,
) -> CleanupResult:
    """Apply history and invite retention, sweep expired invites, prune the cache."""
    result = CleanupResult()
    if not config.sponsors.enabled:
        logger.debug("Sponsor sync disabled; skipping cleanup")
        return result

    storage = config.storage

    try:
        history = history or SyncHistory(storage.history_db)
        result.history_deleted = history.cleanup(config.sponsors.history_retention_days)
    except Exception as e:
        logger.error("Sync history cleanup failed: %s", e)
        result.errors.append(f"history: {e}")

    try:
        invite_log = invite_log or InviteLog(storage.invites_db)
        result.invites_expired = invite_log.mark_expired_invites()
        result.invites_deleted = invite_log.cleanup_old_entries(config.discord.invite_retention_days)
    except Exception as e:
        logger.error("Invite log cleanup failed: %s", e)
        result.errors.append(f"invites: {e}")

    try:
        cache = cache or SQLiteCacheStore(storage.cache_db)
        result.cache_expired = cache.cleanup_expired()
    except Exception as e:
        logger.error("Cache cleanup failed: %s", e)
        result.errors.append(f"cache: {e}")

    if result.history_deleted:
        logger.info("Daily cleanup completed, removed %d old sync records", result.history_deleted)
    return result


def _record_quietly(history: SyncHistory, report: SyncReport | None, error: str | None) -> None:
    try:
        history.record(report, error)
    except Exception as e:
        logger.error("Failed to log sync outcome: %s", e)
