"""Sync engine: converge the local sponsors group onto the GitHub roster."""

import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any

from ..config import SponsorsConfig
from ..github_client import GitHubClient, RosterFetcher, RosterFetchError
from ..health import GITHUB_TOKEN_INVALID, HealthRegistry
from .directory import GITHUB_PROVIDER, Directory, Group, User
from .reconciler import ReconcileResult, reconcile

logger = logging.getLogger(__name__)

SYNC_IN_PROGRESS = "sync already in progress"
NOT_CONFIGURED = "No GitHub account configured"
FETCH_FAILED = "Failed to fetch sponsors from GitHub API"


@dataclass
class SyncReport:
    """Result of a sync run, in the shape returned to callers."""

    total_sponsors: int = 0
    # roster logins in API order
    sponsor_usernames: list[str] = field(default_factory=list)
    matched_sponsors: list[dict[str, Any]] = field(default_factory=list)
    unmatched_sponsors: list[str] = field(default_factory=list)
    added_users: list[str] = field(default_factory=list)
    removed_users: list[str] = field(default_factory=list)
    already_in_group: list[str] = field(default_factory=list)
    current_group_size: int = 0
    badges_granted: int | None = None
    group_id: int | None = None
    group_created: bool = False
    dry_run: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SponsorSync:
    """
    Reconciliation entry point.

    Only one :meth:`perform` runs at a time in the process; an overlapping call
    returns immediately with an error report instead of waiting.
    """

    _lock = threading.Lock()

    def __init__(
        self,
        config: SponsorsConfig,
        directory: Directory,
        client: GitHubClient | None = None,
        health: HealthRegistry | None = None,
    ):
        self.config = config
        self.directory = directory
        self.health = health or HealthRegistry()
        self._client = client

    @property
    def client(self) -> GitHubClient:
        """Lazy-initialize the GitHub client."""
        if self._client is None:
            self._client = GitHubClient(
                self.config.token,
                api_url=self.config.api_url,
                on_auth_error=lambda: self.health.flag(GITHUB_TOKEN_INVALID),
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def perform(self, dry_run: bool = False) -> SyncReport:
        """
        Fetch the roster, diff it against the group, and apply the changes.

        With ``dry_run`` nothing is written: the group is not created, and
        the report describes what a real run would do.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Sponsor sync requested while another run is active; skipping")
            return SyncReport(dry_run=dry_run, error=SYNC_IN_PROGRESS)
        try:
            return self._perform(dry_run)
        finally:
            self._lock.release()

    def _perform(self, dry_run: bool) -> SyncReport:
        cfg = self.config
        report = SyncReport(dry_run=dry_run)

        if cfg.verbose_log:
            logger.info("Starting sponsor sync for %s", cfg.account)

        if not cfg.account:
            report.error = NOT_CONFIGURED
            return report

        group = self._resolve_group(report, dry_run)

        try:
            roster = RosterFetcher(self.client).fetch_roster(cfg.account)
        except RosterFetchError as e:
            logger.error("Sponsor roster fetch failed: %s", e)
            report.error = FETCH_FAILED
            return report
        self.health.clear(GITHUB_TOKEN_INVALID)

        result = self._diff(roster, group)
        self._fill_report(report, result)

        if cfg.verbose_log:
            for match in result.matched:
                logger.info("Matched sponsor %s to user %s", match.login, match.user.username)

        if dry_run or group is None:
            report.current_group_size = result.final_group_size
            return report

        self._apply(result, group)
        report.current_group_size = len(self.directory.group_members(group.id))

        if result.added:
            report.badges_granted = self.directory.grant_badge_backfill(cfg.badge_name, group.id)

        logger.info(
            "Sponsor sync complete: %d sponsors, %d matched, %d added, %d removed",
            report.total_sponsors,
            len(report.matched_sponsors),
            len(report.added_users),
            len(report.removed_users),
        )
        return report

    def _resolve_group(self, report: SyncReport, dry_run: bool) -> Group | None:
        cfg = self.config
        existing = self.directory.find_group(cfg.group_name)
        if dry_run:
            group = existing
        else:
            group = self.directory.ensure_group(
                cfg.group_name,
                full_name=cfg.group_full_name,
                flair_icon=cfg.flair_icon,
                flair_color=cfg.flair_color,
                flair_bg_color=cfg.flair_bg_color,
            )
            report.group_created = existing is None
        report.group_id = group.id if group else None
        return group

    def _diff(self, roster: list[str], group: Group | None) -> ReconcileResult:
        links = self.directory.identity_links(GITHUB_PROVIDER)
        by_login: dict[str, User] = {}
        by_user_id: dict[int, str] = {}
        for link in links:
            by_user_id[link.user_id] = link.login
            user = self.directory.get_user(link.user_id)
            if user is not None:
                by_login[link.login.lower()] = user

        members = self.directory.group_members(group.id) if group else []
        return reconcile(roster, by_login, members, by_user_id)

    def _apply(self, result: ReconcileResult, group: Group) -> None:
        for user in result.added:
            self.directory.add_member(group.id, user.id)
            changed = False
            if not user.title:
                user.title = self.config.title
                changed = True
            if user.primary_group_id is None:
                user.primary_group_id = group.id
                changed = True
            if changed:
                self.directory.update_user(user)

        for user in result.removed:
            self.directory.remove_member(group.id, user.id)

    @staticmethod
    def _fill_report(report: SyncReport, result: ReconcileResult) -> None:
        report.total_sponsors = len(result.roster)
        report.sponsor_usernames = list(result.roster)
        report.matched_sponsors = [
            {"login": m.login, "username": m.user.username, "user_id": m.user.id} for m in result.matched
        ]
        report.unmatched_sponsors = list(result.unmatched)
        report.added_users = [u.username for u in result.added]
        report.removed_users = [u.username for u in result.removed]
        report.already_in_group = [u.username for u in result.already_in_group]
