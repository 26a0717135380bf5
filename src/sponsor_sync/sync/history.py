"""Sync run history stored in SQLite.

One row per sync run with exact counts, plus a JSON details blob holding
the roster and the added/removed usernames for audit.  Blob lists are
capped so a very large roster can't bloat the table; the count columns are
always authoritative.
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .._sqlite import connect, init_db
from .engine import SyncReport

logger = logging.getLogger(__name__)

DETAILS_LIST_CAP = 500
SECONDS_PER_DAY = 86400

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at REAL NOT NULL,
    total_sponsors INTEGER NOT NULL DEFAULT 0,
    matched_count INTEGER NOT NULL DEFAULT 0,
    unmatched_count INTEGER NOT NULL DEFAULT 0,
    added_count INTEGER NOT NULL DEFAULT 0,
    removed_count INTEGER NOT NULL DEFAULT 0,
    success INTEGER NOT NULL DEFAULT 1,
    error_message TEXT,
    details TEXT        -- JSON: sponsor_usernames, added_users, removed_users
);

CREATE INDEX IF NOT EXISTS idx_sync_history_created ON sync_history(created_at);
CREATE INDEX IF NOT EXISTS idx_sync_history_success ON sync_history(success);
"""


@dataclass(frozen=True)
class SyncOutcome:
    """A recorded sync run."""

    id: int
    created_at: float
    total_sponsors: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    added_count: int = 0
    removed_count: int = 0
    success: bool = True
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _capped(items: list[str]) -> list[str]:
    return list(items[:DETAILS_LIST_CAP])


class SyncHistory:
    """Persist and query :class:`SyncOutcome` rows."""

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        init_db(self.db_path, _SCHEMA)

    def record(self, report: SyncReport | None = None, error: str | None = None) -> SyncOutcome:
        """
        Record one run.

        Args:
            report: What the run produced; may be None when it failed early.
            error: Failure message.  ``success`` is ``error is None``.
        """
        report = report or SyncReport()
        sponsor_usernames = report.sponsor_usernames
        details = {
            "sponsor_usernames": _capped(sponsor_usernames),
            "added_users": _capped(report.added_users),
            "removed_users": _capped(report.removed_users),
        }
        if any(len(v) > DETAILS_LIST_CAP for v in (sponsor_usernames, report.added_users, report.removed_users)):
            details["truncated"] = True

        created_at = self._clock()
        values = (
            created_at,
            report.total_sponsors,
            len(report.matched_sponsors),
            len(report.unmatched_sponsors),
            len(report.added_users),
            len(report.removed_users),
            1 if error is None else 0,
            error,
            json.dumps(details),
        )
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO sync_history (created_at, total_sponsors, matched_count, unmatched_count, "
                "added_count, removed_count, success, error_message, details) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                values,
            )
            conn.commit()
            row_id = cur.lastrowid

        return SyncOutcome(
            id=row_id,
            created_at=created_at,
            total_sponsors=report.total_sponsors,
            matched_count=len(report.matched_sponsors),
            unmatched_count=len(report.unmatched_sponsors),
            added_count=len(report.added_users),
            removed_count=len(report.removed_users),
            success=error is None,
            error_message=error,
            details=details,
        )

    def cleanup(self, retention_days: int) -> int:
        """Delete outcomes older than *retention_days*.  Returns count deleted."""
        cutoff = self._clock() - retention_days * SECONDS_PER_DAY
        with connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM sync_history WHERE created_at < ?", (cutoff,))
            conn.commit()
            deleted = cur.rowcount
        if deleted:
            logger.info("Cleaned up %d sync history entries older than %d days", deleted, retention_days)
        return deleted

    def recent(self, limit: int = 10) -> list[SyncOutcome]:
        return self._select("", (), limit)

    def successful(self, limit: int | None = None) -> list[SyncOutcome]:
        return self._select("WHERE success = 1", (), limit)

    def failed(self, limit: int | None = None) -> list[SyncOutcome]:
        return self._select("WHERE success = 0", (), limit)

    def _select(self, where: str, params: tuple[Any, ...], limit: int | None) -> list[SyncOutcome]:
        sql = f"SELECT * FROM sync_history {where} ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        with connect(self.db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            SyncOutcome(
                id=row["id"],
                created_at=row["created_at"],
                total_sponsors=row["total_sponsors"],
                matched_count=row["matched_count"],
                unmatched_count=row["unmatched_count"],
                added_count=row["added_count"],
                removed_count=row["removed_count"],
                success=bool(row["success"]),
                error_message=row["error_message"],
                details=json.loads(row["details"]) if row["details"] else {},
            )
            for row in rows
        ]
