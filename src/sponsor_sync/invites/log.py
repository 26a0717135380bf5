"""Issued Discord invites and their lifecycle.

Status is never stored; it is derived from ``used_at``, the ``expired``
flag, and ``expires_at``:

- ``used`` once ``used_at`` is set, even if the invite has since expired
- ``expired`` if flagged, or past ``expires_at``
- ``active`` otherwise
"""

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .._sqlite import connect, init_db

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
RECENT_LIMIT = 50
SECONDS_PER_DAY = 86400

_SCHEMA = """
CREATE TABLE IF NOT EXISTS discord_invite_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    github_username TEXT,
    discord_username TEXT NOT NULL,
    invite_code TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    used_at REAL,
    expired INTEGER NOT NULL DEFAULT 0
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_discord_invites_code ON discord_invite_logs(invite_code);
CREATE INDEX IF NOT EXISTS idx_discord_invites_created_at ON discord_invite_logs(created_at);
CREATE INDEX IF NOT EXISTS idx_discord_invites_user_id ON discord_invite_logs(user_id);
"""


class InviteStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class DuplicateInviteError(ValueError):
    """An invite with this code was already logged."""


@dataclass(frozen=True)
class Invite:
    id: int
    user_id: int
    discord_username: str
    invite_code: str
    created_at: float
    expires_at: float
    github_username: str | None = None
    used_at: float | None = None
    expired: bool = False

    def is_expired(self, now: float) -> bool:
        return self.expired or now > self.expires_at

    def status(self, now: float) -> InviteStatus:
        if self.used_at is not None:
            return InviteStatus.USED
        if self.is_expired(now):
            return InviteStatus.EXPIRED
        return InviteStatus.ACTIVE

    def to_dict(self, now: float) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "github_username": self.github_username,
            "discord_username": self.discord_username,
            "invite_code": self.invite_code,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "used_at": self.used_at,
            "expired": self.is_expired(now),
            "status": self.status(now).value,
        }


def _row_to_invite(row: sqlite3.Row) -> Invite:
    return Invite(
        id=row["id"],
        user_id=row["user_id"],
        github_username=row["github_username"],
        discord_username=row["discord_username"],
        invite_code=row["invite_code"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        used_at=row["used_at"],
        expired=bool(row["expired"]),
    )


class InviteLog:
    """SQLite-backed invite log."""

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        init_db(self.db_path, _SCHEMA)

    def log_invite(
        self,
        user_id: int,
        invite_code: str,
        discord_username: str,
        expires_at: float,
        github_username: str | None = None,
    ) -> Invite:
        """
        Record a newly issued invite.

        Raises:
            DuplicateInviteError: *invite_code* is already logged.
        """
        if not discord_username:
            raise ValueError("discord_username is required")
        created_at = self._clock()
        try:
            with connect(self.db_path) as conn:
                cur = conn.execute(
                    "INSERT INTO discord_invite_logs (user_id, github_username, discord_username, "
                    "invite_code, created_at, expires_at, expired) VALUES (?, ?, ?, ?, ?, ?, 0)",
                    (user_id, github_username, discord_username, invite_code, created_at, expires_at),
                )
                conn.commit()
                row_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateInviteError(f"Invite code {invite_code} already logged") from e

        return Invite(
            id=row_id,
            user_id=user_id,
            github_username=github_username,
            discord_username=discord_username,
            invite_code=invite_code,
            created_at=created_at,
            expires_at=expires_at,
        )

    def get(self, invite_code: str) -> Invite | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM discord_invite_logs WHERE invite_code = ?", (invite_code,)
            ).fetchone()
        return _row_to_invite(row) if row else None

    def mark_used(self, invite_code: str) -> bool:
        """Stamp ``used_at``.  Returns False if unknown or already used."""
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE discord_invite_logs SET used_at = ? WHERE invite_code = ? AND used_at IS NULL",
                (self._clock(), invite_code),
            )
            conn.commit()
            return cur.rowcount > 0

    def mark_expired(self, invite_code: str) -> bool:
        """Set the expired flag.  Returns False if unknown or already flagged."""
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE discord_invite_logs SET expired = 1 WHERE invite_code = ? AND expired = 0",
                (invite_code,),
            )
            conn.commit()
            return cur.rowcount > 0

    def mark_expired_invites(self) -> int:
        """Flag every unflagged invite whose ``expires_at`` has passed."""
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE discord_invite_logs SET expired = 1 WHERE expired = 0 AND expires_at < ?",
                (self._clock(),),
            )
            conn.commit()
            count = cur.rowcount
        if count:
            logger.info("Discord invites: marked %d invites as expired", count)
        return count

    def cleanup_old_entries(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete invites created more than *retention_days* ago, whatever their status."""
        cutoff = self._clock() - retention_days * SECONDS_PER_DAY
        with connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM discord_invite_logs WHERE created_at < ?", (cutoff,))
            conn.commit()
            deleted = cur.rowcount
        if deleted:
            logger.info(
                "Discord invites: cleaned up %d invite logs older than %d days", deleted, retention_days
            )
        return deleted

    def recent(self, limit: int = RECENT_LIMIT) -> list[Invite]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM discord_invite_logs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_invite(r) for r in rows]

    def for_user(self, user_id: int) -> list[Invite]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM discord_invite_logs WHERE user_id = ? ORDER BY created_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        return [_row_to_invite(r) for r in rows]

    def stats(self) -> dict[str, Any]:
        """Totals for the admin view; ``usage_rate`` is a percentage to one decimal."""
        now = self._clock()
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN used_at IS NOT NULL THEN 1 ELSE 0 END) AS used,
                    SUM(CASE WHEN used_at IS NULL AND (expired = 1 OR expires_at < ?)
                        THEN 1 ELSE 0 END) AS expired,
                    SUM(CASE WHEN used_at IS NULL AND expired = 0 AND expires_at >= ?
                        THEN 1 ELSE 0 END) AS active
                FROM discord_invite_logs
                """,
                (now, now),
            ).fetchone()
        total = row["total"] or 0
        used = row["used"] or 0
        return {
            "total": total,
            "used": used,
            "expired": row["expired"] or 0,
            "active": row["active"] or 0,
            "usage_rate": round(used / total * 100, 1) if total else 0,
        }
