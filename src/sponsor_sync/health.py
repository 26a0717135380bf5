"""Admin-facing health problems raised by the API clients.

A problem is flagged by name (e.g. ``github_token_invalid`` on a 401) and
stays flagged until something proves it resolved.  With a ``db_path`` the
flags survive between CLI invocations.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ._sqlite import connect, init_db

logger = logging.getLogger(__name__)

GITHUB_TOKEN_INVALID = "github_token_invalid"

PROBLEM_MESSAGES = {
    GITHUB_TOKEN_INVALID: "The GitHub Sponsors token is invalid or expired. Generate a new token "
    "with read:org and read:user scopes.",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS health_problems (
    name TEXT PRIMARY KEY,
    flagged_at REAL NOT NULL
);
"""


@dataclass(frozen=True)
class Problem:
    name: str
    flagged_at: float

    @property
    def message(self) -> str:
        return PROBLEM_MESSAGES.get(self.name, self.name)


class HealthRegistry:
    """Named problem flags, in memory or backed by SQLite."""

    def __init__(self, db_path: Path | None = None, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path) if db_path else None
        self._clock = clock
        self._problems: dict[str, float] = {}
        if self.db_path is not None:
            init_db(self.db_path, _SCHEMA)

    def flag(self, name: str) -> None:
        if self.is_flagged(name):
            return
        now = self._clock()
        logger.warning("Health problem flagged: %s", name)
        if self.db_path is None:
            self._problems[name] = now
            return
        with connect(self.db_path) as conn:
            conn.execute("INSERT OR IGNORE INTO health_problems (name, flagged_at) VALUES (?, ?)", (name, now))
            conn.commit()

    def clear(self, name: str) -> None:
        if not self.is_flagged(name):
            return
        logger.info("Health problem cleared: %s", name)
        if self.db_path is None:
            self._problems.pop(name, None)
            return
        with connect(self.db_path) as conn:
            conn.execute("DELETE FROM health_problems WHERE name = ?", (name,))
            conn.commit()

    def is_flagged(self, name: str) -> bool:
        return any(p.name == name for p in self.problems())

    def problems(self) -> list[Problem]:
        if self.db_path is None:
            return [Problem(name, at) for name, at in sorted(self._problems.items())]
        with connect(self.db_path) as conn:
            rows = conn.execute("SELECT name, flagged_at FROM health_problems ORDER BY name").fetchall()
        return [Problem(row["name"], row["flagged_at"]) for row in rows]
