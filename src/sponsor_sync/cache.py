"""
Keyed response cache used by the rate-limited API clients.

The clients only need ``get`` / ``set`` / ``remove`` by key.  Two stores are
provided:

- :class:`MemoryCacheStore` - process-local dict, used by tests and one-shot
  CLI runs.
- :class:`SQLiteCacheStore` - persistent across runs, so the scheduled sync
  keeps its 24h account-type entry and the presence checks keep their 5 min
  entries between invocations.

Entries are written whole and never mutated; a refresh overwrites the key.
Concurrent writers race last-write-wins, which is fine because every cached
value is cheap to recompute.
"""

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ._sqlite import connect, init_db

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_expires ON cache_entries(expires_at);
"""


@dataclass(frozen=True)
class CacheEntry:
    """A cached API payload and the epoch second it stops being valid."""

    key: str
    data: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


class CacheStore(Protocol):
    """Interface the API clients depend on."""

    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, key: str, entry: CacheEntry) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryCacheStore:
    """In-process cache store backed by a dict."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class SQLiteCacheStore:
    """
    SQLite-backed cache store.

    Payloads are stored as JSON text, so only JSON-serialisable data (which
    is all any of the clients cache) round-trips.
    """

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        init_db(self.db_path, SCHEMA_SQL)

    def get(self, key: str) -> CacheEntry | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT key, data, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            self.remove(key)
            return None
        return CacheEntry(key=row["key"], data=data, expires_at=row["expires_at"])

    def set(self, key: str, entry: CacheEntry) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache_entries (key, data, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(entry.data), entry.expires_at),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        with connect(self.db_path) as conn:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            conn.commit()

    def clear(self, prefix: str | None = None) -> int:
        """Delete every entry, or only those whose key starts with *prefix*."""
        with connect(self.db_path) as conn:
            if prefix:
                cur = conn.execute(
                    "DELETE FROM cache_entries WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
            else:
                cur = conn.execute("DELETE FROM cache_entries")
            conn.commit()
            removed = cur.rowcount
        logger.info("Cache cleared%s (%d entries)", f" for {prefix}" if prefix else "", removed)
        return removed

    def cleanup_expired(self) -> int:
        """Remove entries whose expiry has passed.  Returns count removed."""
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM cache_entries WHERE expires_at < ?",
                (self._clock(),),
            )
            conn.commit()
            removed = cur.rowcount
        if removed:
            logger.info("Cleaned up %d expired cache entries", removed)
        return removed

    def count(self) -> int:
        with connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) AS c FROM cache_entries").fetchone()["c"]
