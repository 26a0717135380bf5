"""Shared SQLite connection helper for the on-disk stores."""

import logging
import os
import sqlite3
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def secure_file(path: "os.PathLike[str] | str") -> None:
    """Restrict *path* to owner read/write on POSIX; no-op on Windows."""
    if sys.platform != "win32":
        try:
            os.chmod(path, 0o600)
        except OSError:
            pass  # best-effort; some filesystems ignore mode bits


def init_db(db_path: Path, schema: str) -> None:
    """Create *db_path* (and its parent) and apply *schema* idempotently."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.executescript(schema)
        conn.commit()
    secure_file(db_path)
    logger.debug("SQLite database ready at %s", db_path)


def connect(db_path: Path) -> sqlite3.Connection:
    """Return a new connection with row access by name.

    WAL mode needs shared-memory support; on network filesystems SQLite
    silently falls back to DELETE journaling.
    """
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=30000")
    return conn
