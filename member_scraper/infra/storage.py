"""SQLite connection management with schema guarantees for the member table."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict, List

from ..errors import StorageUnavailable

MEMBERS_TABLE = "scraped_members"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {MEMBERS_TABLE} (
    internal_id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_id INTEGER NOT NULL,
    username TEXT,
    first_name TEXT,
    last_name TEXT,
    phone TEXT,
    is_premium INTEGER NOT NULL DEFAULT 0,
    source_group TEXT NOT NULL,
    scraped_at TEXT NOT NULL,
    last_online INTEGER,
    UNIQUE(entity_id, source_group)
)
"""


class SQLiteManager:
    """Open SQLite connections for the member store.

    Writers are cached per path and own the schema; readers are handed out
    fresh so each thread can keep its own connection.
    """

    def __init__(self, busy_timeout: float = 30.0) -> None:
        self.busy_timeout = busy_timeout
        self._writers: Dict[Path, sqlite3.Connection] = {}
        self._readers: Dict[Path, List[sqlite3.Connection]] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        """Return the writer connection for ``path``, creating the schema."""

        path = Path(path)
        with self._lock:
            if path not in self._writers:
                conn = self._open(path)
                try:
                    self._ensure_schema(conn)
                except sqlite3.Error as exc:
                    conn.close()
                    raise StorageUnavailable(f"cannot initialise {path}: {exc}") from exc
                self._writers[path] = conn
            return self._writers[path]

    def connect_reader(self, path: Path) -> sqlite3.Connection:
        path = Path(path)
        conn = self._open(path)
        with self._lock:
            self._readers.setdefault(path, []).append(conn)
        return conn

    def _open(self, path: Path) -> sqlite3.Connection:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                path,
                timeout=self.busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
        except (OSError, sqlite3.Error) as exc:
            raise StorageUnavailable(f"cannot open {path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        # WAL lets readers see committed data while the writer holds its lock
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(_SCHEMA)

    def close(self, path: Path) -> None:
        path = Path(path)
        with self._lock:
            for conn in self._readers.pop(path, []):
                conn.close()
            writer = self._writers.pop(path, None)
            if writer is not None:
                writer.close()

    def close_all(self) -> None:
        with self._lock:
            paths = set(self._writers) | set(self._readers)
        for path in paths:
            self.close(path)


__all__ = ["MEMBERS_TABLE", "SQLiteManager"]
