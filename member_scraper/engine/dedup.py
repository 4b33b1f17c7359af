"""Deduplicating member store backed by SQLite."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock, local
from typing import Callable, Iterable

import structlog

from ..errors import PersistenceError
from ..infra.storage import MEMBERS_TABLE, SQLiteManager
from .records import MemberRecord, StoredRow, parse_timestamp

_SELECT_COLUMNS = (
    "internal_id, entity_id, username, first_name, last_name, phone, "
    "is_premium, source_group, scraped_at, last_online"
)

# scraped_at stays out of the update set: it is the first-seen timestamp
_UPSERT_SQL = f"""
INSERT INTO {MEMBERS_TABLE} (
    entity_id, username, first_name, last_name, phone,
    is_premium, source_group, scraped_at, last_online
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(entity_id, source_group) DO UPDATE SET
    username=excluded.username,
    first_name=excluded.first_name,
    last_name=excluded.last_name,
    phone=excluded.phone,
    is_premium=excluded.is_premium,
    last_online=excluded.last_online
"""


@dataclass(slots=True, frozen=True)
class UpsertResult:
    internal_id: int
    created: bool


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemberStore:
    """Durable table of members keyed by (entity_id, source_group).

    All writes go through one connection guarded by a lock, so upserts of the
    same key are serialised. Reads use one connection per thread against the
    WAL journal and only ever observe committed transactions, which keeps
    ``count`` and ``snapshot`` from waiting on writers.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.manager = manager
        self.db_path = Path(db_path)
        self.clock = clock
        self.logger = structlog.get_logger("member_scraper.store")
        self._write_lock = Lock()
        self._readers = local()
        self._conn = self.manager.connect(self.db_path)
        self._closed = False
        self.logger.debug("store_opened", path=str(self.db_path))

    @classmethod
    def open(
        cls,
        path: Path,
        *,
        busy_timeout: float = 30.0,
        manager: SQLiteManager | None = None,
    ) -> "MemberStore":
        """Open (or create) the store at ``path``.

        Raises ``StorageUnavailable`` when the file cannot be created, opened
        or initialised.
        """

        manager = manager or SQLiteManager(busy_timeout=busy_timeout)
        return cls(manager, Path(path))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def upsert(self, record: MemberRecord) -> UpsertResult:
        params = (
            record.entity_id,
            record.handle,
            record.first_name,
            record.last_name,
            record.contact,
            1 if record.is_premium else 0,
            record.source_group,
            self.clock().isoformat(),
            record.last_seen,
        )
        with self._write_lock:
            conn = self._conn
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    existing = conn.execute(
                        f"SELECT internal_id FROM {MEMBERS_TABLE} WHERE entity_id = ? AND source_group = ?",
                        (record.entity_id, record.source_group),
                    ).fetchone()
                    cursor = conn.execute(_UPSERT_SQL, params)
                    conn.execute("COMMIT")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
            except (sqlite3.Error, OverflowError) as exc:
                raise PersistenceError(
                    f"upsert failed for {record.entity_id}@{record.source_group}: {exc}"
                ) from exc
        if existing is not None:
            return UpsertResult(internal_id=existing["internal_id"], created=False)
        return UpsertResult(internal_id=cursor.lastrowid, created=True)

    def checkpoint(self) -> None:
        """Fold the WAL journal back into the main database file."""

        with self._write_lock:
            try:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as exc:
                raise PersistenceError(f"checkpoint failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def count(self) -> int:
        row = self._fetch(f"SELECT COUNT(*) FROM {MEMBERS_TABLE}")[0]
        return int(row[0])

    def count_by_group(self) -> dict[str, int]:
        rows = self._fetch(
            f"SELECT source_group, COUNT(*) AS total FROM {MEMBERS_TABLE} "
            "GROUP BY source_group ORDER BY source_group"
        )
        return {row["source_group"]: int(row["total"]) for row in rows}

    def get(self, entity_id: int, source_group: str) -> StoredRow | None:
        rows = self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM {MEMBERS_TABLE} WHERE entity_id = ? AND source_group = ?",
            (entity_id, source_group),
        )
        return self._to_row(rows[0]) if rows else None

    def snapshot(self, source_groups: Iterable[str] | None = None) -> list[StoredRow]:
        """Return every stored row in creation order from a single read."""

        query = f"SELECT {_SELECT_COLUMNS} FROM {MEMBERS_TABLE}"
        params: tuple[str, ...] = ()
        if source_groups is not None:
            groups = tuple(dict.fromkeys(source_groups))
            if not groups:
                return []
            placeholders = ", ".join("?" for _ in groups)
            query += f" WHERE source_group IN ({placeholders})"
            params = groups
        query += " ORDER BY internal_id"
        rows = self._fetch(query, params)
        return [self._to_row(row) for row in rows]

    def _fetch(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self._reader().execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"read failed on {self.db_path}: {exc}") from exc

    def _reader(self) -> sqlite3.Connection:
        if self._closed:
            raise PersistenceError(f"store is closed: {self.db_path}")
        conn = getattr(self._readers, "conn", None)
        if conn is None:
            conn = self.manager.connect_reader(self.db_path)
            self._readers.conn = conn
        return conn

    @staticmethod
    def _to_row(row: sqlite3.Row) -> StoredRow:
        return StoredRow(
            internal_id=row["internal_id"],
            entity_id=row["entity_id"],
            source_group=row["source_group"],
            scraped_at=parse_timestamp(row["scraped_at"]),
            handle=row["username"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            contact=row["phone"],
            is_premium=bool(row["is_premium"]),
            last_seen=row["last_online"],
        )

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.manager.close(self.db_path)

    def __enter__(self) -> "MemberStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["MemberStore", "UpsertResult"]
