from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path

from calky.models import CachedSnapshot


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MemorySnapshotCache:
    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CachedSnapshot] = {}

    def get(self, owner: str, calendar_id: str) -> CachedSnapshot | None:
        return self._entries.get((owner, calendar_id))

    def set(self, owner: str, calendar_id: str, snapshot: CachedSnapshot) -> None:
        self._entries[(owner, calendar_id)] = snapshot

    def delete(self, owner: str, calendar_id: str) -> None:
        self._entries.pop((owner, calendar_id), None)

    def clear_owner(self, owner: str) -> None:
        for key in [key for key in self._entries if key[0] == owner]:
            del self._entries[key]


class SqliteSnapshotCache:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS ics_snapshots (
            owner TEXT NOT NULL,
            calendar_id TEXT NOT NULL,
            document TEXT NOT NULL,
            etag TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (owner, calendar_id)
        );
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)

    def get(self, owner: str, calendar_id: str) -> CachedSnapshot | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT document, etag, updated_at
                    FROM ics_snapshots
                    WHERE owner = ? AND calendar_id = ?
                    """,
                    (owner, calendar_id),
                ).fetchone()
        if row is None:
            return None
        try:
            updated_at = _parse_timestamp(str(row["updated_at"]))
        except ValueError:
            return None
        return CachedSnapshot(document=str(row["document"]), etag=row["etag"], updated_at=updated_at)

    def set(self, owner: str, calendar_id: str, snapshot: CachedSnapshot) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO ics_snapshots(owner, calendar_id, document, etag, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(owner, calendar_id) DO UPDATE SET
                        document = excluded.document,
                        etag = excluded.etag,
                        updated_at = excluded.updated_at
                    """,
                    (owner, calendar_id, snapshot.document, snapshot.etag, snapshot.updated_at.isoformat()),
                )
                conn.commit()

    def delete(self, owner: str, calendar_id: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    "DELETE FROM ics_snapshots WHERE owner = ? AND calendar_id = ?",
                    (owner, calendar_id),
                )
                conn.commit()

    def clear_owner(self, owner: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM ics_snapshots WHERE owner = ?", (owner,))
                conn.commit()
