"""SQLite event store.

The default durable store for a single agent: one local file, one table.
``AUTOINCREMENT`` keeps ids strictly increasing and never reused, even
after the newest rows are deleted.

sqlite3 calls block, so every operation runs in a worker thread and is
serialized by a lock on the shared connection.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Collection, Mapping
from pathlib import Path
from typing import Any

from eventrelay.core.errors import StorageError
from eventrelay.core.event import StoredEvent

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT,
    ts INTEGER,
    payload TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_type ON events(type);
"""


class SqliteEventStore:
    """Durable event store in a local SQLite file.

    Args:
        path: Database file. ``":memory:"`` keeps it in memory.
        max_events: Retention cap. 0 means unbounded (default).
        busy_timeout: Seconds sqlite waits on a locked database.
    """

    def __init__(
        self,
        path: str | Path,
        max_events: int = 0,
        busy_timeout: float = 5.0,
    ) -> None:
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._max_events = max_events
        self._evicted = 0
        self._lock = threading.RLock()
        self._log = logging.getLogger("eventrelay.stores.sqlite")
        try:
            self._conn = sqlite3.connect(self._path, timeout=busy_timeout, check_same_thread=False)
            self._init_schema()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open event store at {self._path}: {e}", "open") from e

    def _init_schema(self) -> None:
        with self._conn:
            self._conn.executescript(SCHEMA)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")

    @property
    def path(self) -> str:
        return self._path

    @property
    def evicted_count(self) -> int:
        return self._evicted

    async def append(self, record: Mapping[str, Any]) -> int:
        return await asyncio.to_thread(self._append_sync, dict(record))

    async def read_oldest(self, limit: int) -> list[StoredEvent]:
        return await asyncio.to_thread(self._select_sync, max(limit, 0))

    async def delete_by_ids(self, ids: Collection[int]) -> set[int]:
        return await asyncio.to_thread(self._delete_sync, list(ids))

    async def read_all(self) -> list[StoredEvent]:
        return await asyncio.to_thread(self._select_sync, None)

    async def count(self) -> int:
        return await asyncio.to_thread(self._count_sync)

    async def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _append_sync(self, record: dict[str, Any]) -> int:
        event_type = record.get("type")
        ts = record.get("ts")
        evicted = 0
        with self._lock:
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        "INSERT INTO events (type, ts, payload) VALUES (?, ?, ?)",
                        (
                            event_type if isinstance(event_type, str) else None,
                            ts if isinstance(ts, int) else None,
                            json.dumps(record),
                        ),
                    )
                    event_id = int(cursor.lastrowid)
                    if self._max_events > 0:
                        evicted = self._evict_overflow_locked()
            except (sqlite3.Error, TypeError, ValueError) as e:
                raise StorageError(f"Append failed: {e}", "append") from e
            self._evicted += evicted

        if evicted:
            self._log.warning(
                "Retention limit reached, evicted %d oldest events",
                evicted,
                extra={"event_count": evicted, "max_events": self._max_events},
            )
        return event_id

    def _evict_overflow_locked(self) -> int:
        (total,) = self._conn.execute("SELECT COUNT(*) FROM events").fetchone()
        overflow = total - self._max_events
        if overflow <= 0:
            return 0
        self._conn.execute(
            "DELETE FROM events WHERE id IN (SELECT id FROM events ORDER BY id LIMIT ?)",
            (overflow,),
        )
        return overflow

    def _select_sync(self, limit: int | None) -> list[StoredEvent]:
        query = "SELECT id, payload FROM events ORDER BY id"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with self._lock:
            try:
                rows = self._conn.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Read failed: {e}", "read") from e

        out: list[StoredEvent] = []
        for event_id, payload in rows:
            try:
                record = json.loads(payload)
            except ValueError:
                self._log.warning("Undecodable payload for event %d, treating as empty", event_id)
                record = {}
            out.append(StoredEvent(id=event_id, record=record if isinstance(record, dict) else {}))
        return out

    def _delete_sync(self, ids: list[int]) -> set[int]:
        failed: set[int] = set()
        with self._lock:
            for event_id in ids:
                try:
                    self._conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
                except sqlite3.Error as e:
                    failed.add(event_id)
                    self._log.error("Delete failed for event %d: %s", event_id, e)
            try:
                self._conn.commit()
            except sqlite3.Error as e:
                self._log.error("Delete commit failed: %s", e, extra={"event_count": len(ids)})
                self._rollback_locked()
                return set(ids)
        return failed

    def _rollback_locked(self) -> None:
        try:
            self._conn.rollback()
        except sqlite3.Error as e:
            self._log.error("Rollback failed: %s", e)

    def _count_sync(self) -> int:
        with self._lock:
            try:
                (total,) = self._conn.execute("SELECT COUNT(*) FROM events").fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Count failed: {e}", "count") from e
        return int(total)
