"""SQLite-backed store for feedback event logs.

Each log is identified by ``(target_id, store_id)``. The store keeps the
events themselves plus a per-log lowest id (watermark); events below the
watermark are purged and never reported again.
"""

import json
import logging
import sqlite3
import threading
import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from ..feedback import Descriptor, Event, LowestID
from ..ranges import SortedRangeSet

logger = logging.getLogger(__name__)

# Schema for the event log store
LOG_SCHEMA = """
-- Events: append-only, one row per (target, store, id)
CREATE TABLE IF NOT EXISTS events (
    target_id TEXT NOT NULL,
    store_id INTEGER NOT NULL,
    event_id INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    event_type INTEGER NOT NULL,
    properties TEXT NOT NULL,
    received_at TEXT NOT NULL,
    PRIMARY KEY (target_id, store_id, event_id)
);

-- Watermarks: ids below lowest_id have been purged
CREATE TABLE IF NOT EXISTS lowest_ids (
    target_id TEXT NOT NULL,
    store_id INTEGER NOT NULL,
    lowest_id INTEGER NOT NULL,
    PRIMARY KEY (target_id, store_id)
);

CREATE INDEX IF NOT EXISTS idx_events_target ON events(target_id);
"""


class LogStore:
    """Persistent store for the events of many (target, store) logs."""

    def __init__(self, db_path: str | Path, name: str = "auditlog", max_events: int = 0):
        """Initialize the log store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            name: Name of the log channel this store serves.
            max_events: Keep at most this many events per log (0 = unlimited).
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path).expanduser()
        self.name = name
        self.max_events = max_events
        self._conn: sqlite3.Connection | None = None
        self._db_lock = threading.RLock()
        self._locks: dict[tuple[str, int], threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(LOG_SCHEMA)
        self._conn.commit()

        logger.info(f"LogStore '{self.name}' connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _lock_for(self, target_id: str, store_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks[(target_id, store_id)]

    # ---- writes -------------------------------------------------------

    def put(self, events: Iterable[Event]) -> int:
        """Store events, ignoring ones already present or below the watermark.

        Args:
            events: Events for any number of logs, in any order.

        Returns:
            Number of events actually added.
        """
        by_log: dict[tuple[str, int], list[Event]] = defaultdict(list)
        for event in events:
            by_log[(event.target_id, event.store_id)].append(event)

        added = 0
        for (target_id, store_id), log_events in by_log.items():
            with self._lock_for(target_id, store_id):
                added += self._put_locked(target_id, store_id, log_events)
                if self.max_events > 0:
                    self._trim_locked(target_id, store_id)

        if added:
            logger.debug(f"Stored {added} new events in '{self.name}'")
        return added

    def _put_locked(self, target_id: str, store_id: int, events: list[Event]) -> int:
        lowest = self.get_lowest_id(target_id, store_id)
        now = datetime.now().isoformat()
        rows = [
            (
                e.target_id,
                e.store_id,
                e.id,
                e.timestamp,
                e.type,
                json.dumps(e.properties),
                now,
            )
            for e in events
            if e.id >= lowest
        ]
        with self._db_lock:
            conn = self._ensure_connected()
            before = conn.total_changes
            conn.executemany(
                """
                INSERT OR IGNORE INTO events (
                    target_id, store_id, event_id, timestamp, event_type,
                    properties, received_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.commit()
            return conn.total_changes - before

    def log_event(
        self,
        target_id: str,
        store_id: int,
        event_type: int,
        properties: dict[str, str] | None = None,
        timestamp: int | None = None,
    ) -> Event:
        """Record a new local event, assigning it the next id of its log.

        Returns:
            The stored Event.
        """
        with self._lock_for(target_id, store_id):
            descriptor = self.get_descriptor(target_id, store_id)
            next_id = max(descriptor.range_set.high + 1, self.get_lowest_id(target_id, store_id), 1)
            event = Event(
                target_id=target_id,
                store_id=store_id,
                id=next_id,
                timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
                type=int(event_type),
                properties=dict(properties or {}),
            )
            self._put_locked(target_id, store_id, [event])
            if self.max_events > 0:
                self._trim_locked(target_id, store_id)

        logger.debug(f"Logged event {target_id}/{store_id}/{event.id} type={event.type}")
        return event

    def set_lowest_id(self, target_id: str, store_id: int, lowest_id: int) -> bool:
        """Raise the watermark of a log and purge the events below it.

        A value at or below the current watermark is ignored.

        Returns:
            True if the watermark moved.
        """
        with self._lock_for(target_id, store_id):
            return self._set_lowest_id_locked(target_id, store_id, lowest_id)

    def _set_lowest_id_locked(self, target_id: str, store_id: int, lowest_id: int) -> bool:
        if lowest_id <= self.get_lowest_id(target_id, store_id):
            return False
        with self._db_lock:
            conn = self._ensure_connected()
            conn.execute(
                """
                INSERT INTO lowest_ids (target_id, store_id, lowest_id) VALUES (?, ?, ?)
                ON CONFLICT(target_id, store_id) DO UPDATE SET lowest_id = excluded.lowest_id
                """,
                (target_id, store_id, lowest_id),
            )
            cursor = conn.execute(
                "DELETE FROM events WHERE target_id = ? AND store_id = ? AND event_id < ?",
                (target_id, store_id, lowest_id),
            )
            conn.commit()
        logger.info(
            f"Lowest ID of {target_id}/{store_id} raised to {lowest_id}, "
            f"purged {cursor.rowcount} events"
        )
        return True

    def clean(self) -> int:
        """Trim every log to its newest ``max_events`` events.

        Returns:
            Number of logs whose watermark moved.
        """
        if self.max_events <= 0:
            return 0
        trimmed = 0
        for descriptor in self.get_descriptors():
            with self._lock_for(descriptor.target_id, descriptor.store_id):
                if self._trim_locked(descriptor.target_id, descriptor.store_id):
                    trimmed += 1
        return trimmed

    def _trim_locked(self, target_id: str, store_id: int) -> bool:
        # oldest event to keep, followed by the newest event to drop
        with self._db_lock:
            rows = self._ensure_connected().execute(
                """
                SELECT event_id FROM events
                WHERE target_id = ? AND store_id = ?
                ORDER BY event_id DESC
                LIMIT 2 OFFSET ?
                """,
                (target_id, store_id, self.max_events - 1),
            ).fetchall()
        if len(rows) < 2:
            return False
        return self._set_lowest_id_locked(target_id, store_id, rows[0]["event_id"])

    # ---- reads --------------------------------------------------------

    def get(self, descriptor: Descriptor) -> list[Event]:
        """Return the events of a log whose ids fall in the descriptor's range.

        Returns:
            Events in ascending id order.
        """
        range_set = descriptor.range_set
        with self._db_lock:
            cursor = self._ensure_connected().execute(
                """
                SELECT target_id, store_id, event_id, timestamp, event_type, properties
                FROM events
                WHERE target_id = ? AND store_id = ? AND event_id >= ?
                ORDER BY event_id ASC
                """,
                (descriptor.target_id, descriptor.store_id, range_set.low),
            )
            rows = cursor.fetchall()

        events = []
        for row in rows:
            if not range_set.contains(row["event_id"]):
                continue
            events.append(
                Event(
                    target_id=row["target_id"],
                    store_id=row["store_id"],
                    id=row["event_id"],
                    timestamp=row["timestamp"],
                    type=row["event_type"],
                    properties=json.loads(row["properties"]),
                )
            )
        return events

    def get_descriptor(self, target_id: str, store_id: int) -> Descriptor:
        """Return the descriptor of one log (empty range if unknown)."""
        with self._db_lock:
            cursor = self._ensure_connected().execute(
                "SELECT event_id FROM events WHERE target_id = ? AND store_id = ?",
                (target_id, store_id),
            )
            ids = [row[0] for row in cursor]
        return Descriptor(target_id, store_id, SortedRangeSet.from_integers(ids))

    def get_descriptors(self, target_id: str | None = None) -> list[Descriptor]:
        """Return descriptors for every known log, optionally for one target."""
        logs = self._known_logs(target_id)
        return [self.get_descriptor(tid, sid) for tid, sid in logs]

    def _known_logs(self, target_id: str | None) -> list[tuple[str, int]]:
        query = """
            SELECT target_id, store_id FROM events
            UNION
            SELECT target_id, store_id FROM lowest_ids
        """
        with self._db_lock:
            rows = self._ensure_connected().execute(
                f"SELECT target_id, store_id FROM ({query}) ORDER BY target_id, store_id"
            ).fetchall()
        return [
            (row["target_id"], row["store_id"])
            for row in rows
            if target_id is None or row["target_id"] == target_id
        ]

    def get_lowest_id(self, target_id: str, store_id: int) -> int:
        """Return the watermark of a log, 0 when none was set."""
        with self._db_lock:
            row = self._ensure_connected().execute(
                "SELECT lowest_id FROM lowest_ids WHERE target_id = ? AND store_id = ?",
                (target_id, store_id),
            ).fetchone()
        return row["lowest_id"] if row else 0

    def get_lowest_ids(self, target_id: str | None = None) -> list[LowestID]:
        """Return every watermark above 0, optionally for one target."""
        result = []
        for tid, sid in self._known_logs(target_id):
            lowest = self.get_lowest_id(tid, sid)
            if lowest > 0:
                result.append(LowestID(tid, sid, lowest))
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with log, event and watermark counts.
        """
        with self._db_lock:
            conn = self._ensure_connected()
            total_events = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            watermarks = conn.execute(
                "SELECT COUNT(*) FROM lowest_ids WHERE lowest_id > 0"
            ).fetchone()[0]

        stats = {
            "name": self.name,
            "logs": len(self._known_logs(None)),
            "total_events": total_events,
            "watermarks": watermarks,
            "max_events": self.max_events,
        }

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
