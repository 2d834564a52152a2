"""Local note replica with a log of changes not yet sent to the server.

Holds at most one pending change event per note uuid. Repeated edits to
the same note between two sync rounds collapse into a single event.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..notes.models import (
    EPOCH,
    ChangeEvent,
    ChangeEventType,
    Note,
    NoteStatus,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Schema for the client replica
REPLICA_SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    uuid TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    title TEXT,
    content TEXT
);

-- One pending change per note, seq orders changes made between rounds
CREATE TABLE IF NOT EXISTS pending_events (
    uuid TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pending_seq ON pending_events(seq);

CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class ChangeLog:
    """SQLite-backed client replica of a user's notes."""

    def __init__(self, db_path: str | Path):
        """Initialize the replica.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._seq: int = 0

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(REPLICA_SCHEMA)
        self._conn.commit()

        # Resume the sequence from the newest pending change
        row = self._conn.execute("SELECT MAX(seq) FROM pending_events").fetchone()
        if row[0] is not None:
            self._seq = row[0]

        logger.info(f"ChangeLog connected to {self.db_path}, seq={self._seq}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _tick(self) -> int:
        self._seq += 1
        return self._seq

    def _pending_type(self, uuid: str) -> ChangeEventType | None:
        row = self._conn.execute(
            "SELECT type FROM pending_events WHERE uuid = ?", (uuid,)
        ).fetchone()
        return ChangeEventType(row["type"]) if row else None

    def _record(self, uuid: str, event_type: ChangeEventType) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO pending_events (uuid, type, seq) VALUES (?, ?, ?)",
            (uuid, event_type.value, self._tick()),
        )

    def _write_note(self, note: Note) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO notes (uuid, status, title, content)
            VALUES (?, ?, ?, ?)
            """,
            (note.uuid, note.status.value, note.title, note.content),
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            uuid=row["uuid"],
            status=NoteStatus(row["status"]),
            title=row["title"],
            content=row["content"],
        )

    def save_note(self, note: Note) -> ChangeEventType:
        """Create or update a note locally and record the change.

        Returns:
            The pending event type now recorded for the note.
        """
        conn = self._ensure_connected()

        pending = self._pending_type(note.uuid)
        if pending in (ChangeEventType.ADDED, ChangeEventType.UPDATED):
            event_type = pending
        elif pending is None and self.get_note(note.uuid) is not None:
            event_type = ChangeEventType.UPDATED
        else:
            event_type = ChangeEventType.ADDED

        self._write_note(note.without_synced())
        self._record(note.uuid, event_type)
        conn.commit()

        logger.debug(f"Saved note {note.uuid} ({event_type.value})")
        return event_type

    def delete_note(self, uuid: str) -> None:
        """Delete a note locally and record the deletion."""
        conn = self._ensure_connected()

        conn.execute("DELETE FROM notes WHERE uuid = ?", (uuid,))
        self._record(uuid, ChangeEventType.DELETED)
        conn.commit()

        logger.debug(f"Deleted note {uuid}")

    def get_note(self, uuid: str) -> Note | None:
        conn = self._ensure_connected()

        row = conn.execute(
            "SELECT uuid, status, title, content FROM notes WHERE uuid = ?", (uuid,)
        ).fetchone()
        return self._row_to_note(row) if row else None

    def list_notes(self) -> list[Note]:
        conn = self._ensure_connected()

        cursor = conn.execute(
            "SELECT uuid, status, title, content FROM notes ORDER BY uuid"
        )
        return [self._row_to_note(row) for row in cursor]

    def get_pending_events(self, limit: int = 1000) -> tuple[list[ChangeEvent], int]:
        """Get pending change events, oldest first.

        Args:
            limit: Maximum events to return.

        Returns:
            Tuple of (events, highest seq among them). The seq is 0 when
            there is nothing pending.
        """
        conn = self._ensure_connected()

        cursor = conn.execute(
            """
            SELECT p.uuid, p.type, p.seq, n.status, n.title, n.content
            FROM pending_events p
            LEFT JOIN notes n ON n.uuid = p.uuid
            ORDER BY p.seq ASC
            LIMIT ?
            """,
            (limit,),
        )

        events = []
        max_seq = 0
        for row in cursor:
            max_seq = max(max_seq, row["seq"])
            event_type = ChangeEventType(row["type"])

            if event_type == ChangeEventType.DELETED:
                events.append(ChangeEvent.deleted(row["uuid"]))
            elif row["status"] is None:
                logger.warning(f"Pending {event_type.value} for missing note {row['uuid']}")
            else:
                events.append(
                    ChangeEvent(
                        uuid=row["uuid"],
                        type=event_type,
                        note=self._row_to_note(row),
                    )
                )

        return events, max_seq

    def clear_pending(self, uuids: list[str], max_seq: int) -> int:
        """Remove pending events that were sent, unless changed again since.

        Args:
            uuids: Uuids of the events that were sent.
            max_seq: Highest seq among the sent events.

        Returns:
            Number of pending events removed.
        """
        if not uuids:
            return 0

        conn = self._ensure_connected()
        placeholders = ",".join("?" * len(uuids))

        cursor = conn.execute(
            f"""
            DELETE FROM pending_events
            WHERE uuid IN ({placeholders}) AND seq <= ?
            """,
            (*uuids, max_seq),
        )
        conn.commit()

        count = cursor.rowcount
        logger.debug(f"Cleared {count} pending events")
        return count

    def apply_remote_events(self, events: list[ChangeEvent]) -> int:
        """Apply changes received from the server.

        Events for notes with a pending local change are skipped, the local
        change is sent in the next round instead.

        Returns:
            Number of events applied.
        """
        if not events:
            return 0

        conn = self._ensure_connected()

        applied = 0
        for event in events:
            if self._pending_type(event.uuid) is not None:
                logger.debug(f"Skipping remote change for locally modified {event.uuid}")
                continue

            if event.type == ChangeEventType.DELETED:
                conn.execute("DELETE FROM notes WHERE uuid = ?", (event.uuid,))
            elif event.note is not None:
                self._write_note(event.note)
            else:
                logger.warning(f"Ignoring {event.type.value} event without note for {event.uuid}")
                continue
            applied += 1

        conn.commit()
        logger.info(f"Applied {applied} remote changes")
        return applied

    @property
    def last_sync(self) -> datetime:
        """Checkpoint of the last successful sync, epoch if never synced."""
        conn = self._ensure_connected()

        row = conn.execute(
            "SELECT value FROM sync_state WHERE key = 'last_sync'"
        ).fetchone()
        return parse_timestamp(row["value"]) if row else EPOCH

    def set_last_sync(self, value: datetime) -> None:
        conn = self._ensure_connected()

        conn.execute(
            "INSERT OR REPLACE INTO sync_state (key, value) VALUES ('last_sync', ?)",
            (format_timestamp(value),),
        )
        conn.commit()

    def get_stats(self) -> dict[str, Any]:
        """Get replica statistics.

        Returns:
            Dictionary with note and pending event counts.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"seq": self._seq}

        cursor = conn.execute("SELECT COUNT(*) FROM notes")
        stats["total_notes"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT COUNT(*) FROM pending_events")
        stats["pending_events"] = cursor.fetchone()[0]

        cursor = conn.execute(
            "SELECT type, COUNT(*) FROM pending_events GROUP BY type"
        )
        stats["pending_by_type"] = {row[0]: row[1] for row in cursor}

        if self.db_path.exists():
            stats["db_size_mb"] = round(
                self.db_path.stat().st_size / (1024 * 1024), 2
            )

        return stats
