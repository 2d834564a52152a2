"""Per-user note storage queried by last-modified timestamp."""

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from ..notes.models import Note, NoteStatus, from_millis, to_millis

logger = logging.getLogger(__name__)

# Schema for the server-side note collection
NOTES_SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    user_id TEXT NOT NULL,
    uuid TEXT NOT NULL,
    status TEXT NOT NULL,
    title TEXT,
    content TEXT,
    synced INTEGER NOT NULL,
    PRIMARY KEY (user_id, uuid)
);

CREATE INDEX IF NOT EXISTS idx_notes_synced ON notes(user_id, synced);
"""


class NoteStore(ABC):
    """Storage contract used by the sync protocol.

    Notes are stored in server form. Every write commits on its own so
    that a failure partway through a batch keeps the earlier writes.
    """

    @abstractmethod
    def query_changed_since(self, user_id: str, after: datetime) -> Iterator[Note]:
        """Yield the user's notes with ``synced`` strictly after ``after``, oldest first."""

    @abstractmethod
    def get(self, user_id: str, uuid: str) -> Note | None:
        """Get one note, or None if absent."""

    @abstractmethod
    def put(self, user_id: str, uuid: str, note: Note) -> None:
        """Insert or overwrite the note at ``uuid``."""

    @abstractmethod
    def delete(self, user_id: str, uuid: str, synced: datetime) -> bool:
        """Tombstone the note at ``uuid``.

        Returns:
            True if an active note was tombstoned, False if there was nothing to do.
        """

    @abstractmethod
    def get_stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Get note counts, for one user or the whole store."""


class SQLiteNoteStore(NoteStore):
    """SQLite-backed note store."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(NOTES_SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteNoteStore connected to {self.db_path}")

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

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            uuid=row["uuid"],
            status=NoteStatus(row["status"]),
            title=row["title"],
            content=row["content"],
            synced=from_millis(row["synced"]),
        )

    def query_changed_since(self, user_id: str, after: datetime) -> Iterator[Note]:
        conn = self._ensure_connected()

        # One millisecond past the checkpoint so the boundary note is not resent
        cursor = conn.execute(
            """
            SELECT uuid, status, title, content, synced
            FROM notes
            WHERE user_id = ? AND synced >= ?
            ORDER BY synced ASC, uuid ASC
            """,
            (user_id, to_millis(after) + 1),
        )

        for row in cursor:
            yield self._row_to_note(row)

    def get(self, user_id: str, uuid: str) -> Note | None:
        conn = self._ensure_connected()

        row = conn.execute(
            """
            SELECT uuid, status, title, content, synced
            FROM notes
            WHERE user_id = ? AND uuid = ?
            """,
            (user_id, uuid),
        ).fetchone()

        return self._row_to_note(row) if row else None

    def put(self, user_id: str, uuid: str, note: Note) -> None:
        if note.synced is None:
            raise ValueError(f"Note {uuid} has no synced timestamp")

        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT OR REPLACE INTO notes (user_id, uuid, status, title, content, synced)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                uuid,
                note.status.value,
                note.title,
                note.content,
                to_millis(note.synced),
            ),
        )
        conn.commit()

        logger.debug(f"Stored note {uuid} for {user_id}")

    def delete(self, user_id: str, uuid: str, synced: datetime) -> bool:
        conn = self._ensure_connected()

        cursor = conn.execute(
            """
            UPDATE notes
            SET status = ?, title = NULL, content = NULL, synced = ?
            WHERE user_id = ? AND uuid = ? AND status != ?
            """,
            (
                NoteStatus.DELETED.value,
                to_millis(synced),
                user_id,
                uuid,
                NoteStatus.DELETED.value,
            ),
        )
        conn.commit()

        deleted = cursor.rowcount > 0
        logger.debug(f"Delete note {uuid} for {user_id}: tombstoned={deleted}")
        return deleted

    def get_stats(self, user_id: str | None = None) -> dict[str, Any]:
        """Get note counts, for one user or the whole store.

        Returns:
            Dictionary with total, active and deleted counts.
        """
        conn = self._ensure_connected()

        if user_id is None:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM notes GROUP BY status"
            )
        else:
            cursor = conn.execute(
                "SELECT status, COUNT(*) FROM notes WHERE user_id = ? GROUP BY status",
                (user_id,),
            )
        by_status = {row[0]: row[1] for row in cursor}

        stats = {
            "total_notes": sum(by_status.values()),
            "active_notes": by_status.get(NoteStatus.ACTIVE.value, 0),
            "deleted_notes": by_status.get(NoteStatus.DELETED.value, 0),
        }

        if user_id is None:
            cursor = conn.execute("SELECT COUNT(DISTINCT user_id) FROM notes")
            stats["users"] = cursor.fetchone()[0]

        return stats
