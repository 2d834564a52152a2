"""Durable note storage."""

from .note_store import NoteStore, SQLiteNoteStore

__all__ = ["NoteStore", "SQLiteNoteStore"]
