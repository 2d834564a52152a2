"""Note data model and content encoding."""

from .encoding import Base64NoteCodec, NoteCodec, PlainNoteCodec, get_codec
from .models import (
    ChangeEvent,
    ChangeEventType,
    Note,
    NoteStatus,
    SyncData,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

__all__ = [
    "Base64NoteCodec",
    "ChangeEvent",
    "ChangeEventType",
    "Note",
    "NoteCodec",
    "NoteStatus",
    "PlainNoteCodec",
    "SyncData",
    "format_timestamp",
    "get_codec",
    "parse_timestamp",
    "utc_now",
]
