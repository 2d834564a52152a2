"""Note and change-event models exchanged during a sync round.

Every model serializes with ``to_dict`` and parses with ``from_dict``.
Optional fields are emitted only when present, so no wire object ever
carries an explicit null.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class NoteStatus(Enum):
    """Soft-delete marker for a note."""

    ACTIVE = "Active"
    DELETED = "Deleted"


class ChangeEventType(Enum):
    """Kind of mutation carried by a change event."""

    ADDED = "Added"
    UPDATED = "Updated"
    DELETED = "Deleted"


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds, rounding down."""
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_millis(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=value)


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 UTC with millisecond precision, e.g. 2020-05-01T12:00:00.000Z."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC.

    Raises:
        ValueError: If value is not a valid timestamp string.
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"Timestamp out of range: {value}") from e


def _check_utf8(key: str, value: str) -> str:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValueError(f"'{key}' is not valid UTF-8 text") from None
    return value


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{key}' must be a non-empty string")
    return _check_utf8(key, value)


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return _check_utf8(key, value)


@dataclass
class Note:
    """A versioned note record.

    ``synced`` is assigned by the server on every write and is only
    serialized in server form.
    """

    uuid: str
    status: NoteStatus = NoteStatus.ACTIVE
    title: str | None = None
    content: str | None = None
    synced: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == NoteStatus.DELETED

    def without_synced(self) -> "Note":
        """Return a copy with the server-only ``synced`` field removed."""
        return replace(self, synced=None)

    def to_dict(self, include_synced: bool = False) -> dict[str, Any]:
        """Convert to dictionary, omitting absent fields."""
        data: dict[str, Any] = {"uuid": self.uuid, "status": self.status.value}
        if self.title is not None:
            data["title"] = self.title
        if self.content is not None:
            data["content"] = self.content
        if include_synced and self.synced is not None:
            data["synced"] = format_timestamp(self.synced)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Note":
        """Create from a client payload. A ``synced`` field is ignored.

        Raises:
            ValueError: If the payload does not match the note schema.
        """
        if not isinstance(data, dict):
            raise ValueError("Note must be an object")

        try:
            status = NoteStatus(data.get("status"))
        except ValueError:
            raise ValueError(f"Invalid note status: {data.get('status')!r}") from None

        return cls(
            uuid=_require_str(data, "uuid"),
            status=status,
            title=_optional_str(data, "title"),
            content=_optional_str(data, "content"),
        )


@dataclass
class ChangeEvent:
    """One add, update or delete of a note keyed by uuid."""

    uuid: str
    type: ChangeEventType
    note: Note | None = None

    @classmethod
    def added(cls, note: Note) -> "ChangeEvent":
        return cls(uuid=note.uuid, type=ChangeEventType.ADDED, note=note)

    @classmethod
    def deleted(cls, uuid: str) -> "ChangeEvent":
        return cls(uuid=uuid, type=ChangeEventType.DELETED)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"uuid": self.uuid, "type": self.type.value}
        if self.note is not None:
            data["note"] = self.note.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "ChangeEvent":
        """Create from dictionary, enforcing that ``note`` is present iff not deleted.

        Raises:
            ValueError: If the event shape is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError("Change event must be an object")

        uuid = _require_str(data, "uuid")
        try:
            event_type = ChangeEventType(data.get("type"))
        except ValueError:
            raise ValueError(f"Invalid change event type: {data.get('type')!r}") from None

        raw_note = data.get("note")
        if event_type == ChangeEventType.DELETED:
            if raw_note is not None:
                raise ValueError(f"Deleted event for {uuid} must not carry a note")
            return cls(uuid=uuid, type=event_type)

        if raw_note is None:
            raise ValueError(f"{event_type.value} event for {uuid} requires a note")

        note = Note.from_dict(raw_note)
        if note.uuid != uuid:
            raise ValueError(f"Note uuid {note.uuid} does not match event uuid {uuid}")

        return cls(uuid=uuid, type=event_type, note=note)


@dataclass
class SyncData:
    """Checkpoint timestamp plus the change events exchanged in one round."""

    last_sync: datetime
    events: list[ChangeEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastSync": format_timestamp(self.last_sync),
            "events": [event.to_dict() for event in self.events],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SyncData":
        """Decode and validate a sync payload.

        Raises:
            ValueError: If any field is missing or malformed.
        """
        if not isinstance(data, dict):
            raise ValueError("Sync data must be an object")
        if "lastSync" not in data:
            raise ValueError("'lastSync' is required")

        events = data.get("events")
        if not isinstance(events, list):
            raise ValueError("'events' must be a list")

        return cls(
            last_sync=parse_timestamp(data["lastSync"]),
            events=[ChangeEvent.from_dict(event) for event in events],
        )
