"""Computes the remote change events a client is missing."""

import logging

from ..notes.encoding import NoteCodec
from ..notes.models import ChangeEvent, SyncData
from ..store.note_store import NoteStore
from .errors import InternalError

logger = logging.getLogger(__name__)


def resolve_remote_changes(
    store: NoteStore,
    codec: NoteCodec,
    user_id: str,
    sync_data: SyncData,
) -> list[ChangeEvent]:
    """Get all notes written after the client's last sync.

    Notes whose uuid the client sent an event for this round are skipped,
    even when the stored copy is newer: the client's submission wins echo
    suppression regardless of timestamps.

    Every remaining change is reported as ``Added`` or ``Deleted``. The server
    cannot tell whether the client already holds an older copy, so it never
    emits ``Updated``.

    Args:
        store: Note store to read from.
        codec: Codec used to turn stored notes back into client form.
        user_id: Owner of the note collection.
        sync_data: The client's request for this round.

    Returns:
        Remote change events, oldest first.

    Raises:
        InternalError: If the store cannot be read or holds a malformed note.
    """
    local_changed_uuids = {event.uuid for event in sync_data.events}
    remote_changes: list[ChangeEvent] = []

    try:
        for note in store.query_changed_since(user_id, sync_data.last_sync):
            if note.uuid in local_changed_uuids:
                continue

            if note.is_deleted:
                remote_changes.append(ChangeEvent.deleted(note.uuid))
            else:
                decoded = codec.decode(note.without_synced())
                remote_changes.append(ChangeEvent.added(decoded))

    except Exception as e:
        logger.error(f"Could not get notes for {user_id}: {e}")
        raise InternalError("Could not get notes") from e

    logger.debug(
        f"Resolved {len(remote_changes)} remote changes for {user_id} "
        f"since {sync_data.last_sync.isoformat()}"
    )
    return remote_changes
