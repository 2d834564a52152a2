"""Applies a client's change events to the server-held notes."""

import logging
from dataclasses import replace
from datetime import datetime

from ..notes.encoding import NoteCodec
from ..notes.models import ChangeEventType, SyncData
from ..store.note_store import NoteStore
from .errors import InternalError

logger = logging.getLogger(__name__)


def apply_local_changes(
    store: NoteStore,
    codec: NoteCodec,
    user_id: str,
    sync_data: SyncData,
    sync_time: datetime,
) -> int:
    """Write the client's change events to the store, in order.

    ``Added`` and ``Updated`` are both an upsert stamped with ``sync_time``.
    ``Deleted`` tombstones the note and is a no-op when there is nothing to
    delete. Events are applied one at a time; a failure stops the loop and
    leaves earlier writes committed.

    Returns:
        Number of events applied.

    Raises:
        InternalError: If any write fails.
    """
    applied = 0
    try:
        for event in sync_data.events:
            if event.type == ChangeEventType.DELETED:
                store.delete(user_id, event.uuid, sync_time)
            else:
                encoded = replace(codec.encode(event.note), synced=sync_time)
                store.put(user_id, event.uuid, encoded)
            applied += 1

    except Exception as e:
        logger.error(
            f"Could not update notes for {user_id} "
            f"({applied}/{len(sync_data.events)} applied): {e}"
        )
        raise InternalError("Could not set notes") from e

    logger.debug(f"Applied {applied} local changes for {user_id}")
    return applied
