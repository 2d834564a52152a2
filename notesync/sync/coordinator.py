"""Entry point for one sync round between a client and the server store."""

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..notes.encoding import Base64NoteCodec, NoteCodec
from ..notes.models import SyncData, utc_now
from ..store.note_store import NoteStore
from .applier import apply_local_changes
from .errors import InternalError, InvalidArgumentError, SyncError, UnauthenticatedError
from .resolver import resolve_remote_changes

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Runs sync rounds against an injected note store.

    A round validates the request, collects the remote changes the client
    is missing, applies the client's own changes, and answers with the new
    checkpoint. Both halves share one ``sync_time`` captured at entry.

    The store may be written by other rounds for the same user at the same
    time. There is no cross-round locking: the last write per uuid wins and
    a round may observe part of another round's writes. The next round
    reconciles whatever was missed.
    """

    def __init__(
        self,
        store: NoteStore,
        codec: NoteCodec | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the coordinator.

        Args:
            store: Note store holding every user's collection.
            codec: Content codec for stored notes (defaults to base64).
            clock: Returns the current time; called once per round.
        """
        self.store = store
        self.codec = codec or Base64NoteCodec()
        self._clock = clock

    def handle(self, caller_id: str | None, payload: Any) -> dict[str, Any]:
        """Run one round on an already-deserialized request.

        Args:
            caller_id: Authenticated user id, or None if the caller is anonymous.
            payload: Decoded JSON request body.

        Returns:
            Response sync data as a dictionary.

        Raises:
            UnauthenticatedError: If there is no caller id.
            InvalidArgumentError: If the payload is not valid sync data.
            InternalError: If anything fails after validation.
        """
        if not caller_id:
            raise UnauthenticatedError("Authentication required")

        try:
            sync_data = SyncData.from_dict(payload)
        except ValueError as e:
            logger.info(f"Rejected sync data from {caller_id}: {e}")
            raise InvalidArgumentError("Invalid sync data") from e

        sync_time = self._clock()

        try:
            remote_changes = resolve_remote_changes(
                self.store, self.codec, caller_id, sync_data
            )
            apply_local_changes(
                self.store, self.codec, caller_id, sync_data, sync_time
            )
            response = SyncData(last_sync=sync_time, events=remote_changes).to_dict()
        except SyncError:
            raise
        except Exception as e:
            logger.exception(f"Sync failed for {caller_id}: {e}")
            raise InternalError("Sync failed") from e

        logger.info(
            f"Synced {caller_id}: received={len(sync_data.events)}, "
            f"sent={len(remote_changes)}"
        )
        return response

    def sync(self, caller_id: str | None, raw_request: bytes) -> bytes:
        """Run one round on a raw JSON request body.

        Returns:
            JSON-encoded response sync data.
        """
        if not caller_id:
            raise UnauthenticatedError("Authentication required")

        try:
            payload = json.loads(raw_request)
        except (ValueError, TypeError, RecursionError) as e:
            logger.info(f"Rejected undecodable sync request from {caller_id}: {e}")
            raise InvalidArgumentError("Invalid sync data") from e

        return json.dumps(self.handle(caller_id, payload)).encode("utf-8")
