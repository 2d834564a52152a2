"""Two-way incremental note synchronization.

A client sends the change events it made since its last sync; the server
applies them and answers with the changes the client is missing.
"""

from .applier import apply_local_changes
from .coordinator import SyncCoordinator
from .errors import InternalError, InvalidArgumentError, SyncError, UnauthenticatedError
from .resolver import resolve_remote_changes

__all__ = [
    "InternalError",
    "InvalidArgumentError",
    "SyncCoordinator",
    "SyncError",
    "UnauthenticatedError",
    "apply_local_changes",
    "resolve_remote_changes",
]
