"""Client replica and sync client."""

from .change_log import ChangeLog
from .sync_client import SyncClient, SyncResult, SyncStatus

__all__ = ["ChangeLog", "SyncClient", "SyncResult", "SyncStatus"]
