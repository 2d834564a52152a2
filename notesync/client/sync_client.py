"""Sync client running rounds against a notesync server.

Handles network synchronization with retry logic and batching.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from ..notes.models import SyncData, format_timestamp
from .change_log import ChangeLog

logger = logging.getLogger(__name__)

MAX_SYNC_DELAY = 3600


class SyncStatus(Enum):
    """Status of a sync round."""

    SUCCESS = "success"
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncResult:
    """Result of a sync round."""

    status: SyncStatus
    events_pushed: int = 0
    events_pulled: int = 0
    error: str | None = None
    timestamp: datetime | None = None


class SyncClient:
    """Client synchronizing a local replica with the server.

    Each round sends the pending local changes with the last checkpoint,
    applies the remote changes in the reply and stores the new checkpoint.
    Uses exponential backoff for retries and a bounded batch per round.
    """

    def __init__(
        self,
        change_log: ChangeLog,
        remote_url: str | None = None,
        token: str | None = None,
        batch_size: int = 100,
        max_retries: int = 3,
        timeout: float = 30.0,
    ):
        """Initialize the sync client.

        Args:
            change_log: Local replica to sync.
            remote_url: Base URL of the server (e.g., "http://localhost:8080").
            token: Bearer token identifying the user.
            batch_size: Maximum change events per round.
            max_retries: Maximum retry attempts.
            timeout: Request timeout in seconds.
        """
        self.log = change_log
        self.remote_url = remote_url
        self.token = token
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.timeout = timeout
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the message of a callable error reply."""
        try:
            error = response.json().get("error", {})
            return f"HTTP {response.status_code}: {error.get('status')} {error.get('message')}"
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}: {response.text}"

    async def _request_with_retry(
        self,
        path: str,
        json_data: Any,
    ) -> tuple[Any, str | None]:
        """POST with exponential backoff retry.

        Args:
            path: URL path to append to remote_url.
            json_data: JSON body.

        Returns:
            Tuple of (response_data, error_message).
        """
        if not self.remote_url:
            return None, "No remote URL configured"

        url = f"{self.remote_url.rstrip('/')}{path}"
        backoff = 1.0
        last_error = "Server error"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(
                        url, json=json_data, headers=self._headers()
                    )

                    if response.status_code == 200:
                        self._consecutive_failures = 0
                        return response.json(), None

                    elif response.status_code >= 500:
                        # Server error, retry
                        logger.warning(
                            f"Server error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        self._consecutive_failures += 1
                        return None, self._error_message(response)

                except httpx.ConnectError:
                    last_error = "Connection failed"
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TimeoutException:
                    last_error = "Connection timed out"
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                    )
                except Exception as e:
                    logger.error(f"Request error: {e}")
                    self._consecutive_failures += 1
                    return None, str(e)

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        self._consecutive_failures += 1
        return None, f"{last_error}: max retries ({self.max_retries}) exceeded"

    async def sync_once(self) -> SyncResult:
        """Run one sync round.

        Returns:
            SyncResult with push/pull statistics.
        """
        if not self.remote_url:
            return SyncResult(
                status=SyncStatus.FAILED,
                error="No remote URL configured",
            )

        events, max_seq = self.log.get_pending_events(limit=self.batch_size)
        request = SyncData(last_sync=self.log.last_sync, events=events)

        data, error = await self._request_with_retry(
            "/sync", {"data": request.to_dict()}
        )

        if error:
            return SyncResult(
                status=SyncStatus.OFFLINE if "Connection" in error else SyncStatus.FAILED,
                error=error,
            )

        try:
            response = SyncData.from_dict(data.get("result"))
        except (ValueError, AttributeError) as e:
            logger.error(f"Invalid sync response: {e}")
            return SyncResult(status=SyncStatus.FAILED, error=f"Invalid sync response: {e}")

        # Sent changes are on the server now, clear them before applying
        # remote changes so only newer local edits block remote ones
        self.log.clear_pending([event.uuid for event in events], max_seq)
        pulled = self.log.apply_remote_events(response.events)
        self.log.set_last_sync(response.last_sync)

        self._last_sync = datetime.now()

        return SyncResult(
            status=SyncStatus.SUCCESS,
            events_pushed=len(events),
            events_pulled=pulled,
            timestamp=self._last_sync,
        )

    def next_sync_delay(self, interval_seconds: float, result: SyncResult | None) -> float:
        """Seconds to wait before the next round.

        A successful round that filled its batch leaves changes pending, so
        the next round starts at once. Failed rounds double the interval per
        consecutive request failure, up to MAX_SYNC_DELAY.
        """
        if result is not None and result.status == SyncStatus.SUCCESS:
            if self.batch_size and result.events_pushed >= self.batch_size:
                return 0
            return interval_seconds

        failures = max(self._consecutive_failures, 1)
        return min(interval_seconds * (2 ** failures), MAX_SYNC_DELAY)

    async def sync_loop(
        self,
        interval_seconds: float = 300,
        stop_event: asyncio.Event | None = None,
    ) -> int:
        """Run sync rounds until stop_event is set.

        Args:
            interval_seconds: Seconds between rounds while in sync.
            stop_event: Event to signal loop should stop.

        Returns:
            Number of rounds attempted.
        """
        logger.info(f"Syncing notes with {self.remote_url} every {interval_seconds}s")
        rounds = 0

        while not (stop_event and stop_event.is_set()):
            result = None
            rounds += 1
            try:
                result = await self.sync_once()
            except Exception:
                logger.exception(f"Sync round {rounds} crashed")
            else:
                if result.status == SyncStatus.SUCCESS:
                    logger.info(
                        f"Sync round {rounds}: sent {result.events_pushed} changes, "
                        f"received {result.events_pulled}"
                    )
                else:
                    logger.warning(f"Sync round {rounds} {result.status.value}: {result.error}")

            delay = self.next_sync_delay(interval_seconds, result)
            if delay != interval_seconds:
                logger.debug(f"Next sync round in {delay}s")

            if stop_event is None:
                await asyncio.sleep(delay)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Stopped syncing notes after {rounds} rounds")
        return rounds

    @property
    def last_sync(self) -> datetime | None:
        """Get local time of the last successful round."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        log_stats = self.log.get_stats()

        return {
            "remote_url": self.remote_url,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "checkpoint": format_timestamp(self.log.last_sync),
            "consecutive_failures": self._consecutive_failures,
            "pending_events": log_stats["pending_events"],
            "total_notes": log_stats["total_notes"],
        }
