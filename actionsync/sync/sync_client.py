"""Sync client that reconciles a device's queue with a log authority.

Handles the send/receive/commit round trip, retry with exponential backoff,
and the debounced and periodic auto-sync timers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..errors import (
    ActionSyncError,
    ClientClosed,
    InvalidArgument,
    NetworkError,
    SyncRejected,
    TransportError,
)
from ..ids import format_watermark, parse_watermark
from ..local_queue import LocalQueue
from ..records import EventRecord, extract_payloads
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 3600

RemotePayloadsCallback = Callable[[list[dict[str, Any]]], None]


class SyncState(Enum):
    """Where a sync attempt currently is."""

    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    RECONCILING = "reconciling"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Result of a sync round trip."""

    applied_payloads: list[dict[str, Any]] = field(default_factory=list)
    watermark: int = 0
    pushed: int = 0
    pulled: int = 0
    timestamp: datetime | None = None
    discarded: bool = False  # the client was destroyed mid-flight


class SyncClient:
    """Reconciles one device's LocalQueue with a log authority.

    Records stay queued until the authority has acknowledged them, so a
    failed sync can always be retried with the same batch.
    """

    def __init__(
        self,
        queue: LocalQueue,
        transport: Transport,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sync_interval: float = 30.0,
        debounce_delay: float = 1.0,
        on_remote_payloads: RemotePayloadsCallback | None = None,
        on_commit: Callable[[], None] | None = None,
    ):
        """Initialize the sync client.

        Args:
            queue: The device's pending queue.
            transport: How requests reach the authority.
            retry_attempts: Tries per sync before giving up.
            backoff_seconds: Base delay; retry n waits backoff * 2**n seconds.
            sync_interval: Seconds between periodic auto-syncs.
            debounce_delay: Quiet period after a dispatch before auto-syncing.
            on_remote_payloads: Called with payloads received from other devices.
            on_commit: Called after a successful sync mutated the queue.
        """
        if retry_attempts < 1:
            raise InvalidArgument("retry_attempts must be at least 1")

        self.queue = queue
        self.transport = transport
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self.sync_interval = sync_interval
        self.debounce_delay = debounce_delay
        self.on_remote_payloads = on_remote_payloads
        self._on_commit = on_commit

        self.state = SyncState.IDLE
        self._lock = asyncio.Lock()
        self._destroyed = False
        self._periodic_task: asyncio.Task | None = None
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0

    @property
    def origin(self) -> str:
        return self.queue.origin

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def _send_with_retry(self, request: dict[str, Any]) -> TransportResponse:
        """Send with exponential backoff between failed attempts.

        Raises:
            NetworkError: When every attempt failed at the transport level.
        """
        last_error: Exception | None = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self.transport.send(request)
            except TransportError as e:
                last_error = e
                logger.warning(
                    f"Send attempt {attempt}/{self.retry_attempts} failed: {e}"
                )

            if attempt < self.retry_attempts:
                await asyncio.sleep(self.backoff_seconds * 2**attempt)

        raise NetworkError(self.retry_attempts, last_error)

    async def sync(self) -> SyncResult:
        """Run one reconciliation round trip.

        Returns:
            SyncResult with the remote payloads in replay order.

        Raises:
            ClientClosed: If the client was destroyed.
            NetworkError: If the authority could not be reached.
            SyncRejected: If the authority refused the batch.
        """
        if self._destroyed:
            raise ClientClosed("Sync client has been destroyed")

        async with self._lock:
            try:
                return await self._sync_once()
            except ActionSyncError as e:
                self.state = SyncState.FAILED
                self._consecutive_failures += 1
                self._last_error = str(e)
                logger.warning(f"Sync failed: {e}", extra={"origin": self.origin})
                raise
            finally:
                self.state = SyncState.IDLE

    async def _sync_once(self) -> SyncResult:
        self.state = SyncState.SENDING
        batch = self.queue.snapshot()
        request = {
            "origin": self.origin,
            "watermark": format_watermark(self.queue.watermark),
            "records": [record.to_dict() for record in batch],
        }

        self.state = SyncState.AWAITING_RESPONSE
        response = await self._send_with_retry(request)

        data = response.data
        if not response.ok or data.get("success") is False:
            raise SyncRejected(response.status_code, data.get("error"))
        # Without an explicit acknowledgement the batch must stay queued
        if data.get("success") is not True:
            raise SyncRejected(response.status_code, "Malformed response: no acknowledgement")

        raw_records = data.get("records")
        if not isinstance(raw_records, list):
            raise SyncRejected(response.status_code, "Malformed response: records")
        try:
            remote = [EventRecord.from_dict(raw) for raw in raw_records]
            if "watermark" in data:
                watermark = parse_watermark(data["watermark"])
            else:
                watermark = self.queue.watermark
        except (KeyError, ValueError) as e:
            raise SyncRejected(response.status_code, f"Malformed response: {e}") from e

        if self._destroyed:
            logger.info(
                "Client destroyed during sync, discarding result",
                extra={"origin": self.origin},
            )
            return SyncResult(watermark=self.queue.watermark, discarded=True)

        self.state = SyncState.RECONCILING
        payloads = extract_payloads(remote)

        # Records dispatched during the round trip were not sent and stay queued
        self.queue.remove(record.id for record in batch)
        self.queue.set_watermark(watermark)

        self._last_sync = datetime.now()
        self._last_error = None
        self._consecutive_failures = 0

        if self._on_commit:
            self._on_commit()

        self._notify(payloads)

        logger.info(
            f"Sync completed: pushed={len(batch)}, pulled={len(payloads)}, "
            f"watermark={watermark}",
            extra={"origin": self.origin},
        )
        return SyncResult(
            applied_payloads=payloads,
            watermark=watermark,
            pushed=len(batch),
            pulled=len(payloads),
            timestamp=self._last_sync,
        )

    def _notify(self, payloads: list[dict[str, Any]]) -> None:
        if not self.on_remote_payloads:
            return
        try:
            self.on_remote_payloads(payloads)
        except Exception as e:
            logger.error(f"Remote payload callback error: {e}", exc_info=True)

    # ==================== Auto-sync ====================

    def start(self) -> None:
        """Start the periodic sync loop on the running event loop."""
        if self._destroyed:
            raise ClientClosed("Sync client has been destroyed")
        if self._periodic_task and not self._periodic_task.done():
            return

        self._periodic_task = asyncio.get_running_loop().create_task(
            self._periodic_loop()
        )
        logger.info(f"Auto-sync started (interval={self.sync_interval}s)")

    def schedule_sync(self) -> bool:
        """Restart the debounce timer; a sync fires after a quiet period.

        Returns:
            False if no timer could be set (destroyed, or no running loop).
        """
        if self._destroyed:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, debounced sync not scheduled")
            return False

        if self._debounce_handle:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(
            self.debounce_delay, self._fire_debounce
        )
        return True

    def _fire_debounce(self) -> None:
        self._debounce_handle = None
        self._spawn(self._auto_sync("debounced"))

    def _spawn(self, coro: Any) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _periodic_loop(self) -> None:
        while not self._destroyed:
            # Adaptive interval: back off while syncs keep failing
            wait_time = self.sync_interval
            if self._consecutive_failures > 0:
                wait_time = min(
                    self.sync_interval * (2**self._consecutive_failures),
                    MAX_BACKOFF_SECONDS,
                )
                logger.debug(f"Backing off auto-sync for {wait_time}s")

            await asyncio.sleep(wait_time)
            # Spawned so that destroy() cancelling this loop never aborts a sync
            self._spawn(self._auto_sync("periodic"))

    async def _auto_sync(self, trigger: str) -> None:
        """Timer-triggered sync. Skipped while another sync is running."""
        if self._destroyed:
            return
        if self._lock.locked():
            logger.debug(f"Sync in progress, skipping {trigger} sync")
            return

        try:
            await self.sync()
        except ActionSyncError as e:
            logger.warning(f"Auto-sync ({trigger}) failed: {e}", extra={"origin": self.origin})
        except Exception as e:
            logger.error(f"Auto-sync ({trigger}) error: {e}", exc_info=True)

    def destroy(self) -> None:
        """Cancel all timers. An in-flight sync finishes but is discarded."""
        if self._destroyed:
            return
        self._destroyed = True

        if self._debounce_handle:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._periodic_task:
            self._periodic_task.cancel()
            self._periodic_task = None

        logger.info("Sync client destroyed", extra={"origin": self.origin})

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        return {
            "origin": self.origin,
            "state": self.state.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "consecutive_failures": self._consecutive_failures,
            "pending_records": len(self.queue),
            "watermark": format_watermark(self.queue.watermark),
            "destroyed": self._destroyed,
        }
