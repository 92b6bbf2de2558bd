"""ActionSync: the device-side API applications use."""

import json
import logging
import sqlite3
import uuid
from typing import Any, Mapping

from .config import Config
from .errors import ConfigurationError, MalformedDocument
from .ids import IdGenerator, format_id, format_watermark, now_ms, parse_watermark
from .local_queue import DEFAULT_MAX_QUEUE_SIZE, LocalQueue
from .records import EventRecord
from .storage import SQLiteStateStore, StateStore
from .sync import HttpTransport, SyncClient, SyncResult, Transport
from .sync.sync_client import RemotePayloadsCallback
from .transfer import Transfer, parse_records

logger = logging.getLogger(__name__)


def generate_origin() -> str:
    return f"device-{uuid.uuid4().hex[:12]}"


class ActionSync:
    """Records actions on one device and keeps them in sync with others.

    Typical use::

        device = ActionSync(server_url="http://localhost:3000")
        device.load()
        device.dispatch({"type": "SAVE", "id": "n1", "v": 1}, dedup_keys=["type", "id"])
        result = await device.sync()
    """

    def __init__(
        self,
        origin: str | None = None,
        server_url: str | None = None,
        transport: Transport | None = None,
        auto_sync: bool = True,
        sync_interval: float = 30.0,
        debounce_delay: float = 1.0,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        timeout: float = 10.0,
        on_remote_payloads: RemotePayloadsCallback | None = None,
        store: StateStore | None = None,
    ):
        """Initialize the device.

        Args:
            origin: Device identifier. Generated when omitted.
            server_url: Authority URL, used to build an HttpTransport.
            transport: Explicit transport; takes precedence over server_url.
            auto_sync: Sync on dispatch (debounced) and periodically.
            sync_interval: Seconds between periodic syncs.
            debounce_delay: Quiet period after dispatch before syncing.
            max_queue_size: Pending records kept before the oldest are dropped.
            retry_attempts: Transport attempts per sync.
            backoff_seconds: Base retry delay.
            timeout: HTTP request timeout in seconds.
            on_remote_payloads: Callback for payloads from other devices.
            store: Optional persistence; the device runs in memory without one.
        """
        self.origin = origin or generate_origin()
        self.server_url = server_url
        self.auto_sync = auto_sync
        self.store = store

        if transport is None and server_url:
            transport = HttpTransport(server_url, timeout=timeout)
        self.transport = transport

        self.id_generator = IdGenerator()
        self.queue = LocalQueue(self.origin, max_queue_size, self.id_generator)
        self.transfer = Transfer()

        self.client: SyncClient | None = None
        if transport is not None:
            self.client = SyncClient(
                self.queue,
                transport,
                retry_attempts=retry_attempts,
                backoff_seconds=backoff_seconds,
                sync_interval=sync_interval,
                debounce_delay=debounce_delay,
                on_remote_payloads=on_remote_payloads,
                on_commit=self._save,
            )

        logger.info(f"ActionSync initialized for device {self.origin}")

    @classmethod
    def from_config(
        cls,
        config: Config,
        on_remote_payloads: RemotePayloadsCallback | None = None,
    ) -> "ActionSync":
        origin = config.device.origin or generate_origin()
        store = None
        if config.persistence.enabled:
            store = SQLiteStateStore(config.persistence.db_path, f"actionsync_{origin}")

        return cls(
            origin=origin,
            server_url=config.sync.server_url or None,
            auto_sync=config.sync.auto_sync,
            sync_interval=config.sync.sync_interval_seconds,
            debounce_delay=config.sync.debounce_seconds,
            max_queue_size=config.device.max_queue_size,
            retry_attempts=config.sync.retry_attempts,
            backoff_seconds=config.sync.backoff_seconds,
            timeout=config.sync.timeout_seconds,
            on_remote_payloads=on_remote_payloads,
            store=store,
        )

    # ==================== Persistence ====================

    def _state(self) -> dict[str, Any]:
        return {
            "queue": [record.to_dict() for record in self.queue],
            "lastExport": self.transfer.last_export,
            "watermark": format_watermark(self.queue.watermark),
            "idCounter": self.id_generator.counter,
            "savedAt": now_ms(),
        }

    def _save(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self._state())
        except sqlite3.Error as e:
            logger.error(f"Failed to save state: {e}", extra={"origin": self.origin})

    def load(self) -> bool:
        """Restore queue, watermark and id counter from the store.

        Returns:
            True if state was found and restored.
        """
        if self.store is None:
            return False
        try:
            state = self.store.load()
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to load state: {e}", extra={"origin": self.origin})
            return False
        if not state:
            return False

        try:
            records = parse_records(state.get("queue", []))
            watermark = parse_watermark(state.get("watermark"))
        except (MalformedDocument, ValueError) as e:
            logger.error(f"Ignoring corrupt stored state: {e}", extra={"origin": self.origin})
            return False

        self.queue.restore(records)
        self.queue.set_watermark(watermark)
        self.id_generator.reset_counter(int(state.get("idCounter", 0)))
        self.transfer.restore_last_export(state.get("lastExport"))

        logger.info(
            f"State loaded from storage: queue_length={len(self.queue)}",
            extra={"origin": self.origin},
        )
        return True

    # ==================== Dispatch ====================

    def dispatch(
        self,
        payload: Mapping[str, Any],
        dedup_keys: list[str] | None = None,
    ) -> str:
        """Queue an action and return its hex id.

        Raises:
            InvalidArgument: If the payload or dedup keys are malformed.
        """
        event_id = self.queue.append(payload, dedup_keys)
        self._save()

        logger.debug(f"Action dispatched: {format_id(event_id)}", extra={"origin": self.origin})

        if self.auto_sync and self.client:
            self.client.schedule_sync()

        return format_id(event_id)

    def is_synced(self) -> bool:
        return self.queue.is_empty()

    def pending(self) -> list[EventRecord]:
        return self.queue.snapshot()

    def clear_queue(self) -> None:
        self.queue.clear()
        self._save()
        logger.info("Action queue cleared", extra={"origin": self.origin})

    # ==================== Sync ====================

    async def sync(self) -> SyncResult:
        """Reconcile with the authority.

        Raises:
            ConfigurationError: If no transport or server URL was configured.
        """
        if self.client is None:
            raise ConfigurationError("Server URL not configured")
        return await self.client.sync()

    def start(self) -> None:
        """Start periodic auto-sync. Needs a running event loop."""
        if self.auto_sync and self.client:
            self.client.start()

    def destroy(self) -> None:
        """Stop all timers. Pending records stay in the store."""
        if self.client:
            self.client.destroy()
        logger.info("ActionSync destroyed", extra={"origin": self.origin})

    def close(self) -> None:
        """Destroy the device and close its store."""
        self.destroy()
        if self.store is not None:
            self.store.close()

    # ==================== Manual transfer ====================

    def export(self, indent: int | None = 2) -> str:
        """Export pending records as JSON. The queue is left untouched."""
        document = self.transfer.export(self.queue)
        self._save()
        return json.dumps(document, indent=indent)

    def reexport_last(self, indent: int | None = 2) -> str:
        return json.dumps(self.transfer.reexport_last(), indent=indent)

    def import_json(self, text: str | bytes) -> list[dict[str, Any]]:
        """Return the payloads of an exported document in replay order."""
        payloads = self.transfer.import_document(text, self.queue)
        self._save()
        return payloads

    def get_status(self) -> dict[str, Any]:
        last_export = self.transfer.last_export
        return {
            "origin": self.origin,
            "queue_length": len(self.queue),
            "last_export_length": len(last_export["records"]) if last_export else 0,
            "watermark": format_watermark(self.queue.watermark),
            "auto_sync": self.auto_sync,
            "server_url": self.server_url,
            "is_synced": self.is_synced(),
            "sync": self.client.get_sync_status() if self.client else None,
        }
