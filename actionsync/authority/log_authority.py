"""Append-only shared log that imposes a total order on every device's records."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from ..errors import InvalidRecord
from ..ids import NO_WATERMARK, format_watermark, now_ms, parse_watermark
from ..records import EventRecord

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "payload")


@dataclass(frozen=True)
class StoredRecord:
    """A record as held by the authority."""

    record: EventRecord
    sequence_id: int
    received_at: int
    source: str  # origin of the request that submitted the record

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data["sequenceId"] = self.sequence_id
        data["receivedAt"] = self.received_at
        data["source"] = self.source
        return data


@dataclass
class DeviceSync:
    """Diagnostic bookkeeping for one device."""

    last_sequence_id: int = NO_WATERMARK
    last_sync_at: int | None = None


def _validate(raw: Any) -> EventRecord:
    if isinstance(raw, EventRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidRecord(f"Record must be an object, got {type(raw).__name__}")

    missing = [name for name in REQUIRED_FIELDS if name not in raw]
    if "timestamp" not in raw and "created_at" not in raw:
        missing.append("timestamp")
    if missing:
        raise InvalidRecord(f"Record missing required field(s): {', '.join(missing)}")

    try:
        return EventRecord.from_dict(raw)
    except (KeyError, ValueError) as e:
        raise InvalidRecord(str(e)) from e


class LogAuthority:
    """Server-side reconciliation engine.

    All state lives on the instance and every operation holds ``lock``, so a
    device's receive-then-query round trip cannot interleave with another
    device's batch. Sequence ids are never reused, not even after ``reset``.
    """

    def __init__(
        self,
        lock: "threading.RLock | None" = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._lock = lock if lock is not None else threading.RLock()
        self._clock = clock
        self._log: list[StoredRecord] = []
        self._devices: dict[str, DeviceSync] = {}
        self._next_sequence = 1
        self._started = time.monotonic()

    def __len__(self) -> int:
        with self._lock:
            return len(self._log)

    def receive(self, origin: str, records: Iterable[Any]) -> list[StoredRecord]:
        """Append a device's batch to the log.

        The batch is validated in full before anything is appended.

        Raises:
            InvalidRecord: If any record is malformed.
        """
        validated = [_validate(raw) for raw in records]

        with self._lock:
            received_at = self._clock()
            stored = []
            for record in validated:
                entry = StoredRecord(
                    record=record,
                    sequence_id=self._next_sequence,
                    received_at=received_at,
                    source=origin,
                )
                self._next_sequence += 1
                self._log.append(entry)
                stored.append(entry)

            device = self._devices.setdefault(origin, DeviceSync())
            device.last_sync_at = received_at
            if stored:
                device.last_sequence_id = stored[-1].sequence_id

        if stored:
            logger.info(f"Stored {len(stored)} records from device {origin}")
        return stored

    def records_since(self, origin: str, last_known_id: int) -> list[EventRecord]:
        """Records after ``last_known_id`` that did not come from ``origin``.

        A watermark beyond the end of the log is unknown to this authority
        and is treated as "nothing seen yet".
        """
        with self._lock:
            latest = self._latest_locked()
            start = last_known_id if 0 <= last_known_id <= latest else NO_WATERMARK
            if start != last_known_id:
                logger.warning(
                    f"Unknown watermark {last_known_id} from {origin}, replaying from start"
                )

            result = [
                entry.record
                for entry in self._log
                if entry.sequence_id > start and entry.source != origin
            ]

        logger.debug(f"Sending {len(result)} records to device {origin}")
        return result

    def _latest_locked(self) -> int:
        return self._log[-1].sequence_id if self._log else NO_WATERMARK

    def latest_id(self) -> int:
        """The newest sequence id, or 0 when the log is empty."""
        with self._lock:
            return self._latest_locked()

    def sync(
        self, origin: str, watermark: int, records: Iterable[Any]
    ) -> tuple[list[EventRecord], int]:
        """Receive a batch and answer with what the device has missed.

        Returns:
            Tuple of (records for the device, new watermark).
        """
        with self._lock:
            self.receive(origin, records)
            missed = self.records_since(origin, watermark)
            latest = self._latest_locked()
            self._devices[origin].last_sequence_id = latest
            return missed, latest

    def records_for(self, origin: str) -> list[StoredRecord]:
        """Every record submitted by ``origin``, for debugging."""
        with self._lock:
            return [entry for entry in self._log if entry.source == origin]

    def health(self) -> dict[str, Any]:
        with self._lock:
            return {
                "totalRecords": len(self._log),
                "connectedDevices": len(self._devices),
                "latestSequenceId": self._latest_locked(),
                "uptime": round(time.monotonic() - self._started, 3),
            }

    def stats(self, recent: int = 10) -> dict[str, Any]:
        """Per-origin counts, last sync times and the most recent records."""
        with self._lock:
            devices: dict[str, int] = {}
            for entry in self._log:
                devices[entry.source] = devices.get(entry.source, 0) + 1

            return {
                "totalRecords": len(self._log),
                "devices": devices,
                "lastSync": {
                    origin: {
                        "sequenceId": device.last_sequence_id,
                        "at": device.last_sync_at,
                    }
                    for origin, device in self._devices.items()
                },
                "recentRecords": [
                    {
                        "id": entry.record.hex_id,
                        "sequenceId": entry.sequence_id,
                        "device": entry.source,
                        "type": entry.record.payload.get("type"),
                        "timestamp": entry.record.created_at,
                    }
                    for entry in (self._log[-recent:] if recent > 0 else [])
                ],
            }

    def reset(self) -> None:
        """Drop every record and device entry. Administrative only."""
        with self._lock:
            self._log = []
            self._devices = {}
        logger.info("All data cleared")


def handle_sync_request(
    authority: LogAuthority, body: Any
) -> tuple[int, dict[str, Any]]:
    """Validate a sync request body and run it against ``authority``.

    Returns:
        Tuple of (HTTP status code, response body).
    """
    if not isinstance(body, Mapping):
        return 400, {"success": False, "error": "Request body must be an object"}

    origin = body.get("origin")
    if not origin or not isinstance(origin, str):
        return 400, {"success": False, "error": "origin is required"}

    records = body.get("records")
    if not isinstance(records, list):
        return 400, {"success": False, "error": "records must be an array"}

    try:
        watermark = parse_watermark(body.get("watermark"))
    except ValueError:
        logger.warning(f"Unparseable watermark {body.get('watermark')!r} from {origin}")
        watermark = NO_WATERMARK

    logger.info(
        f"Sync request from device {origin}: watermark={watermark}, records={len(records)}"
    )

    try:
        missed, latest = authority.sync(origin, watermark, records)
    except InvalidRecord as e:
        logger.warning(f"Rejected batch from {origin}: {e}")
        return 400, {"success": False, "error": f"Invalid record: {e}"}

    return 200, {
        "success": True,
        "watermark": format_watermark(latest),
        "records": [record.to_dict() for record in missed],
        "serverTime": now_ms(),
    }
