"""Bounded queue of records a device has dispatched but not yet synced."""

import json
import logging
from typing import Any, Iterable, Iterator, Mapping

from .errors import InvalidArgument
from .ids import NO_WATERMARK, IdGenerator, split_id
from .records import EventRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000


def _matches_keys(
    payload: Mapping[str, Any], keys: list[str], values: dict[str, Any]
) -> bool:
    return all(key in payload and payload[key] == values[key] for key in keys)


class LocalQueue:
    """Ordered buffer of pending records for one device.

    Insertion order is dispatch order. The queue also holds the device's
    watermark, the latest authority position this device has caught up to.
    """

    def __init__(
        self,
        origin: str,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        id_generator: IdGenerator | None = None,
    ):
        """Initialize the queue.

        Args:
            origin: Identifier of the owning device.
            max_queue_size: Upper bound on pending records.
            id_generator: Source of record ids. A fresh one is created if omitted.
        """
        if max_queue_size < 1:
            raise InvalidArgument("max_queue_size must be at least 1")

        self.origin = origin
        self.max_queue_size = max_queue_size
        self.id_generator = id_generator if id_generator is not None else IdGenerator()
        self._records: list[EventRecord] = []
        self._watermark: int = NO_WATERMARK

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records))

    @property
    def watermark(self) -> int:
        return self._watermark

    def set_watermark(self, watermark: int) -> None:
        self._watermark = watermark

    def advance_watermark(self, watermark: int) -> bool:
        """Move the watermark forward. Returns False if it would go backwards."""
        if watermark > self._watermark:
            self._watermark = watermark
            return True
        return False

    def append(
        self,
        payload: Mapping[str, Any],
        dedup_keys: list[str] | None = None,
    ) -> int:
        """Append a new record built from ``payload``.

        When ``dedup_keys`` is non-empty and the payload carries every key,
        queued records whose payloads hold the same values for all of those
        keys are dropped first, so only the latest write per logical key
        leaves the device.

        Args:
            payload: Opaque application action.
            dedup_keys: Payload field names identifying a logical entity.

        Returns:
            The new record's id.

        Raises:
            InvalidArgument: If the payload is not a JSON-serializable
                mapping or the dedup keys are not a list of strings.
        """
        if not isinstance(payload, Mapping):
            raise InvalidArgument(
                f"Payload must be an object, got {type(payload).__name__}"
            )
        if dedup_keys is None:
            dedup_keys = []
        if not isinstance(dedup_keys, list) or not all(
            isinstance(key, str) for key in dedup_keys
        ):
            raise InvalidArgument("dedup_keys must be a list of strings")
        try:
            json.dumps(dict(payload), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise InvalidArgument(f"Payload must be JSON-serializable: {e}") from e

        if dedup_keys and all(key in payload for key in dedup_keys):
            values = {key: payload[key] for key in dedup_keys}
            before = len(self._records)
            self._records = [
                record
                for record in self._records
                if not _matches_keys(record.payload, dedup_keys, values)
            ]
            dropped = before - len(self._records)
            if dropped:
                logger.debug(f"Compacted {dropped} queued record(s) for {values}")

        event_id = self.id_generator.next()
        record = EventRecord(
            id=event_id,
            created_at=split_id(event_id)[0],
            origin=self.origin,
            payload=dict(payload),
        )
        self._records.append(record)
        self.evict_overflow()
        return event_id

    def evict_overflow(self) -> int:
        """Drop the oldest records until the queue is within bounds.

        Returns:
            Number of records dropped.
        """
        overflow = len(self._records) - self.max_queue_size
        if overflow <= 0:
            return 0

        del self._records[:overflow]
        logger.warning(
            f"Queue size enforced: removed={overflow}, remaining={len(self._records)}"
        )
        return overflow

    def snapshot(self) -> list[EventRecord]:
        return list(self._records)

    def remove(self, event_ids: Iterable[int]) -> int:
        """Remove the records with the given ids.

        Returns:
            Number of records removed.
        """
        ids = set(event_ids)
        if not ids:
            return 0

        before = len(self._records)
        self._records = [r for r in self._records if r.id not in ids]
        return before - len(self._records)

    def restore(self, records: Iterable[EventRecord]) -> None:
        """Replace the queue contents, e.g. with state loaded from storage."""
        self._records = list(records)
        self.evict_overflow()

    def clear(self) -> None:
        self._records = []

    def is_empty(self) -> bool:
        return not self._records
