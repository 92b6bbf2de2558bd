"""The EventRecord envelope that wraps every dispatched payload."""

import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from .ids import format_id, parse_id, split_id


@dataclass(frozen=True)
class EventRecord:
    """A single dispatched event.

    ``created_at`` is the millisecond timestamp carried in the high 48 bits
    of ``id``; it is kept separately for readability on the wire.
    """

    id: int
    created_at: int
    origin: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def hex_id(self) -> str:
        return format_id(self.id)

    def sort_key(self) -> int:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape."""
        return {
            "id": format_id(self.id),
            "timestamp": self.created_at,
            "origin": self.origin,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EventRecord":
        """Create from the wire shape.

        Accepts either ``timestamp`` or ``created_at``. When both are absent
        the timestamp is recovered from the id.

        Raises:
            KeyError: If ``id`` or ``payload`` is missing.
            ValueError: If a field has the wrong type.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Record must be an object, got {type(data).__name__}")

        event_id = parse_id(data["id"])
        payload = data["payload"]
        if not isinstance(payload, Mapping):
            raise ValueError("Record payload must be an object")

        created_at = data.get("timestamp", data.get("created_at"))
        if created_at is None:
            created_at = split_id(event_id)[0]
        if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
            raise ValueError(f"Record timestamp must be a number, got {created_at!r}")
        if isinstance(created_at, float) and not math.isfinite(created_at):
            raise ValueError(f"Record timestamp must be finite, got {created_at!r}")

        origin = data.get("origin") or ""
        if not isinstance(origin, str):
            raise ValueError("Record origin must be a string")

        return cls(
            id=event_id,
            created_at=int(created_at),
            origin=origin,
            payload=dict(payload),
        )


def sort_records(records: list[EventRecord]) -> list[EventRecord]:
    """Sort by id ascending; records with equal ids keep their arrival order."""
    return sorted(records, key=EventRecord.sort_key)


def extract_payloads(records: list[EventRecord]) -> list[dict[str, Any]]:
    """Deterministic replay order: payloads of ``records`` sorted by id."""
    return [record.payload for record in sort_records(records)]
