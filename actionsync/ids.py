"""64-bit event identifiers: 48-bit millisecond timestamp + 16-bit counter."""

import re
import time
from typing import Callable

TIMESTAMP_BITS = 48
COUNTER_BITS = 16
TIMESTAMP_MASK = (1 << TIMESTAMP_BITS) - 1
COUNTER_MASK = (1 << COUNTER_BITS) - 1
ID_HEX_WIDTH = 16
ID_PATTERN = re.compile(r"[0-9a-f]{16}")


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def compose_id(timestamp_ms: int, counter: int) -> int:
    return ((timestamp_ms & TIMESTAMP_MASK) << COUNTER_BITS) | (counter & COUNTER_MASK)


def split_id(event_id: int) -> tuple[int, int]:
    """Split an id into its (timestamp_ms, counter) parts."""
    return event_id >> COUNTER_BITS, event_id & COUNTER_MASK


def format_id(event_id: int) -> str:
    """Render an id as 16 lowercase hex characters."""
    return f"{event_id:0{ID_HEX_WIDTH}x}"


def parse_id(value: str | int) -> int:
    """Parse a wire id (16 lowercase hex chars, or an int) into a 64-bit integer.

    Raises:
        ValueError: If the value is not a valid 64-bit identifier.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid event id: {value!r}")
    if isinstance(value, int):
        event_id = value
    elif isinstance(value, str):
        if not ID_PATTERN.fullmatch(value):
            raise ValueError(f"Invalid event id: {value!r}")
        event_id = int(value, 16)
    else:
        raise ValueError(f"Invalid event id: {value!r}")

    if event_id < 0 or event_id >> 64:
        raise ValueError(f"Event id out of range: {value!r}")
    return event_id


class IdGenerator:
    """Generates ids from a millisecond clock and a wrapping 16-bit counter.

    Within one process ids increase in call order unless the counter wraps
    inside a single millisecond. Across processes they are only as ordered as
    the machines' clocks.
    """

    def __init__(self, clock: Callable[[], int] = now_ms, counter: int = 0):
        self._clock = clock
        self._counter = counter & COUNTER_MASK

    @property
    def counter(self) -> int:
        return self._counter

    def reset_counter(self, value: int) -> None:
        self._counter = value & COUNTER_MASK

    def next(self) -> int:
        counter = self._counter
        self._counter = (self._counter + 1) & COUNTER_MASK
        return compose_id(self._clock(), counter)


# Watermarks are authority sequence ids, carried on the wire as decimal
# strings. "0" means nothing has been seen yet. They compare as integers.
NO_WATERMARK = 0


def parse_watermark(value: str | int | None) -> int:
    """Parse a wire watermark.

    Raises:
        ValueError: If the value is not a non-negative decimal integer.
    """
    if value is None or value == "":
        return NO_WATERMARK
    if isinstance(value, bool):
        raise ValueError(f"Invalid watermark: {value!r}")
    if isinstance(value, int):
        watermark = value
    elif isinstance(value, str) and value.isdigit():
        watermark = int(value)
    else:
        raise ValueError(f"Invalid watermark: {value!r}")
    if watermark < 0:
        raise ValueError(f"Invalid watermark: {value!r}")
    return watermark


def format_watermark(watermark: int) -> str:
    return str(watermark)
