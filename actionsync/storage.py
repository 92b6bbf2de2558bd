"""Pluggable persistence for device state.

A device works purely in memory when no store is configured. Stores hold a
single JSON-serializable state dict per key.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATE_SCHEMA = """
-- Device state blobs, one row per device key
CREATE TABLE IF NOT EXISTS device_state (
    key TEXT PRIMARY KEY,
    state TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class StateStore(ABC):
    """Key/value blob store for a device's persisted state."""

    @abstractmethod
    def load(self) -> dict[str, Any] | None:
        """Return the stored state, or None if nothing is stored."""
        pass

    @abstractmethod
    def save(self, state: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def close(self) -> None:
        """Release any underlying resources."""
        pass


class MemoryStateStore(StateStore):
    """Keeps state in process memory. Useful for tests."""

    def __init__(self) -> None:
        self._state: str | None = None

    def load(self) -> dict[str, Any] | None:
        if self._state is None:
            return None
        return json.loads(self._state)

    def save(self, state: dict[str, Any]) -> None:
        # Serialize so callers can't mutate what was stored
        self._state = json.dumps(state)

    def clear(self) -> None:
        self._state = None


class SQLiteStateStore(StateStore):
    """SQLite-backed state store keyed by device."""

    def __init__(self, db_path: str | Path, key: str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
            key: Row key, typically ``actionsync_<origin>``.
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self.key = key
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(STATE_SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteStateStore connected to {self.db_path} (key={self.key})")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def load(self) -> dict[str, Any] | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT state FROM device_state WHERE key = ?", (self.key,)
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["state"])

    def save(self, state: dict[str, Any]) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO device_state (key, state, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                state = excluded.state,
                updated_at = excluded.updated_at
            """,
            (self.key, json.dumps(state), datetime.now().isoformat()),
        )
        conn.commit()

    def clear(self) -> None:
        conn = self._ensure_connected()
        conn.execute("DELETE FROM device_state WHERE key = ?", (self.key,))
        conn.commit()
