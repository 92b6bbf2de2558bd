"""Tests for device state stores."""

import pytest

from actionsync.storage import MemoryStateStore, SQLiteStateStore


@pytest.fixture
def sqlite_store():
    """Create an in-memory SQLite state store."""
    store = SQLiteStateStore(":memory:", "actionsync_d1")
    store.connect()
    yield store
    store.close()


class TestMemoryStateStore:
    """Tests for MemoryStateStore."""

    def test_empty(self):
        assert MemoryStateStore().load() is None

    def test_roundtrip(self):
        store = MemoryStateStore()
        store.save({"queue": [], "watermark": "3"})

        assert store.load() == {"queue": [], "watermark": "3"}

    def test_saved_state_is_isolated(self):
        store = MemoryStateStore()
        state = {"queue": []}
        store.save(state)
        state["queue"].append("x")

        assert store.load() == {"queue": []}

    def test_clear(self):
        store = MemoryStateStore()
        store.save({"a": 1})
        store.clear()

        assert store.load() is None


class TestSQLiteStateStore:
    """Tests for SQLiteStateStore."""

    def test_connect_creates_table(self, sqlite_store):
        tables = sqlite_store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()

        assert "device_state" in [t[0] for t in tables]

    def test_roundtrip_and_overwrite(self, sqlite_store):
        sqlite_store.save({"watermark": "1"})
        sqlite_store.save({"watermark": "2"})

        assert sqlite_store.load() == {"watermark": "2"}

    def test_clear(self, sqlite_store):
        sqlite_store.save({"watermark": "1"})
        sqlite_store.clear()

        assert sqlite_store.load() is None

    def test_keys_are_independent(self, tmp_path):
        path = tmp_path / "state.db"
        first = SQLiteStateStore(path, "actionsync_d1")
        second = SQLiteStateStore(path, "actionsync_d2")

        first.save({"origin": "d1"})

        assert second.load() is None
        assert first.load() == {"origin": "d1"}
        first.close()
        second.close()

    def test_survives_reconnect(self, tmp_path):
        path = tmp_path / "nested" / "state.db"
        store = SQLiteStateStore(path, "actionsync_d1")
        store.save({"queue": [1, 2]})
        store.close()

        reopened = SQLiteStateStore(path, "actionsync_d1")
        assert reopened.load() == {"queue": [1, 2]}
        reopened.close()
