"""Tests for the ActionSync device facade."""

import asyncio
import json
import re
import sqlite3
from unittest.mock import MagicMock

import pytest

from actionsync import ActionSync, LogAuthority
from actionsync.config import Config, DeviceConfig, PersistenceConfig, SyncConfig
from actionsync.errors import ConfigurationError, InvalidArgument, NoPriorExport
from actionsync.storage import MemoryStateStore, SQLiteStateStore, StateStore
from actionsync.sync import HttpTransport, LocalTransport


@pytest.fixture
def authority():
    return LogAuthority()


@pytest.fixture
def store():
    return MemoryStateStore()


def make_device(origin: str, authority: LogAuthority | None = None, **kwargs) -> ActionSync:
    kwargs.setdefault("auto_sync", False)
    kwargs.setdefault("backoff_seconds", 0)
    transport = LocalTransport(authority) if authority is not None else None
    return ActionSync(origin=origin, transport=transport, **kwargs)


class TestDispatch:
    """Tests for dispatching actions."""

    def test_returns_hex_id(self):
        device = make_device("d1")

        action_id = device.dispatch({"type": "A"})

        assert re.fullmatch(r"[0-9a-f]{16}", action_id)
        assert not device.is_synced()

    def test_generates_origin(self):
        device = ActionSync(auto_sync=False)

        assert device.origin.startswith("device-")

    def test_invalid_payload(self):
        with pytest.raises(InvalidArgument):
            make_device("d1").dispatch("SAVE")

    def test_unserializable_payload_leaves_state_untouched(self, store):
        device = make_device("d1", store=store)
        device.dispatch({"type": "A"})

        with pytest.raises(InvalidArgument):
            device.dispatch({"type": "B", "at": object()})

        assert [r.payload for r in device.pending()] == [{"type": "A"}]
        assert [r["payload"] for r in store.load()["queue"]] == [{"type": "A"}]

    def test_dedup_keys(self):
        device = make_device("d1")

        device.dispatch({"type": "SAVE", "id": "n1", "v": 1}, ["type", "id"])
        device.dispatch({"type": "SAVE", "id": "n1", "v": 2}, ["type", "id"])

        assert [r.payload["v"] for r in device.pending()] == [2]

    def test_clear_queue(self):
        device = make_device("d1")
        device.dispatch({"type": "A"})

        device.clear_queue()

        assert device.is_synced()


class TestDeviceSync:
    """Tests for syncing through the facade."""

    @pytest.mark.asyncio
    async def test_sync_without_transport(self):
        with pytest.raises(ConfigurationError):
            await make_device("d1").sync()

    def test_server_url_builds_http_transport(self):
        device = ActionSync(origin="d1", server_url="http://localhost:3000", auto_sync=False)

        assert isinstance(device.transport, HttpTransport)
        assert device.transport.url == "http://localhost:3000/sync"

    @pytest.mark.asyncio
    async def test_end_to_end(self, authority):
        received = []
        d1 = make_device("d1", authority)
        d2 = make_device("d2", authority, on_remote_payloads=received.extend)

        d1.dispatch({"type": "A"})
        d1.dispatch({"type": "B"})
        await d1.sync()
        result = await d2.sync()

        assert d1.is_synced()
        assert result.applied_payloads == [{"type": "A"}, {"type": "B"}]
        assert received == [{"type": "A"}, {"type": "B"}]

    @pytest.mark.asyncio
    async def test_dispatch_triggers_debounced_sync(self, authority):
        device = make_device("d1", authority, auto_sync=True, debounce_delay=0.01)

        device.dispatch({"type": "A"})
        await asyncio.sleep(0.1)

        assert device.is_synced()
        assert len(authority) == 1
        device.destroy()

    @pytest.mark.asyncio
    async def test_destroy_cancels_pending_sync(self, authority):
        device = make_device("d1", authority, auto_sync=True, debounce_delay=0.01)

        device.dispatch({"type": "A"})
        device.destroy()
        device.destroy()
        await asyncio.sleep(0.05)

        assert len(authority) == 0
        assert not device.is_synced()


class TestManualTransfer:
    """Tests for export/import through the facade."""

    def test_export_is_repeatable(self):
        device = make_device("d1")
        device.dispatch({"type": "A"})

        first = json.loads(device.export())
        second = json.loads(device.export())

        assert first["records"] == second["records"]
        assert len(device.pending()) == 1

    def test_reexport_last(self):
        device = make_device("d1")
        with pytest.raises(NoPriorExport):
            device.reexport_last()

        device.dispatch({"type": "A"})
        exported = device.export()
        device.clear_queue()

        assert json.loads(device.reexport_last()) == json.loads(exported)

    def test_import_between_devices(self):
        source = make_device("d1")
        target = make_device("d2")
        source.dispatch({"type": "A"})
        source.dispatch({"type": "B"})

        payloads = target.import_json(source.export())

        assert payloads == [{"type": "A"}, {"type": "B"}]
        assert target.is_synced()


class TestPersistence:
    """Tests for the optional state store."""

    def test_state_survives_restart(self, store):
        device = make_device("d1", store=store)
        device.dispatch({"n": 1})
        device.dispatch({"n": 2})
        device.queue.set_watermark(12)
        device.export()
        device.clear_queue()
        device.dispatch({"n": 3})

        restarted = make_device("d1", store=store)
        assert restarted.load() is True

        assert [r.payload for r in restarted.pending()] == [{"n": 3}]
        assert restarted.queue.watermark == 12
        assert restarted.id_generator.counter == device.id_generator.counter
        assert len(json.loads(restarted.reexport_last())["records"]) == 2

    @pytest.mark.asyncio
    async def test_sync_persists(self, authority, store):
        device = make_device("d1", authority, store=store)
        device.dispatch({"n": 1})

        await device.sync()

        assert store.load()["queue"] == []
        assert store.load()["watermark"] == "1"

    def test_load_without_store(self):
        assert make_device("d1").load() is False

    def test_load_empty_store(self, store):
        assert make_device("d1", store=store).load() is False

    def test_corrupt_state_ignored(self, store):
        store.save({"queue": [{"id": "zz"}], "watermark": "0"})
        device = make_device("d1", store=store)

        assert device.load() is False
        assert device.is_synced()

    def test_store_failure_degrades_to_memory(self):
        failing = MagicMock(spec=StateStore)
        failing.save.side_effect = sqlite3.OperationalError("disk I/O error")
        device = make_device("d1", store=failing)

        device.dispatch({"n": 1})

        assert len(device.pending()) == 1

    def test_sqlite_store(self, tmp_path):
        path = tmp_path / "state.db"
        device = make_device("d1", store=SQLiteStateStore(path, "actionsync_d1"))
        device.dispatch({"n": 1})

        restarted = make_device("d1", store=SQLiteStateStore(path, "actionsync_d1"))
        restarted.load()

        assert [r.payload for r in restarted.pending()] == [{"n": 1}]

    def test_close_closes_store(self, authority):
        store = MagicMock(spec=StateStore)
        device = make_device("d1", authority, store=store)

        device.close()

        store.close.assert_called_once()
        assert device.client.destroyed

    def test_close_releases_sqlite_connection(self, tmp_path):
        store = SQLiteStateStore(tmp_path / "state.db", "actionsync_d1")
        device = make_device("d1", store=store)
        device.dispatch({"n": 1})

        device.close()

        assert store._conn is None


class TestFromConfig:
    """Tests for building a device from configuration."""

    def test_from_config(self, tmp_path):
        config = Config(
            device=DeviceConfig(origin="laptop", max_queue_size=5),
            sync=SyncConfig(server_url="http://authority:3000", auto_sync=False),
            persistence=PersistenceConfig(db_path=str(tmp_path / "state.db")),
        )

        device = ActionSync.from_config(config)

        assert device.origin == "laptop"
        assert device.queue.max_queue_size == 5
        assert isinstance(device.store, SQLiteStateStore)
        assert device.store.key == "actionsync_laptop"
        assert device.client is not None

    def test_persistence_disabled(self):
        config = Config(persistence=PersistenceConfig(enabled=False))

        device = ActionSync.from_config(config)

        assert device.store is None
        assert device.client is None

    def test_status(self):
        device = make_device("d1")
        device.dispatch({"n": 1})

        status = device.get_status()

        assert status["origin"] == "d1"
        assert status["queue_length"] == 1
        assert status["is_synced"] is False
        assert status["watermark"] == "0"
        assert status["sync"] is None
