"""ActionSync: an event-sourced action log synchronized across devices.

Devices queue opaque action payloads locally, then reconcile with a shared
log authority (or hand-carry an export document) so that every device sees
every other device's actions once, in the same order.
"""

from .authority import LogAuthority, create_app
from .device import ActionSync
from .errors import (
    ActionSyncError,
    ClientClosed,
    ConfigurationError,
    InvalidArgument,
    InvalidRecord,
    MalformedDocument,
    NetworkError,
    NoPriorExport,
    SyncRejected,
    TransportError,
)
from .ids import IdGenerator
from .local_queue import LocalQueue
from .records import EventRecord
from .storage import MemoryStateStore, SQLiteStateStore, StateStore
from .sync import HttpTransport, LocalTransport, SyncClient, SyncResult, SyncState
from .transfer import Transfer

__version__ = "0.1.0"

__all__ = [
    "ActionSync",
    "ActionSyncError",
    "ClientClosed",
    "ConfigurationError",
    "EventRecord",
    "HttpTransport",
    "IdGenerator",
    "InvalidArgument",
    "InvalidRecord",
    "LocalQueue",
    "LocalTransport",
    "LogAuthority",
    "MalformedDocument",
    "MemoryStateStore",
    "NetworkError",
    "NoPriorExport",
    "SQLiteStateStore",
    "StateStore",
    "SyncClient",
    "SyncRejected",
    "SyncResult",
    "SyncState",
    "Transfer",
    "TransportError",
    "create_app",
]
