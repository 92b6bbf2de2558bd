"""Device-side synchronization with a log authority."""

from .sync_client import SyncClient, SyncResult, SyncState
from .transport import HttpTransport, LocalTransport, Transport, TransportResponse

__all__ = [
    "HttpTransport",
    "LocalTransport",
    "SyncClient",
    "SyncResult",
    "SyncState",
    "Transport",
    "TransportResponse",
]
