"""The shared log authority and its HTTP surface."""

from .app import create_app
from .log_authority import LogAuthority, StoredRecord, handle_sync_request

__all__ = ["LogAuthority", "StoredRecord", "create_app", "handle_sync_request"]
