"""Error taxonomy for ActionSync."""


class ActionSyncError(Exception):
    """Base class for all ActionSync errors."""


class InvalidArgument(ActionSyncError):
    """Malformed input to dispatch/append (non-object payload, bad dedup keys)."""


class MalformedDocument(ActionSyncError):
    """An export document could not be parsed."""


class NoPriorExport(ActionSyncError):
    """Re-export requested before anything was exported."""


class ConfigurationError(ActionSyncError):
    """The client is missing something it needs, such as a transport."""


class ClientClosed(ActionSyncError):
    """Operation attempted on a destroyed client."""


class TransportError(ActionSyncError):
    """A single transport attempt failed (connection refused, timeout)."""


class NetworkError(ActionSyncError):
    """Transport failure after exhausting every retry attempt."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Network failure after {attempts} attempt(s){detail}")


class SyncRejected(ActionSyncError):
    """The authority answered with a non-success status."""

    def __init__(self, status: int, error: str | None = None):
        self.status = status
        self.error = error
        message = f"Sync rejected with status {status}"
        if error:
            message += f": {error}"
        super().__init__(message)


class InvalidRecord(ActionSyncError):
    """An incoming batch contained a malformed record; nothing was applied."""
