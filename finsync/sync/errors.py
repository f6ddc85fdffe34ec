"""
Sync Error Taxonomy

- NetworkUnavailableError: sync refused outright while offline
- RemoteOperationFailedError: one pending create failed (recovered by retry bookkeeping)
- RefreshFailedError: a collection re-fetch failed, the pass ended early
- BackupFailedError: the previous backup remains the latest valid one

None of these is fatal to the application.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for the sync subsystem."""
    pass


class NetworkUnavailableError(SyncError):
    """The device is offline (or offline mode is on)."""

    def __init__(self, message: str = "No network connection. Sync is unavailable while offline."):
        super().__init__(message)


class RemoteOperationFailedError(SyncError):
    """Replaying a single pending operation failed."""

    def __init__(self, local_id: str, message: str):
        self.local_id = local_id
        super().__init__(f"Operation {local_id} failed: {message}")


class RefreshFailedError(SyncError):
    """Re-fetching one or more cached collections failed."""

    def __init__(self, collections: list[str], cause: Optional[BaseException] = None):
        self.collections = collections
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to refresh {', '.join(collections)}{detail}")


class BackupFailedError(SyncError):
    """A backup could not be fetched or written."""
    pass
