"""Sync core package: pending queue, data cache, backup and error taxonomy."""

from finsync.sync.backup import BACKUP_KEY, BackupService
from finsync.sync.cache import DataCache
from finsync.sync.errors import (
    BackupFailedError,
    NetworkUnavailableError,
    RefreshFailedError,
    RemoteOperationFailedError,
    SyncError,
)
from finsync.sync.pending_store import DROPPED_KEY, PENDING_KEY, PendingOperationStore

__all__ = [
    # Stores
    "DataCache",
    "PendingOperationStore",
    "BackupService",
    # Storage keys
    "BACKUP_KEY",
    "DROPPED_KEY",
    "PENDING_KEY",
    # Errors
    "BackupFailedError",
    "NetworkUnavailableError",
    "RefreshFailedError",
    "RemoteOperationFailedError",
    "SyncError",
]
