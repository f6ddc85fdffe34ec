"""
Data Models Package

All pydantic models used by finsync. Data crossing a component boundary
(storage, remote API, UI subscribers) conforms to these schemas.
"""

from finsync.models.records import (
    Alert,
    AlertType,
    Category,
    Reminder,
    ServerRecord,
    Transaction,
    TransactionType,
)
from finsync.models.sync import (
    BackupArtifact,
    CachedData,
    DroppedOperation,
    PendingSummary,
    PendingTransaction,
    SyncPreferences,
    SyncResult,
    SyncState,
    SyncStatus,
    generate_local_id,
    utcnow,
)
from finsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Server records
    "Alert",
    "AlertType",
    "Category",
    "Reminder",
    "ServerRecord",
    "Transaction",
    "TransactionType",
    # Sync models
    "BackupArtifact",
    "CachedData",
    "DroppedOperation",
    "PendingSummary",
    "PendingTransaction",
    "SyncPreferences",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "generate_local_id",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
