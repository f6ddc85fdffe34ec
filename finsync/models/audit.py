"""
Audit Models for finsync

Every significant sync action is logged as a typed event:
1. Which operations reached the backend and which were dropped
2. Why a pass failed
3. When connectivity flipped
4. When backups were taken

DESIGN DECISION: Events carry a correlation id. All events emitted by
one sync pass share it, so a single pass can be reconstructed from logs.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Sync passes
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    SYNC_REFUSED_OFFLINE = "sync_refused_offline"
    SYNC_SKIPPED = "sync_skipped"

    # Pending operations
    OPERATION_QUEUED = "operation_queued"
    OPERATION_SYNCED = "operation_synced"
    OPERATION_RETRY_SCHEDULED = "operation_retry_scheduled"
    OPERATION_DROPPED = "operation_dropped"

    # Cache
    REFRESH_FAILED = "refresh_failed"

    # Backup
    BACKUP_CREATED = "backup_created"
    BACKUP_FAILED = "backup_failed"

    # Environment
    CONNECTIVITY_CHANGED = "connectivity_changed"
    PREFERENCES_CHANGED = "preferences_changed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A single audit event."""

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g. 'pending_transaction', 'backup')"
    )
    entity_id: Optional[str] = None
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Shared by all events of one sync pass"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sync_started(pending_count, correlation_id)
        event = AuditEventBuilder.operation_dropped(local_id, retries, error, correlation_id)
    """

    @staticmethod
    def sync_started(
        pending_count: int,
        trigger: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_STARTED,
            correlation_id=correlation_id,
            description=f"Sync started ({trigger}) with {pending_count} pending",
            details={"pending_count": pending_count, "trigger": trigger},
            is_user_action=trigger == "manual",
        )

    @staticmethod
    def sync_completed(
        synced: int,
        failed: int,
        dropped: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_COMPLETED,
            severity=AuditSeverity.WARNING if failed else AuditSeverity.INFO,
            correlation_id=correlation_id,
            description=f"Sync completed: {synced} synced, {failed} failed",
            details={"synced": synced, "failed": failed, "dropped": dropped},
        )

    @staticmethod
    def sync_failed(
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description="Sync pass aborted",
            error_message=error_message,
        )

    @staticmethod
    def sync_refused_offline(pending_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_REFUSED_OFFLINE,
            severity=AuditSeverity.WARNING,
            description="Manual sync refused: device is offline",
            details={"pending_count": pending_count},
            is_user_action=True,
        )

    @staticmethod
    def sync_skipped(trigger: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_SKIPPED,
            severity=AuditSeverity.DEBUG,
            description=f"Sync request ignored ({trigger}): a pass is already running",
            details={"trigger": trigger},
        )

    @staticmethod
    def operation_queued(local_id: str, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_QUEUED,
            entity_type="pending_transaction",
            entity_id=local_id,
            description=f"Transaction queued for sync: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def operation_synced(
        local_id: str,
        server_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_SYNCED,
            severity=AuditSeverity.DEBUG,
            entity_type="pending_transaction",
            entity_id=local_id,
            correlation_id=correlation_id,
            description="Pending transaction acknowledged by backend",
            details={"server_id": server_id},
        )

    @staticmethod
    def operation_retry_scheduled(
        local_id: str,
        retry_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_RETRY_SCHEDULED,
            severity=AuditSeverity.WARNING,
            entity_type="pending_transaction",
            entity_id=local_id,
            correlation_id=correlation_id,
            description=f"Create failed, retry {retry_count} scheduled for next pass",
            details={"retry_count": retry_count},
            error_message=error_message,
        )

    @staticmethod
    def operation_dropped(
        local_id: str,
        retry_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_DROPPED,
            severity=AuditSeverity.WARNING,
            entity_type="pending_transaction",
            entity_id=local_id,
            correlation_id=correlation_id,
            description=f"Pending transaction dropped after {retry_count} retries",
            details={"retry_count": retry_count},
            error_message=error_message,
        )

    @staticmethod
    def refresh_failed(
        collections: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REFRESH_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Cache refresh failed for: {', '.join(collections)}",
            details={"collections": collections},
            error_message=error_message,
        )

    @staticmethod
    def backup_created(
        created_at: datetime,
        record_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            entity_type="backup",
            entity_id=created_at.isoformat(),
            description=f"Backup created with {record_count} records",
            details={"record_count": record_count},
        )

    @staticmethod
    def backup_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="backup",
            description="Backup failed, previous backup kept",
            error_message=error_message,
        )

    @staticmethod
    def connectivity_changed(is_online: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONNECTIVITY_CHANGED,
            description="Device came online" if is_online else "Device went offline",
            details={"is_online": is_online},
        )

    @staticmethod
    def preferences_changed(name: str, value: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PREFERENCES_CHANGED,
            description=f"Preference {name} set to {value}",
            details={name: value},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
