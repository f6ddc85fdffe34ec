"""
Sync Audit Logger

DESIGN DECISION: Every significant sync action is logged as a structured
event. This provides:
1. Traceability of every financial entry from queue to backend (or drop)
2. Debugging capability for partial network failures
3. A per-pass view through correlation ids

The audit logger never raises: a broken log sink must not turn a
successful sync into a failed one.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finsync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class SyncAuditLogger:
    """
    Central audit logging service for the sync subsystem.

    Events are written to the structured local log; the severity of the
    event picks the log level.
    """

    def __init__(self, logger_name: str = "finsync.audit"):
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the event was written.
        """
        log_dict = event.to_log_dict()
        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception:
            return False
        return True

    def log_sync_started(self, pending_count: int, trigger: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.sync_started(pending_count, trigger, correlation_id))

    def log_sync_completed(
        self,
        synced: int,
        failed: int,
        dropped: int,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.sync_completed(synced, failed, dropped, correlation_id))

    def log_sync_failed(self, error_message: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.sync_failed(error_message, correlation_id))

    def log_sync_refused_offline(self, pending_count: int) -> None:
        self.log(AuditEventBuilder.sync_refused_offline(pending_count))

    def log_sync_skipped(self, trigger: str) -> None:
        self.log(AuditEventBuilder.sync_skipped(trigger))

    def log_operation_queued(self, local_id: str, amount: str) -> None:
        self.log(AuditEventBuilder.operation_queued(local_id, amount))

    def log_operation_synced(self, local_id: str, server_id: str, correlation_id: UUID) -> None:
        self.log(AuditEventBuilder.operation_synced(local_id, server_id, correlation_id))

    def log_operation_retry_scheduled(
        self,
        local_id: str,
        retry_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.operation_retry_scheduled(
            local_id, retry_count, error_message, correlation_id,
        ))

    def log_operation_dropped(
        self,
        local_id: str,
        retry_count: int,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.operation_dropped(
            local_id, retry_count, error_message, correlation_id,
        ))

    def log_refresh_failed(
        self,
        collections: list[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.refresh_failed(collections, error_message, correlation_id))

    def log_backup_created(self, created_at: datetime, record_count: int) -> None:
        self.log(AuditEventBuilder.backup_created(created_at, record_count))

    def log_backup_failed(self, error_message: str) -> None:
        self.log(AuditEventBuilder.backup_failed(error_message))

    def log_connectivity_changed(self, is_online: bool) -> None:
        self.log(AuditEventBuilder.connectivity_changed(is_online))

    def log_preferences_changed(self, name: str, value: bool) -> None:
        self.log(AuditEventBuilder.preferences_changed(name, value))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.system_error(
            error_type, error_message, details, correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a sync pass and pass it through every
    event the pass emits.
    """
    return uuid4()
