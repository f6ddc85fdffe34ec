"""Audit logging package."""

from finsync.audit.logger import SyncAuditLogger, create_correlation_id

__all__ = ["SyncAuditLogger", "create_correlation_id"]
