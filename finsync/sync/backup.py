"""
Backup Service

Snapshots the full dataset into a single durable artifact.

DESIGN DECISION: The artifact is written with one storage write.
1. A failed write leaves the previous artifact in place
2. There is never a half-written backup to restore from
3. Only the timestamp of the newest backup is tracked, not a history
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional, Sequence

import structlog
from pydantic import ValidationError

from finsync.audit.logger import SyncAuditLogger
from finsync.models.records import Alert, Category, Reminder, Transaction
from finsync.models.sync import BackupArtifact, utcnow
from finsync.services.remote import RemoteAPI, RemoteAPIError
from finsync.services.storage import KeyValueStorage, StorageError
from finsync.sync.cache import DataCache
from finsync.sync.errors import BackupFailedError


logger = structlog.get_logger(__name__)

BACKUP_KEY = "backup_data"


class BackupService:
    """
    Creates and reads the latest backup artifact.

    Args:
        storage: Persistent key-value storage holding the artifact
        cache: Data cache that records the backup timestamp
        remote: Backend used by run_full_backup
        audit_logger: Audit trail for created and failed backups
        clock: Source of "now"
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        cache: DataCache,
        remote: Optional[RemoteAPI] = None,
        audit_logger: Optional[SyncAuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._cache = cache
        self._remote = remote
        self._audit = audit_logger or SyncAuditLogger()
        self._clock = clock

    async def create_backup(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category],
        alerts: Sequence[Alert],
        reminders: Sequence[Reminder],
    ) -> BackupArtifact:
        """
        Persist a full snapshot and record its timestamp.

        The artifact's created_at never precedes the previous backup's,
        so the recorded backup time only moves forward.

        Raises:
            BackupFailedError: If the artifact could not be written
        """
        created_at = self._clock()
        previous = await self.get_backup_time()
        if previous is not None and previous > created_at:
            created_at = previous

        artifact = BackupArtifact(
            created_at=created_at,
            transactions=list(transactions),
            categories=list(categories),
            alerts=list(alerts),
            reminders=list(reminders),
        )

        try:
            await self._storage.set_item(BACKUP_KEY, artifact.model_dump_json(by_alias=True))
        except StorageError as e:
            self._audit.log_backup_failed(str(e))
            raise BackupFailedError(f"Failed to write backup: {e}") from e

        try:
            await self._cache.record_backup_time(created_at)
        except StorageError as e:
            # The artifact carries created_at; get_backup_time takes the newer of the two.
            logger.warning("backup_time_not_recorded", error=str(e))

        self._audit.log_backup_created(created_at, artifact.record_count)
        return artifact

    async def get_backup(self) -> Optional[BackupArtifact]:
        """Return the latest artifact, or None when there is none (or it is unreadable)."""
        raw = await self._storage.get_item(BACKUP_KEY)
        if not raw:
            return None
        try:
            return BackupArtifact.model_validate_json(raw)
        except ValidationError as e:
            logger.error("backup_artifact_corrupt", error=str(e))
            return None

    async def get_backup_time(self) -> Optional[datetime]:
        """Return the newer of the recorded backup time and the artifact's created_at."""
        recorded = await self._cache.get_backup_time()
        artifact = await self.get_backup()
        if artifact is None:
            return recorded
        if recorded is None:
            return artifact.created_at
        return max(recorded, artifact.created_at)

    async def run_full_backup(self, page_size: int) -> BackupArtifact:
        """
        Fetch every collection from the backend and back it up.

        The four reads run concurrently. If any of them fails nothing is
        written and the previous backup stays the latest valid one.
        """
        if self._remote is None:
            raise BackupFailedError("No remote API configured for backup")

        results = await asyncio.gather(
            self._remote.transactions.list(limit=page_size),
            self._remote.categories.list(),
            self._remote.alerts.list(),
            self._remote.reminders.list(),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            for error in errors:
                if not isinstance(error, (RemoteAPIError, StorageError)):
                    raise error
            message = "; ".join(str(e) for e in errors)
            self._audit.log_backup_failed(message)
            raise BackupFailedError(f"Failed to fetch data for backup: {message}") from errors[0]

        transactions, categories, alerts, reminders = results
        return await self.create_backup(transactions, categories, alerts, reminders)

    async def clear(self) -> None:
        await self._storage.remove_item(BACKUP_KEY)
