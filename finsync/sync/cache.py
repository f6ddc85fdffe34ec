"""
Data Cache

Local mirror of the server-authoritative collections plus the last-sync
and last-backup timestamps.

CRITICAL: Every cache write replaces the whole collection. There is no
merge, so a collection never mixes two server views. Reads return the last
successfully written snapshot; there is no read-through to the backend.

Timestamps only move forward. A clock that jumps backwards cannot make
last_sync_time or the backup time decrease.
"""

import json
from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from finsync.models.records import Alert, Category, Reminder, Transaction
from finsync.models.sync import CachedData, SyncPreferences, utcnow
from finsync.services.storage import KeyValueStorage
from finsync.sync.pending_store import PendingOperationStore


logger = structlog.get_logger(__name__)

CACHED_TRANSACTIONS_KEY = "cached_transactions"
CACHED_CATEGORIES_KEY = "cached_categories"
CACHED_ALERTS_KEY = "cached_alerts"
CACHED_REMINDERS_KEY = "cached_reminders"
CACHED_SUMMARY_KEY = "cached_summary"
CACHED_PREFERENCES_KEY = "cached_preferences"
LAST_SYNC_TIME_KEY = "last_sync_time"
LAST_BACKUP_TIME_KEY = "last_backup_time"

COLLECTION_KEYS = [
    CACHED_TRANSACTIONS_KEY,
    CACHED_CATEGORIES_KEY,
    CACHED_ALERTS_KEY,
    CACHED_REMINDERS_KEY,
    CACHED_SUMMARY_KEY,
    CACHED_PREFERENCES_KEY,
]

RecordT = TypeVar("RecordT", bound=BaseModel)


class DataCache:
    """
    Last-known-good snapshots of transactions, categories, alerts and reminders.

    Args:
        storage: Persistent key-value storage
        pending_store: Queue consulted by get_pending_count
        clock: Source of "now" for timestamps
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        pending_store: Optional[PendingOperationStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._pending_store = pending_store
        self._clock = clock

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def _write_collection(self, key: str, records: Sequence[BaseModel]) -> None:
        payload = json.dumps([record.model_dump(mode="json", by_alias=True) for record in records])
        await self._storage.set_item(key, payload)
        logger.debug("collection_cached", key=key, count=len(records))

    async def _read_collection(self, key: str, model: type[RecordT]) -> list[RecordT]:
        raw = await self._storage.get_item(key)
        if not raw:
            return []
        try:
            return TypeAdapter(list[model]).validate_json(raw)
        except ValidationError as e:
            logger.error("cached_collection_corrupt", key=key, error=str(e))
            return []

    async def cache_transactions(self, transactions: Sequence[Transaction]) -> None:
        """Replace the cached transactions with this list."""
        await self._write_collection(CACHED_TRANSACTIONS_KEY, transactions)

    async def cache_categories(self, categories: Sequence[Category]) -> None:
        """Replace the cached categories with this list."""
        await self._write_collection(CACHED_CATEGORIES_KEY, categories)

    async def cache_alerts(self, alerts: Sequence[Alert]) -> None:
        """Replace the cached alerts with this list."""
        await self._write_collection(CACHED_ALERTS_KEY, alerts)

    async def cache_reminders(self, reminders: Sequence[Reminder]) -> None:
        """Replace the cached reminders with this list."""
        await self._write_collection(CACHED_REMINDERS_KEY, reminders)

    async def get_cached_transactions(self) -> list[Transaction]:
        return await self._read_collection(CACHED_TRANSACTIONS_KEY, Transaction)

    async def get_cached_categories(self) -> list[Category]:
        return await self._read_collection(CACHED_CATEGORIES_KEY, Category)

    async def get_cached_alerts(self) -> list[Alert]:
        return await self._read_collection(CACHED_ALERTS_KEY, Alert)

    async def get_cached_reminders(self) -> list[Reminder]:
        return await self._read_collection(CACHED_REMINDERS_KEY, Reminder)

    async def cache_all_data(
        self,
        transactions: Optional[Sequence[Transaction]] = None,
        categories: Optional[Sequence[Category]] = None,
        alerts: Optional[Sequence[Alert]] = None,
        reminders: Optional[Sequence[Reminder]] = None,
        summary: Optional[dict] = None,
    ) -> None:
        """Replace every collection that is given; leave the others alone."""
        if transactions is not None:
            await self.cache_transactions(transactions)
        if categories is not None:
            await self.cache_categories(categories)
        if alerts is not None:
            await self.cache_alerts(alerts)
        if reminders is not None:
            await self.cache_reminders(reminders)
        if summary is not None:
            await self.cache_summary(summary)

    async def get_all_cached_data(self) -> CachedData:
        return CachedData(
            transactions=await self.get_cached_transactions(),
            categories=await self.get_cached_categories(),
            alerts=await self.get_cached_alerts(),
            reminders=await self.get_cached_reminders(),
            summary=await self.get_cached_summary(),
        )

    # ------------------------------------------------------------------
    # Summary and preferences
    # ------------------------------------------------------------------

    async def cache_summary(self, summary: dict) -> None:
        """Store the last financial summary returned by the backend."""
        await self._storage.set_item(CACHED_SUMMARY_KEY, json.dumps(summary, default=str))

    async def get_cached_summary(self) -> Optional[dict]:
        raw = await self._storage.get_item(CACHED_SUMMARY_KEY)
        if not raw:
            return None
        try:
            summary = json.loads(raw)
        except ValueError as e:
            logger.error("cached_summary_corrupt", error=str(e))
            return None
        return summary if isinstance(summary, dict) else None

    async def cache_preferences(self, preferences: SyncPreferences) -> None:
        await self._storage.set_item(CACHED_PREFERENCES_KEY, preferences.model_dump_json())

    async def get_cached_preferences(self) -> Optional[SyncPreferences]:
        raw = await self._storage.get_item(CACHED_PREFERENCES_KEY)
        if not raw:
            return None
        try:
            return SyncPreferences.model_validate_json(raw)
        except ValidationError as e:
            logger.error("cached_preferences_corrupt", error=str(e))
            return None

    # ------------------------------------------------------------------
    # Counters and timestamps
    # ------------------------------------------------------------------

    async def get_pending_count(self) -> int:
        if self._pending_store is None:
            return 0
        return await self._pending_store.count()

    async def _read_timestamp(self, key: str) -> Optional[datetime]:
        raw = await self._storage.get_item(key)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.error("stored_timestamp_corrupt", key=key, value=raw[:40])
            return None

    async def _advance_timestamp(self, key: str, candidate: datetime) -> datetime:
        previous = await self._read_timestamp(key)
        value = candidate if previous is None or candidate >= previous else previous
        await self._storage.set_item(key, value.isoformat())
        return value

    async def get_last_sync_time(self) -> Optional[datetime]:
        return await self._read_timestamp(LAST_SYNC_TIME_KEY)

    async def update_last_sync_time(self) -> datetime:
        """Set last_sync_time to now (never moving it backwards)."""
        return await self._advance_timestamp(LAST_SYNC_TIME_KEY, self._clock())

    async def get_backup_time(self) -> Optional[datetime]:
        return await self._read_timestamp(LAST_BACKUP_TIME_KEY)

    async def record_backup_time(self, created_at: datetime) -> datetime:
        """Record the creation time of the newest backup artifact."""
        return await self._advance_timestamp(LAST_BACKUP_TIME_KEY, created_at)

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear_all_cache(self) -> None:
        """Drop every cached collection, summary and preferences."""
        await self._storage.multi_remove(COLLECTION_KEYS)

    async def clear_timestamps(self) -> None:
        await self._storage.multi_remove([LAST_SYNC_TIME_KEY, LAST_BACKUP_TIME_KEY])
