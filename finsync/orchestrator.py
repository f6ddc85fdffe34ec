"""
Sync Coordinator for finsync

This module ties together all the sync components and defines the
end-to-end flows for:
1. Sync pass (snapshot queue → drain in order → refresh caches → stamp time)
2. Recording a transaction (submit now, or queue for the next pass)
3. Backup (fetch everything → write one artifact)

DESIGN DECISION: The coordinator enforces the boundaries:
- At most one sync pass runs at a time (the in-progress flag is set
  before the first await of a pass)
- Pending operations are replayed strictly in creation order
- Cache collections are only ever fully replaced
- It is the only writer of SyncStatus

Triggers from the UI and from the connectivity monitor funnel into a
single debounced scheduler, so near-simultaneous triggers produce one
pass, not two.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import UUID

import structlog

from finsync.audit import SyncAuditLogger, create_correlation_id
from finsync.config import Settings, SyncSettings, get_settings
from finsync.models.records import Transaction, TransactionType
from finsync.models.sync import (
    BackupArtifact,
    DroppedOperation,
    PendingSummary,
    PendingTransaction,
    SyncPreferences,
    SyncResult,
    SyncState,
    SyncStatus,
)
from finsync.services.connectivity import ConnectivityMonitor, HttpReachabilityProbe
from finsync.services.remote import HttpClient, RemoteAPI, RemoteAPIError, RestRemoteAPI
from finsync.services.storage import FileKeyValueStorage, KeyValueStorage, StorageError
from finsync.sync import (
    BackupFailedError,
    BackupService,
    DataCache,
    NetworkUnavailableError,
    PendingOperationStore,
    RefreshFailedError,
    RemoteOperationFailedError,
    SyncError,
)


logger = structlog.get_logger(__name__)

StatusListener = Callable[[SyncStatus], None]

# Outcomes of replaying a single pending operation
_SYNCED = "synced"
_RETRY = "retry"
_DROPPED = "dropped"

_COLLECTIONS = ("transactions", "categories", "alerts", "reminders")


class SyncCoordinator:
    """
    Orchestrates draining the pending queue and refreshing the cache.

    States (see SyncState):
        IDLE     online, no pass running
        SYNCING  a pass is running
        OFFLINE  disconnected, or offline mode is on

    A pass in flight is never preempted: losing connectivity mid-pass
    lets the pass finish or fail before the state settles to OFFLINE.

    Usage:
        coordinator = create_sync_components()
        unsubscribe = coordinator.add_sync_status_listener(render)
        await coordinator.start()
        await coordinator.handle_manual_sync()
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        pending_store: PendingOperationStore,
        cache: DataCache,
        remote: RemoteAPI,
        backup_service: Optional[BackupService] = None,
        audit_logger: Optional[SyncAuditLogger] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self._monitor = monitor
        self._pending_store = pending_store
        self._cache = cache
        self._remote = remote
        self._backup = backup_service
        self._audit = audit_logger or SyncAuditLogger()
        self._settings = settings or get_settings().sync

        self._preferences = SyncPreferences(auto_sync=self._settings.auto_sync_default)
        self._is_syncing = False
        self._status = SyncStatus(is_online=monitor.get_is_online())
        self._status_listeners: list[StatusListener] = []

        self._debounce_task: Optional[asyncio.Task] = None
        self._auto_sync_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe_connectivity: Optional[Callable[[], None]] = (
            monitor.add_connectivity_listener(self._on_connectivity_change)
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    def get_status(self) -> SyncStatus:
        """Current status value (never mutated; replaced on every change)."""
        return self._status

    @property
    def state(self) -> SyncState:
        return self._status.state

    @property
    def preferences(self) -> SyncPreferences:
        return self._preferences

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def is_effectively_offline(self) -> bool:
        return not self._monitor.get_is_online() or self._preferences.offline_mode

    def add_sync_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """
        Subscribe to status changes.

        The listener receives the current status immediately, then every
        new value. Returns a callable that removes the listener.
        """
        self._status_listeners.append(listener)
        self._notify(listener, self._status)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def _notify(self, listener: StatusListener, status: SyncStatus) -> None:
        try:
            listener(status)
        except Exception:
            logger.exception("sync_status_listener_failed")

    def _publish(self, **changes) -> SyncStatus:
        changes.setdefault("is_online", not self.is_effectively_offline)
        changes.setdefault("is_syncing", self._is_syncing)
        self._status = self._status.model_copy(update=changes)
        for listener in list(self._status_listeners):
            self._notify(listener, self._status)
        return self._status

    async def refresh_status(self, **changes) -> SyncStatus:
        """Re-read counters and timestamps from the stores and publish."""
        changes.setdefault("pending_count", await self._pending_store.count())
        changes.setdefault("dropped_count", await self._pending_store.dropped_count())
        changes.setdefault("last_sync_time", await self._cache.get_last_sync_time())
        return self._publish(**changes)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_manual_sync(self) -> SyncResult:
        """
        Run a sync pass now, at the user's request.

        Returns the pass result; a request made while another pass is
        running returns a skipped result without starting a second pass.

        Raises:
            NetworkUnavailableError: If the device is offline or offline
                mode is on. The pending queue is left untouched.
        """
        await self._monitor.check_network_status()
        if self.is_effectively_offline:
            error = NetworkUnavailableError()
            pending_count = await self._pending_store.count()
            self._audit.log_sync_refused_offline(pending_count)
            await self.refresh_status(last_error=str(error))
            raise error
        return await self._run_pass(trigger="manual")

    async def on_manual_sync_requested(self) -> SyncResult:
        return await self.handle_manual_sync()

    def on_connectivity_restored(self) -> None:
        """Publish the new state and schedule a debounced auto-sync."""
        self._publish()
        self._schedule_auto_sync("connectivity_restored")

    def on_connectivity_lost(self) -> None:
        """
        Publish the offline state.

        A pass already running is left to finish; only a debounced
        trigger that has not fired yet is cancelled.
        """
        self._cancel_debounce()
        self._publish()

    async def on_app_foreground(self) -> None:
        """Re-probe connectivity, refresh the status and maybe auto-sync."""
        await self._monitor.check_network_status()
        await self.refresh_status()
        self._schedule_auto_sync("app_foreground")

    async def toggle_auto_sync(self, enabled: bool) -> None:
        """Turn auto-sync on or off. Turning it on may schedule a pass."""
        self._preferences = self._preferences.model_copy(update={"auto_sync": enabled})
        await self._cache.cache_preferences(self._preferences)
        self._audit.log_preferences_changed("auto_sync", enabled)
        if enabled:
            self._schedule_auto_sync("auto_sync_enabled")
        else:
            self._cancel_debounce()

    async def toggle_offline_mode(self, enabled: bool) -> None:
        """
        Turn offline mode on or off.

        While on, the coordinator behaves as if disconnected. Turning it
        off while online may schedule a pass.
        """
        self._preferences = self._preferences.model_copy(update={"offline_mode": enabled})
        await self._cache.cache_preferences(self._preferences)
        self._audit.log_preferences_changed("offline_mode", enabled)
        if enabled:
            self._cancel_debounce()
        await self.refresh_status()
        if not enabled:
            self._schedule_auto_sync("offline_mode_disabled")

    async def toggle_auto_backup(self, enabled: bool) -> None:
        self._preferences = self._preferences.model_copy(update={"auto_backup": enabled})
        await self._cache.cache_preferences(self._preferences)
        self._audit.log_preferences_changed("auto_backup", enabled)

    async def load_preferences(self) -> SyncPreferences:
        """Restore preferences persisted by a previous session."""
        cached = await self._cache.get_cached_preferences()
        if cached is not None:
            self._preferences = cached
        return self._preferences

    def _on_connectivity_change(self, online: bool) -> None:
        self._audit.log_connectivity_changed(online)
        if online:
            self.on_connectivity_restored()
        else:
            self.on_connectivity_lost()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    def _schedule_auto_sync(self, trigger: str) -> None:
        """
        (Re)start the debounce timer for an auto-sync.

        Only one timer exists at a time: a new trigger replaces a timer
        that has not fired yet, so a burst of triggers runs one pass.
        """
        self._cancel_debounce()
        self._debounce_task = self._spawn(self._debounced_auto_sync(trigger))

    async def _debounced_auto_sync(self, trigger: str) -> None:
        await asyncio.sleep(self._settings.debounce_seconds)
        # Fired: from here on the pass must not be cancelled by a new trigger.
        if self._debounce_task is asyncio.current_task():
            self._debounce_task = None
        try:
            await self._maybe_auto_sync(trigger)
        except Exception:
            logger.exception("auto_sync_failed", trigger=trigger)

    async def _maybe_auto_sync(self, trigger: str) -> Optional[SyncResult]:
        if self.is_effectively_offline or not self._preferences.auto_sync:
            return None
        if self._is_syncing:
            self._audit.log_sync_skipped(trigger)
            return None
        if await self._pending_store.count() == 0:
            return None
        return await self._run_pass(trigger)

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.auto_sync_interval_seconds)
            self._spawn(self._run_periodic_auto_sync())

    async def _run_periodic_auto_sync(self) -> None:
        try:
            await self._maybe_auto_sync("interval")
        except Exception:
            logger.exception("auto_sync_failed", trigger="interval")

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------

    async def _run_pass(self, trigger: str) -> SyncResult:
        """
        Drain the queue, refresh the cache and stamp the sync time.

        Any failure after the drain starts ends the pass early without
        rolling back what already succeeded; it is reported once through
        SyncStatus.last_error and the returned result.
        """
        if self._is_syncing:
            self._audit.log_sync_skipped(trigger)
            return SyncResult.skipped_result()

        self._is_syncing = True
        correlation_id = create_correlation_id()
        result = SyncResult(success=True)
        last_error: Optional[str] = None
        self._publish(last_error=None)

        try:
            await self._drain_and_refresh(trigger, result, correlation_id)
        except Exception as e:
            last_error = f"Sync failed: {e}"
            result.success = False
            result.errors.append(str(e))
            self._audit.log_sync_failed(str(e), correlation_id)
            if not isinstance(e, (SyncError, RemoteAPIError)):
                self._audit.log_error(
                    type(e).__name__, str(e), {"trigger": trigger}, correlation_id,
                )
        finally:
            self._is_syncing = False

        if result.success:
            self._audit.log_sync_completed(
                result.synced_count,
                result.failed_count,
                result.dropped_count,
                correlation_id,
            )
        await self._publish_after_pass(last_error)

        if result.success:
            await self._maybe_auto_backup()
        return result

    async def _publish_after_pass(self, last_error: Optional[str]) -> None:
        try:
            await self.refresh_status(last_error=last_error)
        except Exception:
            logger.exception("sync_status_refresh_failed")
            self._publish(last_error=last_error)

    async def _drain_and_refresh(
        self,
        trigger: str,
        result: SyncResult,
        correlation_id: UUID,
    ) -> None:
        # Snapshot: operations enqueued from here on wait for the next pass.
        operations = await self._pending_store.list()
        self._audit.log_sync_started(len(operations), trigger, correlation_id)

        for operation in operations:
            outcome = await self._replay(operation, correlation_id, result)
            if outcome == _SYNCED:
                result.synced_count += 1
            elif outcome == _RETRY:
                result.failed_count += 1
            else:
                result.dropped_count += 1
            self._publish(pending_count=await self._pending_store.count())

        await self._refresh_cache(correlation_id)
        await self._cache.update_last_sync_time()

    async def _replay(
        self,
        operation: PendingTransaction,
        correlation_id: UUID,
        result: SyncResult,
    ) -> str:
        try:
            created = await self._remote.transactions.create(operation.to_create_payload())
        except Exception as e:
            failure = RemoteOperationFailedError(operation.local_id, str(e))
            result.errors.append(str(failure))
            return await self._record_failure(operation, str(e), correlation_id)

        await self._pending_store.remove(operation.local_id)
        self._audit.log_operation_synced(operation.local_id, created.id, correlation_id)
        return _SYNCED

    async def _record_failure(
        self,
        operation: PendingTransaction,
        error_message: str,
        correlation_id: UUID,
    ) -> str:
        if self._pending_store.should_retry(operation):
            retry_count = operation.retry_count + 1
            await self._pending_store.update_retry_count(
                operation.local_id, retry_count, last_error=error_message,
            )
            self._audit.log_operation_retry_scheduled(
                operation.local_id, retry_count, error_message, correlation_id,
            )
            return _RETRY

        await self._pending_store.drop(operation.local_id, reason=error_message)
        self._audit.log_operation_dropped(
            operation.local_id, operation.retry_count, error_message, correlation_id,
        )
        return _DROPPED

    async def _refresh_cache(self, correlation_id: UUID) -> None:
        """
        Re-fetch all four collections concurrently and fully replace each.

        Collections that failed keep their previous snapshot; if any
        failed the pass ends here, before the sync time is stamped.
        """
        results = await asyncio.gather(
            self._remote.transactions.list(limit=self._settings.refresh_page_size),
            self._remote.categories.list(),
            self._remote.alerts.list(),
            self._remote.reminders.list(),
            return_exceptions=True,
        )
        writers = {
            "transactions": self._cache.cache_transactions,
            "categories": self._cache.cache_categories,
            "alerts": self._cache.cache_alerts,
            "reminders": self._cache.cache_reminders,
        }

        failures: list[tuple[str, BaseException]] = []
        for name, fetched in zip(_COLLECTIONS, results):
            if isinstance(fetched, BaseException):
                if not isinstance(fetched, Exception):
                    raise fetched
                failures.append((name, fetched))
                continue
            await writers[name](fetched)

        if failures:
            collections = [name for name, _ in failures]
            message = "; ".join(f"{name}: {error}" for name, error in failures)
            self._audit.log_refresh_failed(collections, message, correlation_id)
            raise RefreshFailedError(collections, failures[0][1])

    # ------------------------------------------------------------------
    # Recording transactions
    # ------------------------------------------------------------------

    async def record_transaction(
        self,
        type: TransactionType,
        amount: Union[Decimal, int, float, str],
        category_id: str,
        description: Optional[str] = None,
    ) -> Transaction:
        """
        Record a new transaction.

        Submitted straight to the backend when online and no pass is
        running; otherwise (or when the submit fails) it is queued and
        replayed by a later pass.

        Returns:
            The backend's transaction, or the queued one rendered as a
            Transaction with user_id "pending"
        """
        operation = PendingTransaction(
            type=type,
            amount=Decimal(str(amount)),
            category_id=category_id,
            description=description,
        )

        if not self.is_effectively_offline and not self._is_syncing:
            try:
                return await self._remote.transactions.create(operation.to_create_payload())
            except Exception as e:
                logger.warning(
                    "direct_submit_failed",
                    local_id=operation.local_id,
                    error=str(e),
                )

        await self._pending_store.enqueue(operation)
        self._audit.log_operation_queued(operation.local_id, str(operation.amount))
        await self.refresh_status()
        return operation.to_display_transaction()

    async def get_transactions_including_pending(self) -> list[Transaction]:
        """Cached server transactions followed by queued ones, in queue order."""
        cached = await self._cache.get_cached_transactions()
        categories = {c.id: c for c in await self._cache.get_cached_categories()}
        pending = await self._pending_store.list()
        return cached + [
            op.to_display_transaction(categories.get(op.category_id)) for op in pending
        ]

    async def get_pending_summary(self) -> PendingSummary:
        income = Decimal("0")
        expense = Decimal("0")
        for op in await self._pending_store.list():
            if op.type == TransactionType.INCOME:
                income += op.amount
            else:
                expense += op.amount
        return PendingSummary(income=income, expense=expense)

    async def list_dropped(self) -> list[DroppedOperation]:
        return await self._pending_store.list_dropped()

    async def clear_dropped(self) -> None:
        await self._pending_store.clear_dropped()
        await self.refresh_status()

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def run_backup(self) -> BackupArtifact:
        """
        Fetch full datasets (backup page size) and write a new artifact.

        Raises:
            NetworkUnavailableError: If effectively offline
            BackupFailedError: If fetching or writing failed
        """
        if self._backup is None:
            raise BackupFailedError("Backup service is not configured")
        if self.is_effectively_offline:
            raise NetworkUnavailableError("No network connection. Backup is unavailable while offline.")
        return await self._backup.run_full_backup(self._settings.backup_page_size)

    async def _maybe_auto_backup(self) -> None:
        if not self._preferences.auto_backup or self._backup is None:
            return
        interval = timedelta(hours=self._settings.auto_backup_interval_hours)
        try:
            last_backup = await self._backup.get_backup_time()
            if last_backup is not None and self._cache.now() - last_backup < interval:
                return
            await self.run_backup()
        except (BackupFailedError, NetworkUnavailableError, StorageError) as e:
            logger.warning("auto_backup_failed", error=str(e))
        except Exception as e:
            logger.exception("auto_backup_failed", error=str(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load preferences, start connectivity polling and the auto-sync loop."""
        if self._unsubscribe_connectivity is None:
            self._unsubscribe_connectivity = self._monitor.add_connectivity_listener(
                self._on_connectivity_change
            )
        await self.load_preferences()
        await self._monitor.start()
        await self.refresh_status()
        if self._auto_sync_task is None:
            self._auto_sync_task = asyncio.create_task(self._auto_sync_loop())
        self._schedule_auto_sync("startup")

    async def stop(self) -> None:
        """
        Stop background work.

        Timers that have not fired are cancelled; a pass already running
        is awaited, never interrupted.
        """
        if self._auto_sync_task is not None:
            self._auto_sync_task.cancel()
            try:
                await self._auto_sync_task
            except asyncio.CancelledError:
                pass
            self._auto_sync_task = None
        self._cancel_debounce()
        await self._monitor.stop()
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        await self.join()

    async def join(self) -> None:
        """Wait until every scheduled or running background pass is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def clear_all(self) -> None:
        """
        Forget all local data (logout).

        Empties the pending queue, the dead-letter list, every cached
        collection, the timestamps and the backup.
        """
        if self._is_syncing:
            raise SyncError("Cannot clear local data while a sync is in progress")
        self._cancel_debounce()
        await self._pending_store.clear()
        await self._pending_store.clear_dropped()
        await self._cache.clear_all_cache()
        await self._cache.clear_timestamps()
        if self._backup is not None:
            await self._backup.clear()
        self._preferences = SyncPreferences(auto_sync=self._settings.auto_sync_default)
        await self.refresh_status(last_error=None)


def create_sync_components(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    remote: Optional[RemoteAPI] = None,
) -> SyncCoordinator:
    """
    Factory function to create all sync components.

    Args:
        settings: Root settings (defaults to get_settings())
        storage: Key-value storage (defaults to the file store under data_dir)
        remote: Backend client (defaults to the REST client)

    Returns:
        A coordinator wired to its monitor, stores and backup service
    """
    settings = settings or get_settings()
    api_settings = settings.api
    connectivity_settings = settings.connectivity
    sync_settings = settings.sync

    if storage is None:
        storage = FileKeyValueStorage(settings.storage.data_dir)
    if remote is None:
        remote = RestRemoteAPI(HttpClient(api_settings))

    audit_logger = SyncAuditLogger()
    probe = HttpReachabilityProbe(
        connectivity_settings.probe_url or f"{api_settings.base_url}/health",
        connectivity_settings.probe_timeout_seconds,
    )
    monitor = ConnectivityMonitor(probe=probe, settings=connectivity_settings)
    pending_store = PendingOperationStore(storage, max_retries=sync_settings.max_retries)
    cache = DataCache(storage, pending_store)
    backup_service = BackupService(storage, cache, remote, audit_logger)

    return SyncCoordinator(
        monitor=monitor,
        pending_store=pending_store,
        cache=cache,
        remote=remote,
        backup_service=backup_service,
        audit_logger=audit_logger,
        settings=sync_settings,
    )
