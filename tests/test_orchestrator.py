"""
Tests for the sync coordinator

Integration tests over in-memory storage and a fake backend. Auto-sync
tests run with a 10ms debounce and wait for background passes with
coordinator.join().
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeRemoteAPI, make_category, make_pending, make_transaction
from finsync.audit import SyncAuditLogger
from finsync.config import Settings
from finsync.models.records import TransactionType
from finsync.models.sync import SyncPreferences, SyncState
from finsync.orchestrator import SyncCoordinator, create_sync_components
from finsync.services.remote import RemoteAPIError
from finsync.services.storage import InMemoryKeyValueStorage
from finsync.sync import NetworkUnavailableError


async def enqueue_all(pending_store, *descriptions):
    ops = [make_pending(d) for d in descriptions]
    for op in ops:
        await pending_store.enqueue(op)
    return ops


def pass_count(remote: FakeRemoteAPI) -> int:
    """Every pass that reaches the refresh step lists transactions once."""
    return len(remote.transactions.list_limits)


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


class TestManualSync:
    """Tests for the drain-and-refresh pass."""

    @pytest.mark.asyncio
    async def test_second_of_three_fails(self, coordinator, pending_store, remote):
        """Test that only the failing operation stays queued, with one more retry."""
        first, second, third = await enqueue_all(pending_store, "first", "second", "third")
        remote.transactions.fail_descriptions = {"second"}

        result = await coordinator.handle_manual_sync()

        remaining = await pending_store.list()
        assert [op.local_id for op in remaining] == [second.local_id]
        assert remaining[0].retry_count == 1
        assert remaining[0].last_error is not None
        assert [p["description"] for p in remote.transactions.create_payloads] == [
            "first", "second", "third",
        ]
        assert result.success is True
        assert result.synced_count == 2
        assert result.failed_count == 1
        assert coordinator.status.pending_count == 1

    @pytest.mark.asyncio
    async def test_drain_follows_creation_order(self, coordinator, pending_store, remote):
        """Test that operations reach the backend in the order they were created."""
        descriptions = [f"op-{i}" for i in range(8)]
        await enqueue_all(pending_store, *descriptions)

        await coordinator.handle_manual_sync()

        assert [p["description"] for p in remote.transactions.create_payloads] == descriptions
        assert [t.description for t in remote.transactions.server] == descriptions

    @pytest.mark.asyncio
    async def test_sync_refreshes_cache_by_full_replace(self, coordinator, cache, remote):
        """Test that stale cached records are replaced by the server snapshot."""
        await cache.cache_transactions([make_transaction("stale-1"), make_transaction("stale-2")])
        remote.seed()

        await coordinator.handle_manual_sync()

        assert [t.id for t in await cache.get_cached_transactions()] == ["srv-seed"]
        assert [c.id for c in await cache.get_cached_categories()] == ["cat-food"]
        assert [a.id for a in await cache.get_cached_alerts()] == ["alert-1"]
        assert [r.id for r in await cache.get_cached_reminders()] == ["rem-1"]
        assert remote.transactions.list_limits == [50]

    @pytest.mark.asyncio
    async def test_sync_updates_last_sync_time(self, coordinator, cache):
        """Test that a completed pass stamps and publishes the sync time."""
        await coordinator.handle_manual_sync()

        last_sync = await cache.get_last_sync_time()
        assert last_sync is not None
        assert coordinator.status.last_sync_time == last_sync
        assert coordinator.status.last_error is None

    @pytest.mark.asyncio
    async def test_snapshot_excludes_later_operations(self, coordinator, pending_store, remote):
        """Test that an operation recorded mid-pass waits for the next pass."""
        await enqueue_all(pending_store, "early")
        remote.transactions.create_delay = 0.05

        sync_task = asyncio.create_task(coordinator.handle_manual_sync())
        await wait_until(lambda: remote.transactions.create_payloads)
        late = await coordinator.record_transaction(
            TransactionType.EXPENSE, "4.50", "cat-food", description="late",
        )
        await sync_task

        assert [p["description"] for p in remote.transactions.create_payloads] == ["early"]
        remaining = await pending_store.list()
        assert [op.local_id for op in remaining] == [late.id]
        assert remaining[0].retry_count == 0


class TestOfflineBehaviour:
    """Tests for refusing to sync while offline."""

    @pytest.mark.asyncio
    async def test_manual_sync_offline_raises(self, coordinator, pending_store, probe, remote):
        """Test that an offline manual sync surfaces an error and keeps the queue."""
        await enqueue_all(pending_store, "a", "b")
        probe.online = False

        with pytest.raises(NetworkUnavailableError):
            await coordinator.handle_manual_sync()

        assert await pending_store.count() == 2
        assert remote.transactions.create_payloads == []
        assert coordinator.status.pending_count == 2
        assert coordinator.status.is_syncing is False
        assert coordinator.status.last_error is not None
        assert coordinator.state == SyncState.OFFLINE

    @pytest.mark.asyncio
    async def test_offline_mode_refuses_sync(self, coordinator, pending_store, remote):
        """Test that offline mode behaves like being disconnected."""
        await enqueue_all(pending_store, "a")
        await coordinator.toggle_offline_mode(True)

        with pytest.raises(NetworkUnavailableError):
            await coordinator.on_manual_sync_requested()

        assert await pending_store.count() == 1
        assert coordinator.status.is_online is False

    @pytest.mark.asyncio
    async def test_connectivity_loss_does_not_preempt_pass(
        self, coordinator, pending_store, monitor, remote,
    ):
        """Test that a pass in flight finishes before the state settles to offline."""
        await enqueue_all(pending_store, "a", "b")
        remote.transactions.create_delay = 0.02

        sync_task = asyncio.create_task(coordinator.handle_manual_sync())
        await wait_until(lambda: remote.transactions.create_payloads)
        monitor.set_online(False)
        assert coordinator.state == SyncState.SYNCING

        result = await sync_task

        assert result.success is True
        assert result.synced_count == 2
        assert coordinator.state == SyncState.OFFLINE


class TestRetryExhaustion:
    """Tests for dropping operations that keep failing."""

    @pytest.mark.asyncio
    async def test_operation_at_max_retries_is_dropped(self, coordinator, pending_store, remote):
        """Test that a failing operation at max retries is removed, not retried."""
        op = make_pending("doomed", retry_count=3)
        await pending_store.enqueue(op)
        remote.transactions.fail_descriptions = {"doomed"}

        result = await coordinator.handle_manual_sync()

        assert await pending_store.count() == 0
        assert result.dropped_count == 1
        dropped = await coordinator.list_dropped()
        assert [d.operation.local_id for d in dropped] == [op.local_id]
        assert coordinator.status.dropped_count == 1

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, coordinator, pending_store, remote):
        """Test that a permanently failing operation is attempted max_retries + 1 times."""
        await enqueue_all(pending_store, "doomed")
        remote.transactions.fail_descriptions = {"doomed"}

        for _ in range(6):
            await coordinator.handle_manual_sync()

        assert len(remote.transactions.create_payloads) == 4
        assert await pending_store.count() == 0
        assert len(await coordinator.list_dropped()) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_count_as_retries(self, coordinator, pending_store, remote):
        """Test that non-API errors are retried per operation and then dropped."""
        await enqueue_all(pending_store, "a", "b")
        remote.transactions.create_error = ConnectionError("connection reset")

        for expected in (1, 2, 3):
            result = await coordinator.handle_manual_sync()
            assert result.failed_count == 2
            assert [op.retry_count for op in await pending_store.list()] == [expected, expected]
            assert [op.last_error for op in await pending_store.list()] == ["connection reset"] * 2

        result = await coordinator.handle_manual_sync()

        assert result.dropped_count == 2
        assert await pending_store.count() == 0
        assert len(await coordinator.list_dropped()) == 2
        assert len(remote.transactions.create_payloads) == 8

    @pytest.mark.asyncio
    async def test_clear_dropped(self, coordinator, pending_store, remote):
        """Test acknowledging the dead-letter list."""
        await pending_store.enqueue(make_pending("doomed", retry_count=3))
        remote.transactions.fail_descriptions = {"doomed"}
        await coordinator.handle_manual_sync()

        await coordinator.clear_dropped()

        assert await coordinator.list_dropped() == []
        assert coordinator.status.dropped_count == 0


class TestPassFailures:
    """Tests for pass-level failures."""

    @pytest.mark.asyncio
    async def test_refresh_failure(self, coordinator, pending_store, cache, remote):
        """Test that a failed refresh ends the pass without undoing the drain."""
        await enqueue_all(pending_store, "a")
        await cache.cache_alerts([])
        remote.seed()
        remote.alerts.error = RemoteAPIError("GET /alerts returned 502", status_code=502)

        result = await coordinator.handle_manual_sync()

        assert result.success is False
        assert await pending_store.count() == 0
        assert await cache.get_last_sync_time() is None
        assert "alerts" in coordinator.status.last_error
        assert coordinator.status.is_syncing is False
        assert [t.id for t in await cache.get_cached_transactions()] == ["srv-seed", "srv-2"]

    @pytest.mark.asyncio
    async def test_failed_pass_then_recovers(self, coordinator, remote):
        """Test that the next successful pass clears the error."""
        remote.categories.error = RemoteAPIError("down")
        await coordinator.handle_manual_sync()
        assert coordinator.status.last_error is not None

        remote.categories.error = None
        result = await coordinator.handle_manual_sync()

        assert result.success is True
        assert coordinator.status.last_error is None

    @pytest.mark.asyncio
    async def test_concurrent_manual_syncs_submit_once(self, coordinator, pending_store, remote):
        """Test that a second request during a pass does not double-submit."""
        await enqueue_all(pending_store, "a", "b")
        remote.transactions.create_delay = 0.02

        results = await asyncio.gather(
            coordinator.handle_manual_sync(),
            coordinator.handle_manual_sync(),
        )

        assert sorted(r.skipped for r in results) == [False, True]
        assert [p["description"] for p in remote.transactions.create_payloads] == ["a", "b"]
        assert len(remote.transactions.server) == 2


class TestAutoSync:
    """Tests for automatically triggered passes."""

    @pytest.mark.asyncio
    async def test_enable_auto_sync_triggers_one_pass(self, coordinator, pending_store, remote):
        """Test that turning auto-sync on with pending work runs exactly one pass."""
        await coordinator.toggle_auto_sync(False)
        await enqueue_all(pending_store, "a")

        await coordinator.toggle_auto_sync(True)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert pass_count(remote) == 1
        assert await pending_store.count() == 0

    @pytest.mark.asyncio
    async def test_toggle_and_reconnect_run_one_pass(
        self, coordinator, pending_store, monitor, remote,
    ):
        """Test that near-simultaneous toggle and reconnect triggers run one pass."""
        await coordinator.toggle_auto_sync(False)
        monitor.set_online(False)
        await enqueue_all(pending_store, "a", "b")

        monitor.set_online(True)
        await coordinator.toggle_auto_sync(True)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert pass_count(remote) == 1
        assert len(remote.transactions.create_payloads) == 2

    @pytest.mark.asyncio
    async def test_reconnect_runs_auto_sync(self, coordinator, pending_store, monitor, remote):
        """Test that regaining connectivity drains the queue."""
        monitor.set_online(False)
        await enqueue_all(pending_store, "a")

        monitor.set_online(True)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert await pending_store.count() == 0
        assert coordinator.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_flapping_connection_runs_one_pass(
        self, coordinator, pending_store, monitor, remote,
    ):
        """Test that a burst of transitions is debounced into one pass."""
        await enqueue_all(pending_store, "a")
        for _ in range(5):
            monitor.set_online(False)
            monitor.set_online(True)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert pass_count(remote) == 1

    @pytest.mark.asyncio
    async def test_no_pass_when_auto_sync_disabled(
        self, coordinator, pending_store, monitor, remote,
    ):
        """Test that reconnecting does nothing while auto-sync is off."""
        await coordinator.toggle_auto_sync(False)
        monitor.set_online(False)
        await enqueue_all(pending_store, "a")

        monitor.set_online(True)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert pass_count(remote) == 0
        assert await pending_store.count() == 1

    @pytest.mark.asyncio
    async def test_no_pass_without_pending_work(self, coordinator, remote):
        """Test that auto-sync does not run with an empty queue."""
        await coordinator.toggle_auto_sync(True)
        await asyncio.sleep(0.05)
        await coordinator.join()
        assert pass_count(remote) == 0

    @pytest.mark.asyncio
    async def test_disabling_offline_mode_syncs(self, coordinator, pending_store, remote):
        """Test that leaving offline mode drains work queued meanwhile."""
        await coordinator.toggle_offline_mode(True)
        queued = await coordinator.record_transaction(TransactionType.EXPENSE, 12, "cat-food")
        assert queued.user_id == "pending"

        await coordinator.toggle_offline_mode(False)
        await asyncio.sleep(0.05)
        await coordinator.join()

        assert await pending_store.count() == 0
        assert pass_count(remote) == 1

    @pytest.mark.asyncio
    async def test_app_foreground_syncs(self, coordinator, pending_store, remote):
        """Test that returning to the app drains pending work."""
        await enqueue_all(pending_store, "a")
        await coordinator.on_app_foreground()
        await asyncio.sleep(0.05)
        await coordinator.join()
        assert await pending_store.count() == 0

    @pytest.mark.asyncio
    async def test_periodic_auto_sync(self, coordinator, pending_store, sync_settings, remote):
        """Test that the background loop picks up work queued after startup."""
        sync_settings.auto_sync_interval_seconds = 0.02
        await coordinator.start()
        await asyncio.sleep(0.03)

        await enqueue_all(pending_store, "later")
        await wait_until(lambda: remote.transactions.create_payloads)
        await coordinator.stop()

        assert await pending_store.count() == 0


class TestRecordTransaction:
    """Tests for recording new transactions."""

    @pytest.mark.asyncio
    async def test_online_submits_directly(self, coordinator, pending_store, remote):
        """Test that an online record goes straight to the backend."""
        tx = await coordinator.record_transaction(
            TransactionType.INCOME, Decimal("250.00"), "cat-salary", description="Bonus",
        )
        assert tx.id == "srv-1"
        assert await pending_store.count() == 0

    @pytest.mark.asyncio
    async def test_offline_queues(self, coordinator, pending_store, monitor, remote):
        """Test that an offline record is queued and shown as pending."""
        monitor.set_online(False)
        tx = await coordinator.record_transaction(TransactionType.EXPENSE, "9.99", "cat-food")

        assert tx.user_id == "pending"
        assert tx.amount == Decimal("9.99")
        assert remote.transactions.create_payloads == []
        assert coordinator.status.pending_count == 1

    @pytest.mark.asyncio
    async def test_failed_submit_queues(self, coordinator, pending_store, remote):
        """Test that a rejected direct submit falls back to the queue."""
        remote.transactions.create_error = RemoteAPIError("POST /transactions returned 503", 503)
        await coordinator.record_transaction(TransactionType.EXPENSE, "3", "cat-food")
        assert await pending_store.count() == 1

    @pytest.mark.asyncio
    async def test_dropped_connection_queues(self, coordinator, pending_store, remote):
        """Test that a connection error on direct submit falls back to the queue."""
        remote.transactions.create_error = ConnectionError("connection reset")
        tx = await coordinator.record_transaction(TransactionType.EXPENSE, "3", "cat-food")
        assert tx.user_id == "pending"
        assert await pending_store.count() == 1

    @pytest.mark.asyncio
    async def test_transactions_including_pending(self, coordinator, cache, pending_store, monitor):
        """Test the combined view of cached and queued transactions."""
        await cache.cache_transactions([make_transaction("srv-1")])
        await cache.cache_categories([make_category("cat-food", name="Groceries")])
        monitor.set_online(False)
        await coordinator.record_transaction(TransactionType.EXPENSE, "5", "cat-food")
        await coordinator.record_transaction(TransactionType.EXPENSE, "6", "cat-unknown")

        combined = await coordinator.get_transactions_including_pending()

        assert combined[0].id == "srv-1"
        assert [t.user_id for t in combined[1:]] == ["pending", "pending"]
        assert combined[1].category.name == "Groceries"
        assert combined[2].category.name == "Pending"
        assert [t.id for t in await cache.get_cached_transactions()] == ["srv-1"]

    @pytest.mark.asyncio
    async def test_pending_summary(self, coordinator, monitor):
        """Test income and expense totals of queued transactions."""
        monitor.set_online(False)
        await coordinator.record_transaction(TransactionType.INCOME, "100", "cat-salary")
        await coordinator.record_transaction(TransactionType.EXPENSE, "30.50", "cat-food")
        await coordinator.record_transaction(TransactionType.EXPENSE, "9.50", "cat-food")

        summary = await coordinator.get_pending_summary()

        assert summary.income == Decimal("100")
        assert summary.expense == Decimal("40.00")


class TestStatusSubscription:
    """Tests for status publishing."""

    @pytest.mark.asyncio
    async def test_listener_gets_current_status_immediately(self, coordinator):
        """Test that a new subscriber receives the current value at once."""
        seen = []
        coordinator.add_sync_status_listener(seen.append)
        assert seen == [coordinator.status]

    @pytest.mark.asyncio
    async def test_listener_sees_syncing_then_idle(self, coordinator, pending_store):
        """Test that a pass publishes syncing and then settled states."""
        await enqueue_all(pending_store, "a")
        seen = []
        coordinator.add_sync_status_listener(seen.append)

        await coordinator.handle_manual_sync()

        assert any(status.is_syncing for status in seen)
        assert seen[-1].is_syncing is False
        assert seen[-1].pending_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_and_failing_listener(self, coordinator):
        """Test that listeners can leave and that a raising listener is isolated."""
        seen = []

        def broken(status):
            raise RuntimeError("render failed")

        coordinator.add_sync_status_listener(broken)
        unsubscribe = coordinator.add_sync_status_listener(seen.append)
        unsubscribe()

        await coordinator.handle_manual_sync()

        assert len(seen) == 1


class TestBackupAndPreferences:
    """Tests for backups and persisted preferences."""

    @pytest.mark.asyncio
    async def test_run_backup_uses_backup_page_size(self, coordinator, remote, backup_service):
        """Test that a manual backup fetches the large page size."""
        remote.seed()
        artifact = await coordinator.run_backup()
        assert remote.transactions.list_limits == [1000]
        assert await backup_service.get_backup_time() == artifact.created_at

    @pytest.mark.asyncio
    async def test_run_backup_offline(self, coordinator, monitor):
        """Test that backups are refused while offline."""
        monitor.set_online(False)
        with pytest.raises(NetworkUnavailableError):
            await coordinator.run_backup()

    @pytest.mark.asyncio
    async def test_auto_backup_after_sync(self, coordinator, remote, backup_service):
        """Test that a pass creates a backup when auto-backup is on and none is recent."""
        await coordinator.toggle_auto_backup(True)
        await coordinator.handle_manual_sync()
        assert await backup_service.get_backup() is not None

        await coordinator.handle_manual_sync()
        # Second pass refreshes (page 50) but the fresh backup is not repeated
        assert remote.transactions.list_limits == [50, 1000, 50]

    @pytest.mark.asyncio
    async def test_auto_backup_error_does_not_fail_sync(
        self, coordinator, pending_store, remote, backup_service, monkeypatch,
    ):
        """Test that an unexpected auto-backup error leaves the finished sync successful."""
        await coordinator.toggle_auto_backup(True)
        monkeypatch.setattr(
            backup_service, "run_full_backup", AsyncMock(side_effect=RuntimeError("boom")),
        )
        await enqueue_all(pending_store, "a")

        result = await coordinator.handle_manual_sync()

        assert result.success
        assert result.synced_count == 1
        assert await backup_service.get_backup() is None
        assert coordinator.status.last_error is None

    @pytest.mark.asyncio
    async def test_preferences_survive_restart(
        self, coordinator, pending_store, cache, monitor, sync_settings,
    ):
        """Test that toggles are persisted and restored."""
        await coordinator.toggle_auto_sync(False)
        await coordinator.toggle_auto_backup(True)

        restarted = SyncCoordinator(
            monitor=monitor,
            pending_store=pending_store,
            cache=cache,
            remote=FakeRemoteAPI(),
            settings=sync_settings,
        )
        prefs = await restarted.load_preferences()

        assert prefs == SyncPreferences(auto_sync=False, offline_mode=False, auto_backup=True)

    @pytest.mark.asyncio
    async def test_preference_changes_are_audited(
        self, monitor, pending_store, cache, remote, sync_settings,
    ):
        """Test that preference toggles reach the audit trail."""
        audit = MagicMock(spec=SyncAuditLogger)
        coordinator = SyncCoordinator(
            monitor, pending_store, cache, remote, audit_logger=audit, settings=sync_settings,
        )
        await coordinator.toggle_auto_sync(False)
        audit.log_preferences_changed.assert_called_once_with("auto_sync", False)

    @pytest.mark.asyncio
    async def test_clear_all(self, coordinator, pending_store, cache, backup_service, monitor):
        """Test that logout wipes every piece of local state."""
        await coordinator.handle_manual_sync()
        await coordinator.run_backup()
        monitor.set_online(False)
        await coordinator.record_transaction(TransactionType.EXPENSE, "1", "cat-food")

        await coordinator.clear_all()

        assert await pending_store.count() == 0
        assert await cache.get_last_sync_time() is None
        assert await backup_service.get_backup() is None
        assert coordinator.status.pending_count == 0
        assert coordinator.status.last_sync_time is None


class TestFactory:
    """Tests for component wiring."""

    def test_create_sync_components(self):
        """Test that the factory wires a coordinator from settings."""
        coordinator = create_sync_components(
            settings=Settings(),
            storage=InMemoryKeyValueStorage(),
            remote=FakeRemoteAPI(),
        )
        assert isinstance(coordinator, SyncCoordinator)
        assert coordinator.is_syncing is False
        assert coordinator.preferences.offline_mode is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
