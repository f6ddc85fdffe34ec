"""
Shared fixtures for finsync tests.

Everything runs against in-memory storage and a scriptable fake backend;
no test touches the network.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from finsync.config import ConnectivitySettings, SyncSettings
from finsync.models.records import (
    Alert,
    Category,
    Reminder,
    Transaction,
    TransactionType,
)
from finsync.models.sync import PendingTransaction, utcnow
from finsync.orchestrator import SyncCoordinator
from finsync.services.connectivity import ConnectivityMonitor
from finsync.services.remote import (
    AlertsResource,
    CategoriesResource,
    RemindersResource,
    RemoteAPI,
    RemoteAPIError,
    TransactionsResource,
)
from finsync.services.storage import InMemoryKeyValueStorage
from finsync.sync import BackupService, DataCache, PendingOperationStore


# =============================================================================
# BUILDERS
# =============================================================================

def make_transaction(
    id: str,
    amount: str = "10.00",
    type: TransactionType = TransactionType.EXPENSE,
    category_id: str = "cat-food",
    description: Optional[str] = None,
) -> Transaction:
    return Transaction(
        id=id,
        type=type,
        amount=Decimal(amount),
        description=description,
        category_id=category_id,
        user_id="user-1",
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_category(id: str, name: str = "Food", type: TransactionType = TransactionType.EXPENSE) -> Category:
    return Category(id=id, name=name, type=type)


def make_pending(
    description: str,
    amount: str = "10.00",
    type: TransactionType = TransactionType.EXPENSE,
    category_id: str = "cat-food",
    retry_count: int = 0,
) -> PendingTransaction:
    return PendingTransaction(
        type=type,
        amount=Decimal(amount),
        category_id=category_id,
        description=description,
        retry_count=retry_count,
    )


# =============================================================================
# FAKE BACKEND
# =============================================================================

class FakeTransactions(TransactionsResource):
    """Transaction endpoints backed by a list; failures are scripted per description."""

    def __init__(self):
        self.server: list[Transaction] = []
        self.create_payloads: list[dict[str, Any]] = []
        self.fail_descriptions: set[str] = set()
        self.create_error: Optional[Exception] = None
        self.create_delay: float = 0.0
        self.list_error: Optional[Exception] = None
        self.list_limits: list[int] = []

    async def create(self, data: dict[str, Any]) -> Transaction:
        self.create_payloads.append(data)
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.create_error is not None:
            raise self.create_error
        if data.get("description") in self.fail_descriptions:
            raise RemoteAPIError("POST /transactions returned 500", status_code=500)
        created = Transaction(
            id=f"srv-{len(self.server) + 1}",
            type=data["type"],
            amount=Decimal(str(data["amount"])),
            description=data.get("description"),
            category_id=data["categoryId"],
            user_id="user-1",
            created_at=utcnow(),
        )
        self.server.append(created)
        return created

    async def list(self, limit: int) -> list[Transaction]:
        self.list_limits.append(limit)
        if self.list_error is not None:
            raise self.list_error
        return list(self.server[:limit])


class _FakeList:
    def __init__(self):
        self.items: list = []
        self.error: Optional[Exception] = None
        self.calls = 0

    async def list(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeCategories(_FakeList, CategoriesResource):
    pass


class FakeAlerts(_FakeList, AlertsResource):
    pass


class FakeReminders(_FakeList, RemindersResource):
    pass


class FakeRemoteAPI(RemoteAPI):
    def __init__(self):
        self.transactions = FakeTransactions()
        self.categories = FakeCategories()
        self.alerts = FakeAlerts()
        self.reminders = FakeReminders()

    def seed(self) -> None:
        """Give every collection one record."""
        self.transactions.server.append(make_transaction("srv-seed", description="Seed"))
        self.categories.items.append(make_category("cat-food"))
        self.alerts.items.append(Alert(id="alert-1", message="Budget at 80%"))
        self.reminders.items.append(Reminder(id="rem-1", title="Pay rent"))


class FakeProbe:
    """Reachability probe whose answer the test controls."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0

    async def __call__(self) -> bool:
        self.calls += 1
        return self.online


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def storage():
    return InMemoryKeyValueStorage()


@pytest.fixture
def sync_settings():
    return SyncSettings(
        max_retries=3,
        debounce_seconds=0.01,
        auto_sync_interval_seconds=3600,
        refresh_page_size=50,
        backup_page_size=1000,
        auto_sync_default=True,
        auto_backup_interval_hours=24,
    )


@pytest.fixture
def connectivity_settings():
    return ConnectivitySettings(
        probe_url="http://backend.test/health",
        probe_timeout_seconds=1,
        poll_interval_seconds=3600,
    )


@pytest.fixture
def probe():
    return FakeProbe(online=True)


@pytest.fixture
def monitor(probe, connectivity_settings):
    return ConnectivityMonitor(probe=probe, settings=connectivity_settings, initial_online=True)


@pytest.fixture
def pending_store(storage):
    return PendingOperationStore(storage, max_retries=3)


@pytest.fixture
def cache(storage, pending_store):
    return DataCache(storage, pending_store)


@pytest.fixture
def remote():
    return FakeRemoteAPI()


@pytest.fixture
def backup_service(storage, cache, remote):
    return BackupService(storage, cache, remote)


@pytest.fixture
def coordinator(monitor, pending_store, cache, remote, backup_service, sync_settings):
    return SyncCoordinator(
        monitor=monitor,
        pending_store=pending_store,
        cache=cache,
        remote=remote,
        backup_service=backup_service,
        settings=sync_settings,
    )
