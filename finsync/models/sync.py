"""
Sync Data Models

These models describe the state the sync subsystem owns:
- PendingTransaction: a transaction recorded locally, not yet acknowledged
- SyncStatus: the single current status value published to the UI
- BackupArtifact: an immutable full-data snapshot
- SyncResult: the outcome of one drain-and-refresh pass

DESIGN DECISION: SyncStatus is frozen. The coordinator never mutates it,
it builds a new value and swaps the reference, so every subscriber sees
a consistent snapshot.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from finsync.models.records import (
    Alert,
    Category,
    Reminder,
    Transaction,
    TransactionType,
)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def generate_local_id() -> str:
    """
    Create an opaque id for a locally recorded transaction.

    The prefix keeps offline ids distinguishable from server ids in
    mixed views.
    """
    return f"offline_{uuid4().hex}"


# =============================================================================
# ENUMS
# =============================================================================

class SyncState(str, Enum):
    """Coordinator state as seen from the outside."""
    IDLE = "idle"
    SYNCING = "syncing"
    OFFLINE = "offline"


# =============================================================================
# PENDING OPERATIONS
# =============================================================================

class PendingTransaction(BaseModel):
    """
    A transaction-create operation waiting to be replayed against the backend.

    CRITICAL: Only the sync coordinator mutates these (retry count bump,
    removal on success or exhaustion).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    local_id: str = Field(
        default_factory=generate_local_id,
        min_length=1,
        description="Locally generated unique id"
    )
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Transaction amount"
    )
    category_id: str = Field(
        ...,
        min_length=1,
        description="Category the transaction is filed under"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the user recorded the transaction"
    )
    retry_count: int = Field(
        default=0,
        ge=0,
        description="Failed replay attempts so far"
    )
    last_error: Optional[str] = Field(
        default=None,
        description="Error message of the most recent failed attempt"
    )

    def to_create_payload(self) -> dict:
        """Request body for the backend's transaction-create endpoint."""
        payload = {
            "type": self.type.value,
            "amount": str(self.amount),
            "categoryId": self.category_id,
        }
        if self.description:
            payload["description"] = self.description
        return payload

    def to_display_transaction(self, category: Optional[Category] = None) -> Transaction:
        """Render as a Transaction so offline entries show up in reports."""
        return Transaction(
            id=self.local_id,
            type=self.type,
            amount=self.amount,
            description=self.description,
            category_id=self.category_id,
            user_id="pending",
            created_at=self.created_at,
            updated_at=self.created_at,
            category=category or Category(
                id=self.category_id,
                name="Pending",
                type=self.type,
                created_at=self.created_at,
                updated_at=self.created_at,
            ),
        )


class DroppedOperation(BaseModel):
    """
    A pending transaction that exhausted its retries.

    Kept in a dead-letter list so the loss of a financial entry is
    visible to the user instead of silent.
    """

    operation: PendingTransaction
    dropped_at: datetime = Field(default_factory=utcnow)
    reason: str = Field(
        ...,
        description="Error message of the final failed attempt"
    )


# =============================================================================
# STATUS AND RESULTS
# =============================================================================

class SyncStatus(BaseModel):
    """
    Process-wide sync status.

    One current value, replaced atomically by the coordinator on every
    state change and read by any number of subscribers.
    """
    model_config = ConfigDict(frozen=True)

    is_online: bool = False
    is_syncing: bool = False
    pending_count: int = Field(default=0, ge=0)
    last_sync_time: Optional[datetime] = None
    last_error: Optional[str] = Field(
        default=None,
        description="Single user-facing failure message of the last pass"
    )
    dropped_count: int = Field(
        default=0,
        ge=0,
        description="Entries in the dead-letter list"
    )

    @property
    def state(self) -> SyncState:
        if self.is_syncing:
            return SyncState.SYNCING
        if not self.is_online:
            return SyncState.OFFLINE
        return SyncState.IDLE


class SyncResult(BaseModel):
    """Outcome of a single sync pass."""

    success: bool
    skipped: bool = Field(
        default=False,
        description="True when the pass did not run because another was in flight"
    )
    synced_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    dropped_count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def skipped_result(cls) -> "SyncResult":
        return cls(success=False, skipped=True)


class PendingSummary(BaseModel):
    """Income and expense totals of not-yet-synced transactions."""

    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")


class SyncPreferences(BaseModel):
    """User toggles that drive the coordinator."""

    auto_sync: bool = True
    offline_mode: bool = False
    auto_backup: bool = False


# =============================================================================
# CACHE AND BACKUP
# =============================================================================

class CachedData(BaseModel):
    """All cached collections read together."""

    transactions: list[Transaction] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)
    summary: Optional[dict] = None


class BackupArtifact(BaseModel):
    """
    Immutable full-data snapshot.

    Written once, retained until a newer artifact supersedes it.
    """
    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(default_factory=utcnow)
    transactions: list[Transaction] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    reminders: list[Reminder] = Field(default_factory=list)

    @property
    def record_count(self) -> int:
        return (
            len(self.transactions)
            + len(self.categories)
            + len(self.alerts)
            + len(self.reminders)
        )
