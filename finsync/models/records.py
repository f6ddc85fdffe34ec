"""
Server Record Models

Snapshots of the server-authoritative collections the client mirrors
locally: transactions, categories, alerts and reminders.

The backend speaks camelCase JSON. These models accept either casing
on input and dump camelCase by default, so a record read from the API,
written to the cache and read back is byte-for-byte the same shape.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a financial transaction."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class AlertType(str, Enum):
    """Alert severity as reported by the backend."""
    WARNING = "WARNING"
    ERROR = "ERROR"
    INFO = "INFO"
    SUCCESS = "SUCCESS"


# =============================================================================
# BASE
# =============================================================================

class ServerRecord(BaseModel):
    """
    Base class for records keyed by a server-assigned id.

    Unknown fields sent by the backend are kept so that a cached snapshot
    never loses data the client does not model explicitly.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        str_strip_whitespace=True,
    )

    id: str = Field(
        ...,
        min_length=1,
        description="Server-assigned identifier"
    )

    def to_json_dict(self) -> dict:
        """Dump in the backend's camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# COLLECTIONS
# =============================================================================

class Category(ServerRecord):
    """A user-defined income or expense category."""

    name: str = Field(
        default="",
        max_length=200,
        description="Display name"
    )
    type: TransactionType = Field(
        ...,
        description="Whether the category groups income or expenses"
    )
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Transaction(ServerRecord):
    """
    A transaction as acknowledged by the backend.

    Amounts arrive as decimal strings and are kept as Decimal.
    """

    type: TransactionType
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Transaction amount"
    )
    description: Optional[str] = None
    category_id: str = Field(
        ...,
        description="Category this transaction belongs to"
    )
    user_id: Optional[str] = None
    receipt_url: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    category: Optional[Category] = None


class Alert(ServerRecord):
    """A notification raised by the backend (e.g. spending threshold)."""

    type: AlertType = AlertType.INFO
    message: str = ""
    user_id: Optional[str] = None
    is_read: bool = False
    created_at: Optional[datetime] = None


class Reminder(ServerRecord):
    """A scheduled reminder (bill payment, task, budget check)."""

    title: str = ""
    description: Optional[str] = None
    due_date: Optional[str] = Field(
        default=None,
        description="Due date as sent by the backend (ISO date)"
    )
    due_time: Optional[str] = None
    completed: bool = False
    user_id: Optional[str] = None
    reminder_type: Optional[str] = None
    priority: Optional[str] = None
    amount: Optional[Decimal] = None
    category_id: Optional[str] = None
