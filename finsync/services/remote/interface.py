"""
Abstract Remote API Interface

The backend is a collaborator: the sync core only needs to create
transactions and list the four mirrored collections. Each call either
succeeds or raises RemoteAPIError; no status codes are interpreted
beyond that.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from finsync.models.records import Alert, Category, Reminder, Transaction


class RemoteAPIError(Exception):
    """Base exception for remote backend failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RemoteUnavailableError(RemoteAPIError):
    """The backend could not be reached (timeout, DNS, refused connection)."""
    pass


class TransactionsResource(ABC):
    """Transaction endpoints."""

    @abstractmethod
    async def create(self, data: dict[str, Any]) -> Transaction:
        """
        Create a transaction on the backend.

        Args:
            data: camelCase request body (type, amount, categoryId, description)

        Returns:
            The transaction as acknowledged by the backend

        Raises:
            RemoteAPIError: If the backend rejects or cannot be reached
        """
        pass

    @abstractmethod
    async def list(self, limit: int) -> list[Transaction]:
        """Fetch the newest transactions, at most `limit` of them."""
        pass


class CategoriesResource(ABC):
    @abstractmethod
    async def list(self) -> list[Category]:
        pass


class AlertsResource(ABC):
    @abstractmethod
    async def list(self) -> list[Alert]:
        pass


class RemindersResource(ABC):
    @abstractmethod
    async def list(self) -> list[Reminder]:
        pass


class RemoteAPI(ABC):
    """
    The backend as seen by the sync core.

    Concrete clients expose one resource object per collection.
    """

    transactions: TransactionsResource
    categories: CategoriesResource
    alerts: AlertsResource
    reminders: RemindersResource
