"""
Abstract Storage Interface

DESIGN DECISION: The sync stores talk to persistence only through a tiny
async key-value interface. This allows us to:
1. Back the client with files on disk, a platform key-value store, or memory
2. Use in-memory storage for testing
3. Keep queue and cache logic decoupled from the storage medium

Values are opaque serialized records (strings). Each store owns a fixed
set of keys and nothing else writes to them.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional


class KeyValueStorage(ABC):
    """
    Abstract interface for persistent key-value storage.

    Implementations must make set_item atomic per key: after a failed
    write the key still holds its previous value.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """
        Read the value stored under a key.

        Returns:
            The stored value, or None if the key is absent

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """
        Store a value under a key, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""
        pass

    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Remove several keys."""
        for key in keys:
            await self.remove_item(key)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class CorruptRecordError(StorageError):
    """A stored value could not be deserialized."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Corrupt record under '{key}': {message}")
