"""
Storage Services Package

Provides the abstract key-value interface and concrete backends.
The file backend is the default on device; the in-memory backend
serves tests.
"""

from finsync.services.storage.interface import (
    CorruptRecordError,
    DuplicateError,
    KeyValueStorage,
    NotFoundError,
    StorageError,
)
from finsync.services.storage.file_storage import FileKeyValueStorage
from finsync.services.storage.memory import InMemoryKeyValueStorage

__all__ = [
    # Interface
    "KeyValueStorage",
    # Exceptions
    "CorruptRecordError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Backends
    "FileKeyValueStorage",
    "InMemoryKeyValueStorage",
]
