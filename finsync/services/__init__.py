"""Services package."""

from finsync.services.connectivity import ConnectivityMonitor, HttpReachabilityProbe
from finsync.services.remote import (
    RemoteAPI,
    RemoteAPIError,
    RemoteUnavailableError,
    RestRemoteAPI,
)
from finsync.services.storage import (
    CorruptRecordError,
    DuplicateError,
    FileKeyValueStorage,
    InMemoryKeyValueStorage,
    KeyValueStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    # Connectivity
    "ConnectivityMonitor",
    "HttpReachabilityProbe",
    # Remote backend
    "RemoteAPI",
    "RemoteAPIError",
    "RemoteUnavailableError",
    "RestRemoteAPI",
    # Storage services
    "CorruptRecordError",
    "DuplicateError",
    "FileKeyValueStorage",
    "InMemoryKeyValueStorage",
    "KeyValueStorage",
    "NotFoundError",
    "StorageError",
]
