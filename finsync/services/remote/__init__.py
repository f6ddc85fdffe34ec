"""Remote backend services package."""

from finsync.services.remote.interface import (
    AlertsResource,
    CategoriesResource,
    RemindersResource,
    RemoteAPI,
    RemoteAPIError,
    RemoteUnavailableError,
    TransactionsResource,
)
from finsync.services.remote.http_client import HttpClient, RestRemoteAPI

__all__ = [
    # Interface
    "AlertsResource",
    "CategoriesResource",
    "RemindersResource",
    "RemoteAPI",
    "TransactionsResource",
    # Exceptions
    "RemoteAPIError",
    "RemoteUnavailableError",
    # REST implementation
    "HttpClient",
    "RestRemoteAPI",
]
