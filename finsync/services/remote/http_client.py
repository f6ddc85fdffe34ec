"""
REST Client for the Finance Backend

Implements the RemoteAPI interface over HTTP with `requests`.

DESIGN DECISION: Reads are retried with exponential backoff because they
are idempotent. Creates are NOT retried inside the client: a timed-out
POST may still have been applied by the server, and retrying it here would
let a single sync pass submit the same pending operation twice. Failed
creates go back to the pending queue and are replayed on the next pass.

Every request carries a timeout, so a call fails instead of hanging.
"""

import asyncio
from typing import Any, Optional

import requests
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finsync.config import ApiSettings, get_settings
from finsync.models.records import Alert, Category, Reminder, Transaction
from finsync.services.remote.interface import (
    AlertsResource,
    CategoriesResource,
    RemindersResource,
    RemoteAPI,
    RemoteAPIError,
    RemoteUnavailableError,
    TransactionsResource,
)


logger = structlog.get_logger(__name__)


class HttpClient:
    """
    Low-level HTTP wrapper.

    Handles authentication headers, timeouts, error mapping and the
    retry policy for reads.
    """

    def __init__(
        self,
        settings: Optional[ApiSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().api
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if self._settings.access_token:
            self._session.headers["Authorization"] = f"Bearer {self._settings.access_token}"

    @property
    def base_url(self) -> str:
        return self._settings.base_url

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        url = f"{self._settings.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self._settings.timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning("remote_unreachable", method=method, path=path, error=str(e))
            raise RemoteUnavailableError(f"{method} {path} failed: {e}")
        except requests.RequestException as e:
            raise RemoteAPIError(f"{method} {path} failed: {e}")

        if response.status_code >= 400:
            raise RemoteAPIError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteAPIError(f"{method} {path} returned invalid JSON: {e}")

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        """GET with retries on transport failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._settings.read_retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type(RemoteUnavailableError),
            reraise=True,
        ):
            with attempt:
                return await asyncio.to_thread(self._request, "GET", path, params)

    async def post(self, path: str, body: dict) -> Any:
        """POST exactly once."""
        return await asyncio.to_thread(self._request, "POST", path, None, body)


def _unwrap_page(payload: Any, path: str) -> list:
    """Accept either a bare list or a paginated {"data": [...]} envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise RemoteAPIError(f"Unexpected response shape from {path}")


def _parse_list(model, payload: Any, path: str) -> list:
    try:
        return [model.model_validate(item) for item in _unwrap_page(payload, path)]
    except ValidationError as e:
        raise RemoteAPIError(f"Invalid record from {path}: {e}")


class HttpTransactionsResource(TransactionsResource):
    def __init__(self, http: HttpClient):
        self._http = http

    async def create(self, data: dict[str, Any]) -> Transaction:
        payload = await self._http.post("/transactions", data)
        try:
            return Transaction.model_validate(payload)
        except ValidationError as e:
            raise RemoteAPIError(f"Invalid transaction in create response: {e}")

    async def list(self, limit: int) -> list[Transaction]:
        payload = await self._http.get("/transactions", params={"limit": limit})
        return _parse_list(Transaction, payload, "/transactions")


class HttpCategoriesResource(CategoriesResource):
    def __init__(self, http: HttpClient):
        self._http = http

    async def list(self) -> list[Category]:
        return _parse_list(Category, await self._http.get("/categories"), "/categories")


class HttpAlertsResource(AlertsResource):
    def __init__(self, http: HttpClient):
        self._http = http

    async def list(self) -> list[Alert]:
        return _parse_list(Alert, await self._http.get("/alerts"), "/alerts")


class HttpRemindersResource(RemindersResource):
    def __init__(self, http: HttpClient):
        self._http = http

    async def list(self) -> list[Reminder]:
        return _parse_list(Reminder, await self._http.get("/reminders"), "/reminders")


class RestRemoteAPI(RemoteAPI):
    """RemoteAPI backed by the finance REST backend."""

    def __init__(self, http: Optional[HttpClient] = None):
        self._http = http or HttpClient()
        self.transactions = HttpTransactionsResource(self._http)
        self.categories = HttpCategoriesResource(self._http)
        self.alerts = HttpAlertsResource(self._http)
        self.reminders = HttpRemindersResource(self._http)

    @property
    def base_url(self) -> str:
        return self._http.base_url
