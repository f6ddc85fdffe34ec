"""
Connectivity Monitor

Tracks whether the backend is reachable and tells subscribers when that
changes.

Reachability means "connected AND internet reachable": the default probe
sends an HTTP request to the configured probe URL. Any response below 500
counts as reachable; any exception counts as unreachable. A failed probe
never raises to the caller.

Listeners fire on transitions only, not on every poll. Transitions can
come from probes (`check_network_status`, the background poll loop) or be
pushed by a platform network-change source (`set_online`).

All methods must be called from the event loop thread.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import requests
import structlog

from finsync.config import ConnectivitySettings, get_settings


logger = structlog.get_logger(__name__)

ConnectivityListener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class HttpReachabilityProbe:
    """Probe that issues a GET against a health URL."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def _probe(self) -> bool:
        try:
            response = self._session.get(self._url, timeout=self._timeout)
        except requests.RequestException as e:
            logger.debug("probe_failed", url=self._url, error=str(e))
            return False
        return response.status_code < 500

    async def __call__(self) -> bool:
        return await asyncio.to_thread(self._probe)


class ConnectivityMonitor:
    """
    Observes network reachability and emits online/offline transitions.

    Usage:
        monitor = ConnectivityMonitor(probe)
        unsubscribe = monitor.add_connectivity_listener(on_change)
        await monitor.start()
    """

    def __init__(
        self,
        probe: Optional[Probe] = None,
        settings: Optional[ConnectivitySettings] = None,
        initial_online: bool = True,
    ):
        self._settings = settings or get_settings().connectivity
        if probe is None:
            probe_url = self._settings.probe_url or f"{get_settings().api.base_url}/health"
            probe = HttpReachabilityProbe(probe_url, self._settings.probe_timeout_seconds)
        self._probe = probe
        self._is_online = initial_online
        self._listeners: list[ConnectivityListener] = []
        self._poll_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def check_network_status(self) -> bool:
        """
        Probe reachability now and update the last known value.

        Never raises: a probe error means offline.
        """
        try:
            online = bool(await self._probe())
        except Exception as e:
            logger.warning("connectivity_probe_error", error=str(e))
            online = False
        self._apply(online)
        return online

    def get_is_online(self) -> bool:
        """Last known value, without probing."""
        return self._is_online

    def set_online(self, online: bool) -> None:
        """Report a transition observed by an external network-change source."""
        self._apply(bool(online))

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_connectivity_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a callback fired on every online/offline transition.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _apply(self, online: bool) -> None:
        if online == self._is_online:
            return
        self._is_online = online
        logger.info("connectivity_changed", is_online=online)
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("connectivity_listener_failed")

    # ------------------------------------------------------------------
    # Background polling
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Probe once, then keep probing in the background."""
        if self.is_running:
            return
        await self.check_network_status()
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.poll_interval_seconds)
            await self.check_network_status()
