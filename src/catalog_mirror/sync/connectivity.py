"""Connectivity tracking — drives automatic syncs on reconnect."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from catalog_mirror.config import Config

logger = logging.getLogger(__name__)

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"
STATUS_UNKNOWN = "unknown"


async def http_probe(url: str = None, timeout: float = 5.0) -> bool:
    """Return True when the remote host answers at all."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            await client.head(url or Config.REMOTE_URL)
        return True
    except httpx.HTTPError:
        return False


class ConnectivityMonitor:
    """Tracks online/offline state and tells the sync coordinator.

    A transition to ``online`` asks the coordinator to sync immediately;
    the coordinator's single-flight guard may drop that request.
    """

    def __init__(self, coordinator=None,
                 probe: Callable[[], Awaitable[bool]] = None):
        self.coordinator = coordinator
        self._probe = probe or http_probe
        self._status = STATUS_UNKNOWN
        self._listeners: list[Callable[[str], None]] = []
        self.last_sync_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> str:
        return self._status

    def is_online(self) -> bool:
        return self._status == STATUS_ONLINE

    def is_offline(self) -> bool:
        return self._status == STATUS_OFFLINE

    def add_listener(self, listener: Callable[[str], None]):
        """Register a status-change callback; returns unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update_status(self, new_status: str):
        """Apply a status reading; only actual changes are acted on."""
        if new_status == self._status:
            return
        self._status = new_status
        logger.info(f"Network status changed: {new_status}")

        if self.coordinator is not None and new_status != STATUS_UNKNOWN:
            task = self.coordinator.set_online_status(
                new_status == STATUS_ONLINE
            )
            if task is not None:
                self.last_sync_task = task

        for listener in list(self._listeners):
            try:
                listener(new_status)
            except Exception as e:
                logger.error(f"Error in network status listener: {e}")

    async def refresh(self) -> str:
        """Probe the network now and apply the result."""
        reachable = await self._probe()
        self.update_status(STATUS_ONLINE if reachable else STATUS_OFFLINE)
        return self._status

    async def wait_for_online(self, timeout: float = 30.0) -> bool:
        """Wait until the status becomes online; False on timeout."""
        if self.is_online():
            return True
        became_online = asyncio.Event()

        def on_change(status: str):
            if status == STATUS_ONLINE:
                became_online.set()

        unsubscribe = self.add_listener(on_change)
        try:
            await asyncio.wait_for(became_online.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()
