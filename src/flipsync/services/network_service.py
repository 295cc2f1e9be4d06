"""Online/offline tracking with an optional reachability probe."""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

from flipsync.services.status_service import SyncStatusTracker

logger = logging.getLogger(__name__)

ReconnectHandler = Callable[[], Awaitable[Any]]


class NetworkState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class NetworkObserver:
    """Tracks connectivity and triggers a full sync on reconnect.

    Transitions come either from ``set_online`` (platform events, tests) or
    from the probe loop, which opens a TCP connection to the remote API host
    every ``probe_interval`` seconds.
    """

    def __init__(
        self,
        status: SyncStatusTracker,
        on_reconnect: Optional[ReconnectHandler] = None,
        probe_url: Optional[str] = None,
        probe_interval: float = 30.0,
        probe_timeout: float = 5.0,
    ):
        """Initialize the observer with the status it drives."""
        self.status = status
        self.on_reconnect = on_reconnect
        self.probe_interval = probe_interval
        self.probe_timeout = probe_timeout
        self.running = False
        self.tasks: dict[str, asyncio.Task] = {}
        self._probe_host = ""
        self._probe_port = 80
        if probe_url:
            self.set_probe_from_url(probe_url)

    @property
    def state(self) -> NetworkState:
        return NetworkState.ONLINE if self.status.status.is_online else NetworkState.OFFLINE

    @property
    def is_online(self) -> bool:
        return self.status.status.is_online

    def set_probe_from_url(self, url: str) -> None:
        """Extract host:port from the API URL for probing."""
        parsed = urlparse(url)
        self._probe_host = parsed.hostname or ""
        self._probe_port = parsed.port or (443 if parsed.scheme == "https" else 80)

    def set_online(self, online: bool) -> Optional[asyncio.Task]:
        """Apply a connectivity change.

        Going online from offline starts a full sync and returns its task.
        Going offline only flips the status flag.
        """
        was_online = self.status.status.is_online
        if online == was_online:
            return None

        self.status.update(is_online=online)
        if not online:
            logger.info("Network went offline")
            return None

        logger.info("Network back online")
        if self.on_reconnect is None:
            return None
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; reconnect sync not started")
            return None

        task = asyncio.create_task(self._run_reconnect())
        self.tasks["reconnect_sync"] = task
        return task

    async def _run_reconnect(self) -> None:
        try:
            await self.on_reconnect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Sync after reconnect failed: %s", str(e))
        finally:
            self.tasks.pop("reconnect_sync", None)

    async def start(self) -> None:
        """Start the probe loop, if a probe target is configured."""
        if self.running:
            return
        self.running = True
        if not self._probe_host:
            logger.debug("No probe target configured; relying on set_online")
            return
        self.tasks["probe"] = asyncio.create_task(self._run_probe())
        logger.info("Probing %s:%d every %.0fs", self._probe_host, self._probe_port, self.probe_interval)

    async def stop(self) -> None:
        """Stop probing and cancel a running reconnect sync."""
        if not self.running and not self.tasks:
            return
        self.running = False
        for task in self.tasks.values():
            task.cancel()
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    async def _run_probe(self) -> None:
        while self.running:
            try:
                latency = await self.probe()
                self.set_online(latency >= 0)
                await asyncio.sleep(self.probe_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.debug("Connectivity probe failed: %s", str(e))
                await asyncio.sleep(self.probe_interval)

    async def probe(self) -> float:
        """TCP connect to the probe target. Returns RTT in ms, or -1 if unreachable."""
        if not self._probe_host:
            return 0.0
        start = time.monotonic()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._probe_host, self._probe_port),
                timeout=self.probe_timeout,
            )
        except (OSError, asyncio.TimeoutError):
            return -1.0
        elapsed = (time.monotonic() - start) * 1000
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return elapsed
