"""HTTP connectivity probe feeding the network monitor."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from homekeep.network.monitor import NetworkMonitor

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """
    Periodically checks that the remote store answers and reports the
    result to a :class:`NetworkMonitor`.

    Any HTTP response (even an error status) means the network path works;
    only connection errors and timeouts count as offline.

    Usage:
        probe = ConnectivityProbe("http://host/api/health", monitor, interval=15)
        probe.start()
        ...
        await probe.stop()
    """

    def __init__(
        self,
        health_url: str,
        monitor: NetworkMonitor,
        *,
        interval: float = 15.0,
        timeout: float = 5.0,
    ) -> None:
        if not health_url.startswith(("http://", "https://")):
            raise ValueError("Invalid health URL scheme: must start with http:// or https://")

        self._health_url = health_url
        self._monitor = monitor
        self._interval = interval
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def health_url(self) -> str:
        return self._health_url

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Probe the remote store once and report the result. Returns True if reachable."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        try:
            async with self._session.get(self._health_url) as response:
                reachable = response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug("Connectivity probe failed: %s", e)
            reachable = False

        self._monitor.report(reachable)
        return reachable

    def start(self) -> None:
        """Start probing in the background."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="homekeep-connectivity-probe")

    async def stop(self) -> None:
        """Stop probing and close the HTTP session."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> ConnectivityProbe:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)
