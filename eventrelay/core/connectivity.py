"""Connectivity monitoring by reachability polling.

There is no OS-level online/offline notification to subscribe to, so the
monitor periodically opens a TCP connection to the collector host and turns
changes in reachability into restored/lost signals. The check is
network-interface agnostic: it only asks whether the collector can be
reached at all.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("eventrelay.connectivity")


async def is_reachable(host: str, port: int, timeout: float = 4.0) -> bool:
    """True if a TCP connection to host:port opens within timeout."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (TimeoutError, OSError):
        return False
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return True


class ConnectivityMonitor:
    """Polls reachability and reports transitions.

    The first poll only reports "lost" (if the collector is unreachable at
    startup); after that each change fires exactly one callback.

    Args:
        probe: Async callable returning current reachability.
        on_restored: Called on an unreachable → reachable transition.
        on_lost: Called on a reachable → unreachable transition.
        interval: Seconds between polls.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        on_restored: Callable[[], object],
        on_lost: Callable[[], object],
        interval: float = 30.0,
    ) -> None:
        self._probe = probe
        self._on_restored = on_restored
        self._on_lost = on_lost
        self.interval = interval
        self._online: bool | None = None
        self._running = False

    @classmethod
    def for_host(
        cls,
        host: str,
        port: int,
        on_restored: Callable[[], object],
        on_lost: Callable[[], object],
        interval: float = 30.0,
        timeout: float = 4.0,
    ) -> "ConnectivityMonitor":
        """Monitor backed by a TCP reachability check."""

        async def probe() -> bool:
            return await is_reachable(host, port, timeout)

        return cls(probe, on_restored, on_lost, interval)

    @property
    def online(self) -> bool | None:
        """Last observed reachability; None before the first poll."""
        return self._online

    def stop(self) -> None:
        self._running = False

    async def check(self) -> bool:
        """Poll once and fire the matching callback on a transition."""
        try:
            reachable = await self._probe()
        except Exception as e:
            logger.warning("Reachability probe failed: %s", e)
            reachable = False

        previous = self._online
        self._online = reachable
        if previous is None:
            logger.info("Network status: %s", "Online" if reachable else "Offline")
            if not reachable:
                self._fire(self._on_lost)
        elif reachable and not previous:
            self._fire(self._on_restored)
        elif previous and not reachable:
            self._fire(self._on_lost)
        return reachable

    async def run(self) -> None:
        """Poll every interval until stop(). Call check() first for an immediate poll."""
        self._running = True
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            await self.check()

    def _fire(self, callback: Callable[[], object]) -> None:
        try:
            callback()
        except Exception as e:
            logger.error("Connectivity callback raised: %s", e)
