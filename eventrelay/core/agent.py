"""Relay agent: wires the pipeline and exposes its outer surfaces.

Producers call ``submit``. A control surface (CLI, UI) calls ``flush_now``,
``export_all`` and ``compute_stats``, which always return a ControlResult
instead of raising. The environment reports connectivity through
``network_restored`` / ``network_lost``, or the built-in reachability
monitor does it when polling is enabled.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from typing import Any

from eventrelay.core.assembler import BatchAssembler
from eventrelay.core.config import RelaySettings
from eventrelay.core.connection import ConnectionManager
from eventrelay.core.connectivity import ConnectivityMonitor
from eventrelay.core.errors import ProducerError, StorageError
from eventrelay.core.event import ClientInfo, normalize_record
from eventrelay.core.logging import configure_relay_logger
from eventrelay.core.retry import RetryTracker
from eventrelay.core.scheduler import DeliveryScheduler
from eventrelay.core.stats import compute_stats
from eventrelay.core.transport import TransportDelivery
from eventrelay.stores.base import EventStore
from eventrelay.stores.memory import InMemoryEventStore
from eventrelay.stores.sqlite import SqliteEventStore
from eventrelay.transports.base import RequestSender, StreamConnector
from eventrelay.transports.http import HttpRequestSender
from eventrelay.transports.websocket import WebSocketConnector


def client_version() -> str:
    """Installed package version, or "unknown" when running from a checkout."""
    try:
        return version("eventrelay")
    except PackageNotFoundError:
        return "unknown"


def build_store(settings: RelaySettings) -> EventStore:
    """Create the store selected by settings."""
    if settings.store == "memory":
        return InMemoryEventStore(max_events=settings.store_max_events)
    if settings.store == "redis":
        from eventrelay.stores.redis import RedisEventStore

        return RedisEventStore(url=settings.redis_url, max_events=settings.store_max_events)
    return SqliteEventStore(settings.store_path, max_events=settings.store_max_events)


@dataclass(frozen=True)
class ControlResult:
    """Outcome of a control-surface operation.

    Attributes:
        ok: True on success.
        data: Operation payload (cycle result, events, stats).
        error: Human-readable failure reason when ok is False.
    """

    ok: bool
    data: Any = None
    error: str | None = None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "error"


class RelayAgent:
    """Single relay instance.

    Args:
        settings: Agent configuration. Defaults to RelaySettings().
        store: Event store. Built from settings if not provided.
        connector: Stream connector. Defaults to a WebSocket connector.
        request: Request sender. Defaults to an HTTP POST sender.
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        store: EventStore | None = None,
        connector: StreamConnector | None = None,
        request: RequestSender | None = None,
    ) -> None:
        self.settings = settings or RelaySettings()
        s = self.settings
        configure_relay_logger()
        self._log = logging.getLogger("eventrelay.agent")

        self.store = store if store is not None else build_store(s)
        self.tracker = RetryTracker(retry_limit=s.retry_limit)
        self.connection = ConnectionManager(
            connector or WebSocketConnector(s.collector_ws_url),
            base_delay=s.reconnect_base_delay,
            max_delay=s.reconnect_max_delay,
            max_attempts=s.max_reconnect_attempts,
            handshake_timeout=s.handshake_timeout,
            send_timeout=s.send_timeout,
        )
        self.request = request or HttpRequestSender(s.collector_http_url, timeout=s.request_timeout)
        self.delivery = TransportDelivery(self.connection, self.request)
        self.assembler = BatchAssembler(
            self.store, ClientInfo(agent=s.client_agent, version=client_version())
        )
        self.scheduler = DeliveryScheduler(
            store=self.store,
            assembler=self.assembler,
            delivery=self.delivery,
            tracker=self.tracker,
            connection=self.connection,
            interval=s.flush_interval,
            batch_size=s.batch_size,
            store_timeout=s.store_timeout,
        )
        self.monitor: ConnectivityMonitor | None = None
        if s.connectivity_poll_interval > 0:
            host, port = s.collector_host
            self.monitor = ConnectivityMonitor.for_host(
                host,
                port,
                on_restored=self.network_restored,
                on_lost=self.network_lost,
                interval=s.connectivity_poll_interval,
            )
        self._tasks: list[asyncio.Task[Any]] = []

    # ------------------------------------------------------------------
    # Producer surface
    # ------------------------------------------------------------------

    async def submit(self, record: Any) -> int | None:
        """Stamp and persist a producer record.

        Never raises. Rejected records and storage failures are logged and
        the event is dropped.

        Returns:
            The store id, or None if the event was dropped.
        """
        try:
            data = normalize_record(record)
        except ProducerError as e:
            self._log.warning(f"Dropped event: {e}")
            return None

        try:
            return await asyncio.wait_for(self.store.append(data), self.settings.store_timeout)
        except (StorageError, TimeoutError) as e:
            self._log.error(
                f"Failed to store event: {e}",
                extra={"event_id": data.get("event_id"), "event_type": data.get("type")},
            )
            return None

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def flush_now(self) -> ControlResult:
        """Run one delivery cycle now (after any cycle in flight)."""
        result = await self.scheduler.run_cycle()
        if result.ok:
            return ControlResult(ok=True, data=result)
        return ControlResult(ok=False, data=result, error=result.error or result.status.value)

    async def export_all(self) -> ControlResult:
        """Every event currently in the store, with its store id."""
        try:
            events = await asyncio.wait_for(self.store.read_all(), self.settings.store_timeout)
        except Exception as e:
            self._log.error(f"Export failed: {e}")
            return ControlResult(ok=False, error=str(e) or type(e).__name__)
        return ControlResult(ok=True, data=[event.as_export() for event in events])

    async def compute_stats(self) -> ControlResult:
        """Aggregate counts over the stored events."""
        try:
            events = await asyncio.wait_for(self.store.read_all(), self.settings.store_timeout)
        except Exception as e:
            self._log.error(f"Stats computation failed: {e}")
            return ControlResult(ok=False, error=str(e) or type(e).__name__)
        return ControlResult(ok=True, data=compute_stats(events))

    # ------------------------------------------------------------------
    # Connectivity signals
    # ------------------------------------------------------------------

    def network_restored(self) -> bool:
        return self.connection.network_restored()

    def network_lost(self) -> None:
        self.connection.network_lost()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Check the network, open the stream and start the timers."""
        self._log.info("Initializing relay agent...")
        online = True
        if self.monitor is not None:
            online = await self.monitor.check()
        if online:
            self.connection.connect()

        try:
            pending = await asyncio.wait_for(self.store.count(), self.settings.store_timeout)
            self._log.info(f"Found {pending} pending events in store", extra={"event_count": pending})
        except Exception as e:
            self._log.warning(f"Could not check pending events count: {e}")

        loop = asyncio.get_running_loop()
        self._tasks = [loop.create_task(self.scheduler.run())]
        if self.monitor is not None:
            self._tasks.append(loop.create_task(self.monitor.run()))
        self._log.info("Relay agent started")

    async def stop(self) -> None:
        """Stop the timers, let the cycle in flight finish, release resources."""
        self.scheduler.stop()
        if self.monitor is not None:
            self.monitor.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        await self.scheduler.drain()
        await self.connection.close()
        await self.request.close()
        await self.store.close()
        self._log.info("Relay agent stopped")

    async def __aenter__(self) -> "RelayAgent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
