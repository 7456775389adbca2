"""Delivery scheduler for eventrelay.

The scheduler is the periodic driver of the pipeline. Each cycle:
- Assembles a batch from the oldest stored events
- Delivers it (stream first, request as fallback)
- Records the outcome with the retry tracker
- Deletes the delivered ids from the store

Cycles never overlap. A timer tick that finds a cycle in flight is skipped;
an explicit flush waits for the running cycle and then runs its own.
Nothing raised inside a cycle escapes it or stops the timer.
"""

import asyncio
import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from eventrelay.core.assembler import BatchAssembler
from eventrelay.core.config import DEFAULT_BATCH_SIZE, DEFAULT_FLUSH_INTERVAL
from eventrelay.core.errors import StorageError
from eventrelay.core.event import AssembledBatch
from eventrelay.core.logging import batch_fields
from eventrelay.core.retry import RetryDecision, RetryTracker
from eventrelay.core.transport import DeliveryMethod, TransportDelivery

if TYPE_CHECKING:
    from eventrelay.core.connection import ConnectionManager
    from eventrelay.stores.base import EventStore


class CycleStatus(Enum):
    """How a delivery cycle ended.

    EMPTY: Nothing to send; no batch was built and no retry record touched.
    DELIVERED: The collector accepted the batch.
    FAILED: Delivery failed; the events stay in the store.
    SKIPPED: Another cycle was in flight.
    ERROR: The cycle itself broke (store read failure, timeout, ...).
    """

    EMPTY = "empty"
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass(frozen=True)
class CycleResult:
    """Typed outcome of one delivery cycle."""

    status: CycleStatus
    batch_id: str | None = None
    fingerprint: str | None = None
    event_count: int = 0
    method: DeliveryMethod | None = None
    retry: RetryDecision | None = None
    error: str | None = None
    undeleted_ids: frozenset[int] = frozenset()

    @property
    def ok(self) -> bool:
        return self.status in (CycleStatus.EMPTY, CycleStatus.DELIVERED)


@dataclass
class SchedulerStats:
    """Counters from a scheduler's lifetime."""

    cycles_run: int = 0
    cycles_skipped: int = 0
    batches_delivered: int = 0
    batches_failed: int = 0
    batches_dropped: int = 0
    events_delivered: int = 0
    delete_failures: int = 0
    cycle_errors: int = 0
    deliveries_by_method: dict[str, int] = field(default_factory=dict)


class DeliveryScheduler:
    """Periodic assemble → deliver → retire driver."""

    def __init__(
        self,
        store: "EventStore",
        assembler: BatchAssembler,
        delivery: TransportDelivery,
        tracker: RetryTracker,
        connection: "ConnectionManager | None" = None,
        interval: float = DEFAULT_FLUSH_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        store_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.assembler = assembler
        self.delivery = delivery
        self.tracker = tracker
        self.connection = connection
        self.interval = interval
        self.batch_size = batch_size
        self.store_timeout = store_timeout
        self._log = logging.getLogger("eventrelay.scheduler")
        self._lock = asyncio.Lock()
        self._running = False
        self._stats = SchedulerStats()
        self._pending: set[asyncio.Task[CycleResult]] = set()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def stop(self) -> None:
        self._running = False

    def get_stats(self) -> SchedulerStats:
        """Return a copy of current statistics."""
        return SchedulerStats(
            cycles_run=self._stats.cycles_run,
            cycles_skipped=self._stats.cycles_skipped,
            batches_delivered=self._stats.batches_delivered,
            batches_failed=self._stats.batches_failed,
            batches_dropped=self._stats.batches_dropped,
            events_delivered=self._stats.events_delivered,
            delete_failures=self._stats.delete_failures,
            cycle_errors=self._stats.cycle_errors,
            deliveries_by_method=dict(self._stats.deliveries_by_method),
        )

    async def run(self) -> SchedulerStats:
        """Fire a tick every interval until stop() is called.

        Ticks are started on the period regardless of how long the previous
        one takes, so a slow cycle causes the next tick to be skipped rather
        than delayed.
        """
        self._running = True
        self._log.info(f"Delivery scheduler started (interval={self.interval}s)")
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            task = asyncio.get_running_loop().create_task(self.tick())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return self.get_stats()

    async def drain(self) -> None:
        """Wait for ticks already started and any cycle in flight to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        async with self._lock:
            pass

    async def tick(self) -> CycleResult:
        """One timer tick: nudge the connection, then run a cycle unless busy."""
        if self.connection is not None:
            try:
                self.connection.maintain()
            except Exception as e:
                self._log.error(f"Connection maintenance failed: {e}")

        if self._lock.locked():
            self._stats.cycles_skipped += 1
            self._log.debug("Delivery cycle in flight, skipping tick")
            return CycleResult(status=CycleStatus.SKIPPED)
        return await self.run_cycle()

    async def run_cycle(self) -> CycleResult:
        """Run one delivery cycle, waiting for any cycle in flight."""
        async with self._lock:
            self._stats.cycles_run += 1
            try:
                return await self._cycle()
            except Exception as e:
                self._stats.cycle_errors += 1
                self._log.error(f"Error in delivery cycle: {e}", exc_info=True)
                return CycleResult(status=CycleStatus.ERROR, error=str(e) or type(e).__name__)

    async def _cycle(self) -> CycleResult:
        assembled = await asyncio.wait_for(
            self.assembler.assemble(self.batch_size), self.store_timeout
        )
        if assembled is None:
            return CycleResult(status=CycleStatus.EMPTY)

        result = await self.delivery.deliver(assembled.batch)

        if not result.success:
            decision = self.tracker.on_outcome(assembled.fingerprint, False, result.error)
            self._stats.batches_failed += 1
            if decision is RetryDecision.PERMANENTLY_FAILED:
                self._stats.batches_dropped += 1
            return CycleResult(
                status=CycleStatus.FAILED,
                batch_id=assembled.batch_id,
                fingerprint=assembled.fingerprint,
                event_count=len(assembled),
                method=result.method,
                retry=decision,
                error=result.error,
            )

        self._stats.batches_delivered += 1
        self._stats.events_delivered += len(assembled)
        method = result.method.value
        self._stats.deliveries_by_method[method] = self._stats.deliveries_by_method.get(method, 0) + 1

        undeleted = await self._retire(assembled)
        if undeleted:
            # Keep the retry record: these events will be delivered again
            decision = None
            self._stats.delete_failures += len(undeleted)
            self._log.error(
                f"Batch sent via {method} but {len(undeleted)} events could not be deleted",
                extra=batch_fields(assembled, method=method, failed_ids=sorted(undeleted)),
            )
        else:
            decision = self.tracker.on_outcome(assembled.fingerprint, True)
            self._log.info(
                f"Batch of {len(assembled)} events sent via {method} and deleted from store",
                extra=batch_fields(assembled, method=method),
            )

        return CycleResult(
            status=CycleStatus.DELIVERED,
            batch_id=assembled.batch_id,
            fingerprint=assembled.fingerprint,
            event_count=len(assembled),
            method=result.method,
            retry=decision,
            undeleted_ids=frozenset(undeleted),
        )

    async def _retire(self, assembled: AssembledBatch) -> Collection[int]:
        """Delete delivered ids; returns the ids still in the store."""
        try:
            return await asyncio.wait_for(
                self.store.delete_by_ids(assembled.ids), self.store_timeout
            )
        except (StorageError, TimeoutError) as e:
            self._log.error(
                f"Failed to delete delivered events: {e}",
                extra=batch_fields(assembled),
            )
            return set(assembled.ids)
