"""In-memory event store."""

import itertools
import logging
from collections.abc import Collection, Mapping
from typing import Any

from eventrelay.core.event import StoredEvent


class InMemoryEventStore:
    """Event store backed by an insertion-ordered dict.

    Suitable for development and testing. Nothing survives the process.

    Args:
        max_events: Retention cap. 0 means unbounded (default).
    """

    def __init__(self, max_events: int = 0) -> None:
        self._records: dict[int, dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self._max_events = max_events
        self._evicted = 0
        self._log = logging.getLogger("eventrelay.stores.memory")

    async def append(self, record: Mapping[str, Any]) -> int:
        event_id = next(self._ids)
        self._records[event_id] = dict(record)
        self._evict_overflow()
        return event_id

    async def read_oldest(self, limit: int) -> list[StoredEvent]:
        items = itertools.islice(self._records.items(), max(limit, 0))
        return [StoredEvent(id=event_id, record=record) for event_id, record in items]

    async def delete_by_ids(self, ids: Collection[int]) -> set[int]:
        for event_id in ids:
            self._records.pop(event_id, None)
        return set()

    async def read_all(self) -> list[StoredEvent]:
        return [StoredEvent(id=event_id, record=record) for event_id, record in self._records.items()]

    async def count(self) -> int:
        return len(self._records)

    @property
    def evicted_count(self) -> int:
        return self._evicted

    async def close(self) -> None:
        """Drop all records."""
        self._records.clear()

    def _evict_overflow(self) -> None:
        if self._max_events <= 0:
            return
        overflow = len(self._records) - self._max_events
        if overflow <= 0:
            return
        oldest = list(itertools.islice(self._records, overflow))
        for event_id in oldest:
            del self._records[event_id]
        self._evicted += overflow
        self._log.warning(
            "Retention limit reached, evicted %d oldest events",
            overflow,
            extra={"event_count": overflow, "max_events": self._max_events},
        )
