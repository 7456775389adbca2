"""Event store protocol.

The store is the relay's durable queue. Records stay in it until a delivery
cycle has confirmed them and deletes them by id. The scheduler keeps no
copy of its own.
"""

from collections.abc import Collection, Mapping
from typing import Any, Protocol

from eventrelay.core.event import StoredEvent


class EventStore(Protocol):
    """Protocol defining the interface for local event stores.

    Stores are responsible for:
    - Assigning a fresh, increasing, never reused id on append
    - Returning the oldest records in id order without removing them
    - Deleting exactly the requested ids, reporting the ones that failed
    - Enforcing the optional retention bound (oldest-first eviction)

    Failures are raised as StorageError.
    """

    async def append(self, record: Mapping[str, Any]) -> int:
        """Persist a record and return its new id."""
        ...

    async def read_oldest(self, limit: int) -> list[StoredEvent]:
        """Return up to limit records in ascending id order."""
        ...

    async def delete_by_ids(self, ids: Collection[int]) -> set[int]:
        """Delete the given ids, one by one.

        A failure on one id does not stop the others. Ids that are already
        absent count as deleted.

        Returns:
            The ids that could not be removed.
        """
        ...

    async def read_all(self) -> list[StoredEvent]:
        """Return every stored record in ascending id order."""
        ...

    async def count(self) -> int:
        """Number of stored records."""
        ...

    @property
    def evicted_count(self) -> int:
        """Records dropped by the retention bound since creation."""
        ...

    async def close(self) -> None:
        """Release the underlying resources."""
        ...
