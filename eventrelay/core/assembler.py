"""Batch assembly from the oldest stored events."""

import logging
from typing import TYPE_CHECKING

from eventrelay.core.event import AssembledBatch, Batch, ClientInfo

if TYPE_CHECKING:
    from eventrelay.stores.base import EventStore


class BatchAssembler:
    """Builds delivery payloads from the head of the event store.

    Records that are empty once internal keys are stripped carry nothing to
    deliver. They are purged from the store so they cannot pin the head of
    the queue, and never become part of a batch.
    """

    def __init__(self, store: "EventStore", client: ClientInfo) -> None:
        self.store = store
        self.client = client
        self._log = logging.getLogger("eventrelay.assembler")

    async def assemble(self, max_events: int) -> AssembledBatch | None:
        """Read up to max_events oldest records and package them.

        Returns:
            The assembled batch, or None when there is nothing to send.
        """
        stored = await self.store.read_oldest(max_events)
        if not stored:
            return None

        ids: list[int] = []
        events: list[dict] = []
        empty_ids: list[int] = []
        for item in stored:
            stripped = item.stripped()
            if stripped:
                ids.append(item.id)
                events.append(stripped)
            else:
                empty_ids.append(item.id)

        if empty_ids:
            await self._purge(empty_ids)

        if not events:
            return None

        batch = Batch(client=self.client, events=tuple(events))
        return AssembledBatch(batch=batch, ids=tuple(ids))

    async def _purge(self, ids: list[int]) -> None:
        failed = await self.store.delete_by_ids(ids)
        self._log.warning(
            "Discarded %d empty events",
            len(ids) - len(failed),
            extra={"event_count": len(ids), "failed_ids": sorted(failed)},
        )
