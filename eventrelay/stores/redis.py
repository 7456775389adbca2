"""Redis Streams event store for eventrelay."""

from __future__ import annotations

import json
import logging
from collections.abc import Collection, Mapping
from typing import Any

from eventrelay.core.errors import StorageError
from eventrelay.core.event import StoredEvent

try:
    import redis.asyncio as redis
    from redis.exceptions import RedisError
except ImportError as e:
    raise ImportError(
        "Redis store requires the 'redis' package. "
        "Install it with: pip install eventrelay[redis]"
    ) from e

# Assigns the next ordinal, appends under "<ordinal>-0" and trims in one step,
# so concurrent appenders can never write ids out of order.
_APPEND_SCRIPT = """
local id = redis.call('INCR', KEYS[2])
redis.call('XADD', KEYS[1], id .. '-0', 'event', ARGV[1])
local evicted = 0
local cap = tonumber(ARGV[2])
if cap > 0 then
    evicted = redis.call('XTRIM', KEYS[1], 'MAXLEN', cap)
end
return {id, evicted}
"""


def _entry_id(event_id: int) -> str:
    return f"{event_id}-0"


def _ordinal(message_id: str | bytes) -> int:
    if isinstance(message_id, bytes):
        message_id = message_id.decode("utf-8")
    return int(message_id.split("-", 1)[0])


class RedisEventStore:
    """Event store on a Redis stream.

    Stream entry ids are ``<ordinal>-0`` where the ordinal comes from a
    counter key, so ids are plain increasing integers like the other stores.

    Args:
        url: Redis connection URL (default: redis://localhost:6379)
        stream_key: Name of the Redis stream (default: eventrelay:events)
        max_events: Retention cap. 0 means unbounded (default).
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        stream_key: str = "eventrelay:events",
        max_events: int = 0,
    ) -> None:
        self._url = url
        self._stream_key = stream_key
        self._seq_key = f"{stream_key}:seq"
        self._max_events = max_events
        self._evicted = 0
        self._client: redis.Redis | None = None
        self._append_script: Any = None
        self._log = logging.getLogger("eventrelay.stores.redis")

    @property
    def stream_key(self) -> str:
        return self._stream_key

    @property
    def evicted_count(self) -> int:
        return self._evicted

    async def _ensure_connected(self) -> redis.Redis:
        """Return the client, creating it on first use."""
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
            self._append_script = self._client.register_script(_APPEND_SCRIPT)
            self._log.debug("Connected to Redis at %s", self._url)
        return self._client

    async def append(self, record: Mapping[str, Any]) -> int:
        await self._ensure_connected()
        try:
            data = json.dumps(dict(record))
            event_id, evicted = await self._append_script(
                keys=[self._stream_key, self._seq_key],
                args=[data, self._max_events],
            )
        except (RedisError, TypeError, ValueError) as e:
            raise StorageError(f"Append failed: {e}", "append") from e

        if evicted:
            self._evicted += int(evicted)
            self._log.warning(
                "Retention limit reached, evicted %d oldest events",
                int(evicted),
                extra={"event_count": int(evicted), "max_events": self._max_events},
            )
        return int(event_id)

    async def read_oldest(self, limit: int) -> list[StoredEvent]:
        if limit <= 0:
            return []
        return await self._range(count=limit)

    async def read_all(self) -> list[StoredEvent]:
        return await self._range(count=None)

    async def _range(self, count: int | None) -> list[StoredEvent]:
        client = await self._ensure_connected()
        try:
            entries = await client.xrange(self._stream_key, "-", "+", count=count)
        except RedisError as e:
            raise StorageError(f"Read failed: {e}", "read") from e

        out: list[StoredEvent] = []
        for message_id, fields in entries:
            raw = fields.get("event")
            try:
                record = json.loads(raw) if raw is not None else {}
            except ValueError:
                self._log.warning("Undecodable payload for entry %s, treating as empty", message_id)
                record = {}
            out.append(
                StoredEvent(id=_ordinal(message_id), record=record if isinstance(record, dict) else {})
            )
        return out

    async def delete_by_ids(self, ids: Collection[int]) -> set[int]:
        client = await self._ensure_connected()
        failed: set[int] = set()
        for event_id in ids:
            try:
                await client.xdel(self._stream_key, _entry_id(event_id))
            except RedisError as e:
                failed.add(event_id)
                self._log.error("Delete failed for event %d: %s", event_id, e)
        return failed

    async def count(self) -> int:
        client = await self._ensure_connected()
        try:
            return int(await client.xlen(self._stream_key))
        except RedisError as e:
            raise StorageError(f"Count failed: {e}", "count") from e

    async def delete_stream(self) -> None:
        """Remove the stream and its counter (test cleanup)."""
        client = await self._ensure_connected()
        await client.delete(self._stream_key, self._seq_key)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._append_script = None
            self._log.debug("Closed Redis connection")
