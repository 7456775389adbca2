"""Event and batch models for eventrelay."""

import json
import time
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from eventrelay.core.errors import ProducerError

# Maximum serialized record size (1MB)
MAX_RECORD_SIZE = 1_000_000

# Keys starting with this prefix belong to the relay and never leave the agent
INTERNAL_KEY_PREFIX = "_"


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def strip_internal(record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of record without internal keys."""
    return {
        key: value
        for key, value in record.items()
        if not (isinstance(key, str) and key.startswith(INTERNAL_KEY_PREFIX))
    }


def normalize_record(record: Any, received_ts: int | None = None) -> dict[str, Any]:
    """Validate a producer record and stamp receipt metadata.

    Adds ``received_ts``, plus ``ts`` and ``event_id`` when the producer did
    not supply them. The caller's mapping is not modified.

    Raises:
        ProducerError: If the record is not a mapping, is empty after
            stripping internal keys, is not JSON-serializable, or exceeds
            MAX_RECORD_SIZE.
    """
    if not isinstance(record, Mapping):
        raise ProducerError(f"event must be a mapping, got {type(record).__name__}")

    data = strip_internal(record)
    if not data:
        raise ProducerError("event is empty after stripping internal keys")

    stamp = received_ts if received_ts is not None else now_ms()
    data["received_ts"] = stamp
    data.setdefault("ts", stamp)
    data.setdefault("event_id", str(uuid4()))

    try:
        serialized = json.dumps(data)
    except (TypeError, ValueError) as e:
        raise ProducerError(f"event must be JSON-serializable: {e}") from e

    byte_length = len(serialized.encode("utf-8"))
    if byte_length > MAX_RECORD_SIZE:
        raise ProducerError(
            f"event exceeds maximum size of {MAX_RECORD_SIZE} bytes (got {byte_length} bytes)"
        )
    return data


def compute_fingerprint(ids: Iterable[int]) -> str:
    """Deterministic key for a batch: the ordered member ids joined by commas."""
    return ",".join(str(i) for i in ids)


def make_batch_id(at: datetime | None = None) -> str:
    """Batch identifier derived from the assembly time."""
    moment = at or datetime.now(UTC)
    return f"batch-{moment.isoformat(timespec='milliseconds')}"


class StoredEvent(BaseModel):
    """A record held by an event store.

    Attributes:
        id: Store-assigned ordinal. Unique, increasing, never reused.
        record: Producer data, including the ``type`` tag and ``ts``.
    """

    id: int
    record: dict[str, Any]

    model_config = {"frozen": True}

    @property
    def type(self) -> str | None:
        value = self.record.get("type")
        return value if isinstance(value, str) else None

    @property
    def ts(self) -> int | None:
        value = self.record.get("ts")
        return value if isinstance(value, int) else None

    def stripped(self) -> dict[str, Any]:
        return strip_internal(self.record)

    def as_export(self) -> dict[str, Any]:
        """Record with its store id, as returned by export."""
        return {"id": self.id, **self.record}


class ClientInfo(BaseModel):
    """Identity of the sending agent."""

    agent: str
    version: str

    model_config = {"extra": "forbid", "frozen": True}


class Batch(BaseModel):
    """Immutable delivery payload.

    Attributes:
        batch_id: Log-friendly identifier derived from assembly time.
        client: Agent identity and software version.
        events: Ordered records with internal keys and store ids removed.
    """

    batch_id: str = Field(default_factory=make_batch_id)
    client: ClientInfo
    events: tuple[dict[str, Any], ...]

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("events")
    @classmethod
    def validate_events(cls, v: tuple[dict[str, Any], ...]) -> tuple[dict[str, Any], ...]:
        """A batch always carries at least one event."""
        if not v:
            raise ValueError("batch must contain at least one event")
        return v

    def to_json(self) -> str:
        """Wire form shared by the stream and request transports."""
        return self.model_dump_json()


class AssembledBatch(BaseModel):
    """A batch together with the store ids it was built from."""

    batch: Batch
    ids: tuple[int, ...]

    model_config = {"frozen": True}

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.ids)

    @property
    def batch_id(self) -> str:
        return self.batch.batch_id

    def __len__(self) -> int:
        return len(self.ids)
