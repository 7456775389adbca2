"""Core components of the eventrelay delivery pipeline.

Types:
    StoredEvent: A record held by an event store, keyed by its ordinal.
    Batch: Immutable delivery payload with client metadata.
    AssembledBatch: A batch plus the store ids it was built from.
    RelaySettings: Validated agent configuration.

Pipeline:
    BatchAssembler: Builds batches from the oldest stored events.
    ConnectionManager: Persistent stream lifecycle with bounded backoff.
    TransportDelivery: Stream-first delivery with request fallback.
    RetryTracker: Failure counts per batch fingerprint.
    DeliveryScheduler: Periodic, non-overlapping delivery cycles.
    RelayAgent: Wires the pipeline, exposes submit and the control surface.

Errors:
    RelayError, ProducerError, StorageError, TransportError,
    StreamConnectionError.
"""

from eventrelay.core.errors import (
    ProducerError,
    RelayError,
    StorageError,
    StreamConnectionError,
    TransportError,
)
from eventrelay.core.event import (
    MAX_RECORD_SIZE,
    AssembledBatch,
    Batch,
    ClientInfo,
    StoredEvent,
    compute_fingerprint,
    normalize_record,
)
from eventrelay.core.config import RelaySettings
from eventrelay.core.assembler import BatchAssembler
from eventrelay.core.connection import (
    ConnectionManager,
    ConnectionSnapshot,
    ConnectionState,
    compute_backoff,
)
from eventrelay.core.connectivity import ConnectivityMonitor
from eventrelay.core.retry import RetryDecision, RetryTracker
from eventrelay.core.stats import ActivityStats, compute_stats
from eventrelay.core.transport import DeliveryMethod, DeliveryResult, TransportDelivery
from eventrelay.core.scheduler import (
    CycleResult,
    CycleStatus,
    DeliveryScheduler,
    SchedulerStats,
)
from eventrelay.core.agent import ControlResult, RelayAgent

__all__ = [
    "ActivityStats",
    "AssembledBatch",
    "Batch",
    "BatchAssembler",
    "ClientInfo",
    "ConnectionManager",
    "ConnectionSnapshot",
    "ConnectionState",
    "ConnectivityMonitor",
    "ControlResult",
    "CycleResult",
    "CycleStatus",
    "DeliveryMethod",
    "DeliveryResult",
    "DeliveryScheduler",
    "MAX_RECORD_SIZE",
    "ProducerError",
    "RelayAgent",
    "RelayError",
    "RelaySettings",
    "RetryDecision",
    "RetryTracker",
    "SchedulerStats",
    "StorageError",
    "StoredEvent",
    "StreamConnectionError",
    "TransportDelivery",
    "TransportError",
    "compute_backoff",
    "compute_fingerprint",
    "compute_stats",
    "normalize_record",
]
