"""eventrelay - Reliable local event delivery to a remote collector."""

from eventrelay.core import (
    Batch,
    ConnectionState,
    ControlResult,
    CycleResult,
    CycleStatus,
    DeliveryMethod,
    ProducerError,
    RelayAgent,
    RelayError,
    RelaySettings,
    RetryDecision,
    StorageError,
    StoredEvent,
    StreamConnectionError,
    TransportError,
)
from eventrelay.stores import EventStore, InMemoryEventStore, SqliteEventStore

__version__ = "0.1.0"

__all__ = [
    # Core
    "RelayAgent",
    "RelaySettings",
    "Batch",
    "StoredEvent",
    # Outcomes
    "ControlResult",
    "CycleResult",
    "CycleStatus",
    "DeliveryMethod",
    "RetryDecision",
    "ConnectionState",
    # Errors
    "RelayError",
    "ProducerError",
    "StorageError",
    "TransportError",
    "StreamConnectionError",
    # Stores
    "EventStore",
    "InMemoryEventStore",
    "SqliteEventStore",
    # Meta
    "__version__",
]
