"""Local event store implementations."""

from eventrelay.stores.base import EventStore
from eventrelay.stores.memory import InMemoryEventStore
from eventrelay.stores.sqlite import SqliteEventStore

__all__ = ["EventStore", "InMemoryEventStore", "SqliteEventStore"]
