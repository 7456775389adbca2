"""Error taxonomy for the relay pipeline.

Each class marks where a failure came from, which decides how it is handled:

    ProducerError: malformed or empty event at submit time. Dropped and logged.
    StorageError: the local event store failed. Appends drop the event,
        deletes leave the data in place for redelivery.
    TransportError: stream send or request dispatch failed (including
        timeouts). Drives the retry tracker.
    StreamConnectionError: handshake or stream failure. Drives the connection
        state machine and never reaches the delivery path.
"""

from collections.abc import Iterable


class RelayError(Exception):
    """Base class for all relay errors."""


class ProducerError(RelayError):
    """Raised when a submitted record cannot be accepted."""


class StorageError(RelayError):
    """Raised when the event store fails.

    Attributes:
        operation: Store operation that failed (append, read, delete, ...).
        failed_ids: Ids that were not removed, for delete failures.
    """

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        failed_ids: Iterable[int] = (),
    ):
        self.operation = operation
        self.failed_ids = frozenset(failed_ids)
        super().__init__(message)


class TransportError(RelayError):
    """Raised when a batch could not be handed to the collector.

    Attributes:
        method: Transport that failed ("stream" or "request").
        status: HTTP status for request failures, if a response was received.
    """

    def __init__(self, message: str, method: str, status: int | None = None):
        self.method = method
        self.status = status
        super().__init__(message)


class StreamConnectionError(RelayError):
    """Raised when the persistent stream cannot be opened or breaks."""
