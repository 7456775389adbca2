"""Batch delivery over the stream, with the request path as fallback."""

import logging
from dataclasses import dataclass
from enum import Enum

from eventrelay.core.connection import ConnectionManager
from eventrelay.core.errors import TransportError
from eventrelay.core.event import Batch
from eventrelay.transports.base import RequestSender


class DeliveryMethod(Enum):
    STREAM = "stream"
    REQUEST = "request"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one delivery attempt.

    Attributes:
        success: True if the collector accepted the batch.
        method: Transport that produced the final outcome.
        error: Failure reason when success is False.
        stream_error: Why the stream was skipped or failed before falling
            back, if it was tried.
        status: HTTP status of the request path, if one was received.
    """

    success: bool
    method: DeliveryMethod
    error: str | None = None
    stream_error: str | None = None
    status: int | None = None


class TransportDelivery:
    """Delivers one batch, stream first.

    Policy:
    1. If the stream is connected, send over it. A send failure falls
       through to the request path instead of failing the batch.
    2. POST to the collector. Anything but a 2xx status is a failure.
    """

    def __init__(self, connection: ConnectionManager, request: RequestSender) -> None:
        self.connection = connection
        self.request = request
        self._log = logging.getLogger("eventrelay.transport")

    async def deliver(self, batch: Batch) -> DeliveryResult:
        body = batch.to_json()
        stream_error: str | None = None

        if self.connection.is_connected:
            try:
                await self.connection.send(body)
                return DeliveryResult(success=True, method=DeliveryMethod.STREAM)
            except TransportError as e:
                stream_error = str(e)
                self._log.error(
                    f"WebSocket send failed: {e}",
                    extra={"batch_id": batch.batch_id, "method": DeliveryMethod.STREAM.value},
                )

        try:
            status = await self.request.post(body)
        except TransportError as e:
            self._log.error(
                f"HTTP POST error: {e}",
                extra={"batch_id": batch.batch_id, "method": DeliveryMethod.REQUEST.value},
            )
            return DeliveryResult(
                success=False,
                method=DeliveryMethod.REQUEST,
                error=str(e),
                stream_error=stream_error,
            )

        if not 200 <= status < 300:
            message = f"HTTP POST failed: {status}"
            self._log.warning(
                message,
                extra={"batch_id": batch.batch_id, "method": DeliveryMethod.REQUEST.value},
            )
            return DeliveryResult(
                success=False,
                method=DeliveryMethod.REQUEST,
                error=message,
                stream_error=stream_error,
                status=status,
            )

        return DeliveryResult(
            success=True,
            method=DeliveryMethod.REQUEST,
            stream_error=stream_error,
            status=status,
        )
