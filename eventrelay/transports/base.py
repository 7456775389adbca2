"""Transport protocols.

The core only talks to these interfaces. The aiohttp implementations live
beside them; tests substitute in-memory fakes.
"""

from typing import Protocol


class StreamConnection(Protocol):
    """An open persistent stream to the collector."""

    @property
    def closed(self) -> bool: ...

    async def send_text(self, data: str) -> None:
        """Send one text message.

        Raises:
            TransportError: If the message could not be written.
        """
        ...

    async def receive(self) -> str | None:
        """Wait for the next message; None once the stream has closed.

        Raises:
            StreamConnectionError: If the stream failed.
        """
        ...

    async def close(self) -> None: ...


class StreamConnector(Protocol):
    """Opens stream connections."""

    async def connect(self) -> StreamConnection:
        """Perform the handshake.

        Raises:
            StreamConnectionError: If the handshake failed.
        """
        ...

    async def close(self) -> None: ...


class RequestSender(Protocol):
    """One-shot request/response delivery."""

    async def post(self, body: str) -> int:
        """POST a JSON body and return the response status.

        Raises:
            TransportError: If no response was received.
        """
        ...

    async def close(self) -> None: ...
