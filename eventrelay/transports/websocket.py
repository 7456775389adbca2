"""WebSocket stream transport built on aiohttp."""

import logging

import aiohttp

from eventrelay.core.errors import StreamConnectionError, TransportError

logger = logging.getLogger("eventrelay.transports.websocket")


class WebSocketConnection:
    """Wraps an aiohttp client websocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send_text(self, data: str) -> None:
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"WebSocket send failed: {e}", method="stream") from e

    async def receive(self) -> str | None:
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data.decode("utf-8", errors="replace")
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise StreamConnectionError(f"WebSocket error: {self._ws.exception()}")
        # CLOSE, CLOSING, CLOSED
        return None

    async def close(self) -> None:
        await self._ws.close()


class WebSocketConnector:
    """Opens WebSocket connections to the collector.

    Args:
        url: ws:// or wss:// endpoint.
        heartbeat: Seconds between protocol-level pings; a missed pong
            closes the connection.
        session: Optional shared ClientSession. If not provided, one is
            created on first connect and closed by close().
    """

    def __init__(
        self,
        url: str,
        heartbeat: float | None = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._heartbeat = heartbeat
        self._session = session
        self._owns_session = session is None

    @property
    def url(self) -> str:
        return self._url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def connect(self) -> WebSocketConnection:
        session = self._get_session()
        try:
            ws = await session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, OSError) as e:
            raise StreamConnectionError(f"WebSocket handshake with {self._url} failed: {e}") from e
        logger.debug("WebSocket handshake complete", extra={"url": self._url})
        return WebSocketConnection(ws)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
