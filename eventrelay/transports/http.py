"""HTTP request transport built on aiohttp."""

import aiohttp

from eventrelay.core.errors import TransportError

JSON_HEADERS = {"Content-Type": "application/json"}


class HttpRequestSender:
    """POSTs JSON bodies to the collector.

    Args:
        url: Collector endpoint.
        timeout: Total seconds allowed per request.
        session: Optional shared ClientSession. If not provided, one is
            created on first use and closed by close().
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
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

    async def post(self, body: str) -> int:
        session = self._get_session()
        try:
            async with session.post(
                self._url,
                data=body,
                headers=JSON_HEADERS,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                await response.read()
                return response.status
        except TimeoutError as e:
            raise TransportError(
                f"HTTP POST timed out after {self._timeout}s", method="request"
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"HTTP POST error: {e}", method="request") from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
