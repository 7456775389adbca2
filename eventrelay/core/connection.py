"""Connection lifecycle manager for the persistent collector stream.

State machine:

    DISCONNECTED --connect()--> CONNECTING --handshake ok--> CONNECTED
    CONNECTING/CONNECTED --closed or failed--> DISCONNECTED (+ backoff reconnect)

After a close or failure a reconnect is scheduled after
``min(base * 2**attempts, cap)`` seconds while ``attempts < max_attempts``.
Once the attempts are used up the manager stays DISCONNECTED until
``network_restored()`` resets the counter. ``network_lost()`` tears the
connection down without scheduling anything.

Only this class mutates the connection state. Everything else reads a
``ConnectionSnapshot`` or triggers a transition.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from eventrelay.core.config import (
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_RECONNECT_BASE_DELAY,
    DEFAULT_RECONNECT_MAX_DELAY,
)
from eventrelay.core.errors import StreamConnectionError, TransportError
from eventrelay.transports.base import StreamConnection, StreamConnector


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Read-only view of the manager.

    Attributes:
        state: Current lifecycle state.
        reconnect_attempts: Reconnects scheduled since the last success.
        last_error: Why the last connection ended, if it failed.
        next_reconnect_delay: Delay of the pending reconnect, if any.
        offline: True between network_lost() and network_restored().
    """

    state: ConnectionState
    reconnect_attempts: int
    last_error: str | None
    next_reconnect_delay: float | None
    offline: bool

    @property
    def reconnect_pending(self) -> bool:
        return self.next_reconnect_delay is not None


def compute_backoff(attempts: int, base_delay: float, max_delay: float) -> float:
    """Reconnect delay for the given number of prior attempts."""
    # Larger exponents overflow float math
    if attempts >= 64:
        return max_delay
    return min(base_delay * (2**attempts), max_delay)


class ConnectionManager:
    """Owns at most one stream connection and its reconnect schedule.

    Args:
        connector: Opens stream connections.
        base_delay: First reconnect delay in seconds.
        max_delay: Cap on the reconnect delay in seconds.
        max_attempts: Reconnects scheduled before giving up.
        handshake_timeout: Seconds allowed for one handshake.
        send_timeout: Seconds allowed for one send.
        on_change: Called with a snapshot after every transition and every
            scheduled reconnect.
    """

    def __init__(
        self,
        connector: StreamConnector,
        base_delay: float = DEFAULT_RECONNECT_BASE_DELAY,
        max_delay: float = DEFAULT_RECONNECT_MAX_DELAY,
        max_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        handshake_timeout: float = 10.0,
        send_timeout: float = 10.0,
        on_change: Callable[[ConnectionSnapshot], None] | None = None,
    ) -> None:
        self.connector = connector
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.handshake_timeout = handshake_timeout
        self.send_timeout = send_timeout
        self._on_change = on_change
        self._log = logging.getLogger("eventrelay.connection")

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._last_error: str | None = None
        self._connection: StreamConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._next_delay: float | None = None
        self._offline = False
        self._closed = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def snapshot(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            state=self._state,
            reconnect_attempts=self._attempts,
            last_error=self._last_error,
            next_reconnect_delay=self._next_delay,
            offline=self._offline,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """Request a connection.

        No-op while CONNECTING or CONNECTED, after close(), or once the
        reconnect attempts are used up.

        Returns:
            True if a handshake was started.
        """
        if self._closed or self._state is not ConnectionState.DISCONNECTED:
            return False
        if self._attempts >= self.max_attempts:
            self._log.debug(
                "Connect ignored, reconnect attempts exhausted",
                extra={"attempt": self._attempts, "state": self._state.value},
            )
            return False
        self._start_attempt()
        return True

    def maintain(self) -> bool:
        """Periodic nudge: connect unless a reconnect is already scheduled."""
        if self._reconnect_handle is not None:
            return False
        return self.connect()

    def network_restored(self) -> bool:
        """Connectivity came back: reset the backoff and connect immediately.

        A handshake already in flight is left running, but its failure
        backs off from the base delay again.

        Returns:
            True if a handshake was started.
        """
        self._offline = False
        if self._state is ConnectionState.CONNECTED:
            return False
        self._log.info("Network connection restored", extra={"state": self._state.value})
        self._cancel_reconnect()
        self._attempts = 0
        if self._state is ConnectionState.CONNECTING:
            self._notify()
            return False
        return self.connect()

    def network_lost(self) -> None:
        """Connectivity went away: drop the connection, schedule nothing."""
        self._offline = True
        self._log.info("Network connection lost", extra={"state": self._state.value})
        self._cancel_reconnect()
        self._abort_task()
        self._connection = None
        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)

    async def send(self, data: str) -> None:
        """Send one message over the live stream.

        Raises:
            TransportError: If not connected, or the send failed or timed out.
        """
        connection = self._connection
        if self._state is not ConnectionState.CONNECTED or connection is None or connection.closed:
            raise TransportError("stream is not connected", method="stream")
        try:
            await asyncio.wait_for(connection.send_text(data), self.send_timeout)
        except TimeoutError as e:
            raise TransportError(
                f"stream send timed out after {self.send_timeout}s", method="stream"
            ) from e

    async def close(self) -> None:
        """Shut down for good: cancel timers, close the stream and connector."""
        self._closed = True
        self._cancel_reconnect()
        task = self._abort_task()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._connection = None
        if self._state is not ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        await self.connector.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_attempt(self) -> None:
        self._cancel_reconnect()
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        connection: StreamConnection | None = None
        error = "stream closed by collector"
        try:
            connection = await self._handshake()
            self._on_connected(connection)
            while True:
                message = await connection.receive()
                if message is None:
                    break
                self._log.debug("Stream message from collector", extra={"data": message[:200]})
        except asyncio.CancelledError:
            await self._close_quietly(connection)
            raise
        except Exception as e:
            error = str(e) or type(e).__name__

        self._on_disconnected(error)
        await self._close_quietly(connection)

    async def _handshake(self) -> StreamConnection:
        try:
            return await asyncio.wait_for(self.connector.connect(), self.handshake_timeout)
        except TimeoutError as e:
            raise StreamConnectionError(
                f"handshake timed out after {self.handshake_timeout}s"
            ) from e

    def _on_connected(self, connection: StreamConnection) -> None:
        self._connection = connection
        self._attempts = 0
        self._last_error = None
        self._set_state(ConnectionState.CONNECTED)
        self._log.info("Stream connected", extra={"state": self._state.value})

    def _on_disconnected(self, error: str) -> None:
        self._task = None
        self._connection = None
        self._last_error = error
        self._set_state(ConnectionState.DISCONNECTED)
        self._log.warning(
            f"Stream disconnected: {error}",
            extra={"state": self._state.value, "attempt": self._attempts},
        )

        if self._closed or self._offline:
            return

        if self._attempts < self.max_attempts:
            delay = compute_backoff(self._attempts, self.base_delay, self.max_delay)
            self._attempts += 1
            self._log.info(
                f"Attempting to reconnect in {delay}s (attempt {self._attempts})",
                extra={"attempt": self._attempts, "delay": delay},
            )
            self._schedule_reconnect(delay)
        else:
            self._log.error(
                "Max reconnection attempts reached",
                extra={"attempt": self._attempts, "error": error},
            )

    def _schedule_reconnect(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect_due)
        self._next_delay = delay
        self._notify()

    def _reconnect_due(self) -> None:
        self._reconnect_handle = None
        self._next_delay = None
        if self._closed or self._offline or self._state is not ConnectionState.DISCONNECTED:
            return
        # Scheduled reconnects were already counted against max_attempts
        self._start_attempt()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        self._next_delay = None

    def _abort_task(self) -> "asyncio.Task[None] | None":
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _close_quietly(self, connection: StreamConnection | None) -> None:
        if connection is None or connection.closed:
            return
        try:
            await connection.close()
        except Exception as e:
            self._log.debug("Error closing stream: %s", e)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self._notify()

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.snapshot())
        except Exception as e:
            self._log.error("Connection listener raised: %s", e)
