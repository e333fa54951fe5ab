"""Byte pump between one tunnel session and one display server socket."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from fastapi import status

from kvmconsole.errors import DialError, StreamError
from kvmconsole.services.session import TunnelSession

logger = logging.getLogger(__name__)

# Bytes read from the display server per outgoing frame
READ_CHUNK_SIZE = 4096

Dialer = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class BridgeState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class StreamBridge:
    """Owns one TCP connection to a VNC server and relays it to a session.

    The bridge only borrows the session: it pushes frames to it and asks it
    to close, but never owns its lifetime. State only moves forward,
    ``connecting -> connected -> closed``.
    """

    def __init__(
        self,
        host: str,
        port: int,
        session: TunnelSession,
        chunk_size: int = READ_CHUNK_SIZE,
        dialer: Dialer | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._session = session
        self._chunk_size = chunk_size
        self._dialer = dialer or asyncio.open_connection
        self._state = BridgeState.CONNECTING
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._pump_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> TunnelSession:
        return self._session

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is BridgeState.CONNECTED

    async def open(self, timeout: float = 5.0) -> None:
        """Dial the display server.

        Raises:
            DialError: Connection refused, timed out, or the host did not resolve.
        """
        if self._state is not BridgeState.CONNECTING:
            raise RuntimeError(f"Bridge to {self.host}:{self.port} already opened")
        try:
            async with asyncio.timeout(timeout):
                self._reader, self._writer = await self._dialer(self.host, self.port)
        except TimeoutError as e:
            self._state = BridgeState.CLOSED
            raise DialError(self.host, self.port, "timed out") from e
        except OSError as e:
            self._state = BridgeState.CLOSED
            raise DialError(self.host, self.port, str(e)) from e
        self._state = BridgeState.CONNECTED
        logger.info(f"Connected to display server {self.host}:{self.port}")

    def start(self) -> asyncio.Task[None]:
        """Start pumping display server output to the session."""
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(
                self.pump_inbound(), name=f"vnc-pump-{self._session.id}"
            )
        return self._pump_task

    async def pump_inbound(self) -> None:
        """Forward socket reads to the session, in read order, until either side ends."""
        if self._reader is None:
            raise RuntimeError(f"Bridge to {self.host}:{self.port} is not open")
        close_code = status.WS_1000_NORMAL_CLOSURE
        try:
            while self.is_connected:
                data = await self._reader.read(self._chunk_size)
                if not data:
                    logger.debug(f"Display server {self.host}:{self.port} closed the connection")
                    break
                await self._session.send_bytes(data)
        except StreamError as e:
            # Browser went away first; its close path tears the rest down
            logger.debug(f"Session {self._session.id} gone while pumping: {e}")
            await self.close()
            return
        except OSError as e:
            if self.is_connected:
                logger.warning(f"Read error from {self.host}:{self.port}: {e}")
            close_code = status.WS_1011_INTERNAL_ERROR

        await self.close()
        await self._session.close(code=close_code)

    async def send_outbound(self, data: bytes) -> None:
        """Write browser bytes to the display server. Never raises."""
        if not self.is_connected or self._writer is None:
            return
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            if not self.is_connected:
                return
            logger.debug(f"Write error to {self.host}:{self.port}: {e}")
            await self.close()
            await self._session.close(code=status.WS_1011_INTERNAL_ERROR)

    async def close(self) -> None:
        """Release the socket and stop the pump. Idempotent."""
        if self._state is BridgeState.CLOSED:
            return
        self._state = BridgeState.CLOSED

        if self._writer is not None:
            self._writer.close()
            # Discard unsent output so a peer that stopped reading cannot hold the socket open
            self._writer.transport.abort()

        task = self._pump_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._writer is not None:
            try:
                await self._writer.wait_closed()
            except OSError as e:
                logger.debug(f"Error closing socket to {self.host}:{self.port}: {e}")
        logger.info(f"Closed bridge to {self.host}:{self.port}")
