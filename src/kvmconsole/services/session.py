"""Browser-side tunnel sessions."""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect, status

from kvmconsole.errors import TransportClosedError

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    CONNECTED = "connected"
    CLOSED = "closed"


class TunnelSession(ABC):
    """One browser end of a tunnel.

    The id is assigned when the transport hands us the request. Admission
    fills ``attributes`` with ``vm_id`` and ``port``.
    """

    def __init__(self, path: str, session_id: str | None = None) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.path = path
        self.attributes: dict[str, Any] = {}
        self.phase = SessionPhase.PENDING

    @abstractmethod
    async def send_bytes(self, data: bytes) -> None:
        """Push one binary frame to the browser.

        Raises:
            TransportClosedError: The browser side is already gone.
        """

    @abstractmethod
    async def close(
        self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str | None = None
    ) -> None:
        """Close the browser side. Safe to call more than once."""


class WebSocketSession(TunnelSession):
    """Tunnel session over a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__(path=websocket.url.path)
        self._ws = websocket
        self._closed = False
        self.close_code: int | None = None

    async def accept(self) -> None:
        await self._ws.accept()

    async def send_bytes(self, data: bytes) -> None:
        if self._closed:
            raise TransportClosedError(f"Session {self.id} is closed")
        try:
            await self._ws.send_bytes(data)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise TransportClosedError(f"Session {self.id} is closed: {e}") from e

    async def close(
        self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str | None = None
    ) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        try:
            await self._ws.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug(f"Session {self.id} already closed: {e}")

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield binary frames from the browser until it disconnects."""
        while True:
            message = await self._ws.receive()
            if message["type"] == "websocket.disconnect":
                self._closed = True
                if self.close_code is None:
                    self.close_code = message.get("code", status.WS_1000_NORMAL_CLOSURE)
                return
            data = message.get("bytes")
            if data is None:
                logger.debug(f"Dropping text frame on session {self.id}")
                continue
            yield data
