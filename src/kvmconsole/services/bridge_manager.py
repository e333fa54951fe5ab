"""Registry of live tunnel bridges keyed by session id."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import status

from kvmconsole.errors import DialError
from kvmconsole.services.bridge import READ_CHUNK_SIZE, Dialer, StreamBridge
from kvmconsole.services.session import SessionPhase, TunnelSession

logger = logging.getLogger(__name__)


class BridgeManager:
    """Creates, routes to, and tears down one StreamBridge per session.

    The session-id -> bridge map is the only shared mutable state. A per-key
    ``asyncio.Lock`` serialises inserts, lookups and removals for the same
    session while sessions never block one another. Writes happen outside the
    lock: a write stuck on a slow display server must not hold up close, and
    the bridge itself drops writes once it is closed.

    Capacity is bounded by ``max_sessions`` slots. A slot is reserved at
    admission and released when the session closes or the dial fails.
    """

    def __init__(
        self,
        host: str = "localhost",
        max_sessions: int = 10,
        connect_timeout: float = 5.0,
        chunk_size: int = READ_CHUNK_SIZE,
        dialer: Dialer | None = None,
    ) -> None:
        self._host = host
        self._max_sessions = max_sessions
        self._connect_timeout = connect_timeout
        self._chunk_size = chunk_size
        self._dialer = dialer
        self._bridges: dict[str, StreamBridge] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._slots: set[str] = set()

    @property
    def active_sessions(self) -> int:
        return len(self._bridges)

    def get(self, session_id: str) -> StreamBridge | None:
        return self._bridges.get(session_id)

    # ── capacity ────────────────────────────────────────────────

    def reserve(self, session_id: str) -> bool:
        """Claim a tunnel slot for *session_id*. False when the pool is full."""
        if session_id in self._slots:
            return True
        if len(self._slots) >= self._max_sessions:
            logger.warning(f"Tunnel capacity reached ({self._max_sessions}), rejecting {session_id}")
            return False
        self._slots.add(session_id)
        return True

    def release(self, session_id: str) -> None:
        self._slots.discard(session_id)

    # ── session events ──────────────────────────────────────────

    async def session_established(self, session: TunnelSession) -> StreamBridge | None:
        """Dial the session's display server and start pumping.

        On dial failure the session is closed with a server error and None
        is returned.
        """
        vm_id = session.attributes["vm_id"]
        port = int(session.attributes["port"])

        async with self._locked(session.id):
            existing = self._bridges.get(session.id)
            if existing is not None:
                logger.warning(f"Session {session.id} already has a bridge")
                return existing

            bridge = StreamBridge(
                self._host,
                port,
                session,
                chunk_size=self._chunk_size,
                dialer=self._dialer,
            )
            try:
                await bridge.open(self._connect_timeout)
            except DialError as e:
                logger.error(f"VNC dial failed for VM {vm_id}: {e}")
                self.release(session.id)
                session.phase = SessionPhase.CLOSED
                await session.close(
                    code=status.WS_1011_INTERNAL_ERROR, reason="Cannot connect to VM display"
                )
                return None

            self._bridges[session.id] = bridge
            session.phase = SessionPhase.CONNECTED
            bridge.start()

        logger.info(f"Tunnel {session.id} open: VM {vm_id} -> {self._host}:{port}")
        return bridge

    async def session_received_frame(self, session: TunnelSession, frame: bytes) -> None:
        """Forward a browser frame to the session's bridge, dropping it if none is live."""
        async with self._locked(session.id):
            bridge = self._bridges.get(session.id)
        if bridge is None or not bridge.is_connected:
            return
        await bridge.send_outbound(frame)

    async def session_closed(self, session: TunnelSession, code: int | None = None) -> None:
        """Remove and close the session's bridge, if any."""
        async with self._locked(session.id):
            bridge = self._bridges.pop(session.id, None)
            if bridge is not None:
                await bridge.close()
            self.release(session.id)
            session.phase = SessionPhase.CLOSED
        if bridge is not None:
            logger.info(f"Tunnel {session.id} closed (code {code})")

    async def close(self) -> None:
        """Close every live bridge and its session (application shutdown)."""
        for session_id in list(self._bridges):
            async with self._locked(session_id):
                bridge = self._bridges.pop(session_id, None)
                if bridge is None:
                    continue
                session = bridge.session
                await bridge.close()
                self.release(session_id)
                session.phase = SessionPhase.CLOSED
                await session.close(code=status.WS_1001_GOING_AWAY)
        self._slots.clear()

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        """Hold the lock for *session_id*.

        The entry is dropped once nobody holds or waits on it, so a queued
        caller and a newcomer always share the same lock.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[session_id] - 1
            if remaining:
                self._lock_users[session_id] = remaining
            else:
                del self._lock_users[session_id]
                del self._locks[session_id]
