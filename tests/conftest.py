"""Pytest configuration and fixtures for kvmconsole tests."""

import asyncio
import socket
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from kvmconsole.errors import TransportClosedError
from kvmconsole.services import InMemoryRegistry, PortResolver, TunnelSession


class FakeSession(TunnelSession):
    """Tunnel session that records what the bridge pushes to the browser."""

    def __init__(self, path: str = "/ws/vnc/alpha", session_id: str | None = None) -> None:
        super().__init__(path, session_id)
        self.sent: list[bytes] = []
        self.closed = asyncio.Event()
        self.close_code: int | None = None
        self.fail_send = False

    async def send_bytes(self, data: bytes) -> None:
        if self.fail_send or self.closed.is_set():
            raise TransportClosedError(f"Session {self.id} is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self.closed.is_set():
            return
        self.close_code = code
        self.closed.set()


def make_writer() -> MagicMock:
    writer = MagicMock()
    writer.write = MagicMock()
    writer.drain = AsyncMock()
    writer.close = MagicMock()
    writer.wait_closed = AsyncMock()
    return writer


def written(writer: MagicMock) -> bytes:
    """Concatenate everything written to a mock writer, in call order."""
    return b"".join(call.args[0] for call in writer.write.call_args_list)


class FakeDialer:
    """Stands in for ``asyncio.open_connection`` and records every dial."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, int]] = []
        self.connections: list[tuple[asyncio.StreamReader, MagicMock]] = []

    async def __call__(self, host: str, port: int):
        self.calls.append((host, port))
        if self.error is not None:
            raise self.error
        reader = asyncio.StreamReader()
        writer = make_writer()
        self.connections.append((reader, writer))
        return reader, writer


# More than loopback socket buffers hold, so a write to a non-reading peer stalls in drain()
STALL_SIZE = 64 * 1024 * 1024


class LoopbackDialer:
    """Dials for real and keeps each writer so tests can inspect the socket."""

    def __init__(self) -> None:
        self.writers: list[asyncio.StreamWriter] = []

    async def __call__(self, host: str, port: int):
        reader, writer = await asyncio.open_connection(host, port)
        self.writers.append(writer)
        return reader, writer


def socket_released(writer: asyncio.StreamWriter) -> bool:
    return writer.transport.get_extra_info("socket").fileno() == -1


class TcpPeer:
    """Loopback TCP server that accepts one connection on a background thread.

    Sends *greeting* on accept, reads until *expect* bytes arrived, then
    hangs up. With ``read=False`` it holds the connection open without ever
    reading until closed.
    """

    def __init__(self, greeting: bytes = b"", expect: int = 0, read: bool = True) -> None:
        self._sock = socket.create_server(("127.0.0.1", 0))
        self._sock.settimeout(5)
        self.port = self._sock.getsockname()[1]
        self.received = bytearray()
        self.done = threading.Event()
        self._greeting = greeting
        self._expect = expect
        self._read = read
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> "TcpPeer":
        self._thread.start()
        return self

    def _serve(self) -> None:
        try:
            conn, _ = self._sock.accept()
        except OSError:
            return
        with conn:
            conn.settimeout(5)
            if self._greeting:
                conn.sendall(self._greeting)
            if not self._read:
                self._stop.wait(timeout=10)
            while self._read and len(self.received) < self._expect:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                self.received.extend(chunk)
        self.done.set()

    def close(self) -> None:
        self._stop.set()
        self._sock.close()
        self._thread.join(timeout=5)


@pytest.fixture
def registry():
    """Registry with one VM per display situation."""
    registry = InMemoryRegistry()
    registry._put("alpha", display_port=5901, running=True, instance_id=1)
    registry._put("beta", display_port=None, running=True, instance_id=2)
    registry._put("gamma", display_port=-1, running=True, instance_id=3)
    registry._put("delta", display_port=-1, running=False, instance_id=None)
    return registry


@pytest.fixture
def resolver(registry):
    return PortResolver(registry, host="localhost")


@pytest.fixture
def dialer():
    return FakeDialer()


@pytest.fixture
def tcp_peer():
    peers: list[TcpPeer] = []

    def _make(greeting: bytes = b"", expect: int = 0, read: bool = True) -> TcpPeer:
        peer = TcpPeer(greeting=greeting, expect=expect, read=read).start()
        peers.append(peer)
        return peer

    yield _make
    for peer in peers:
        peer.close()
