"""Tests for BridgeManager."""

import asyncio

from conftest import (
    STALL_SIZE,
    FakeDialer,
    FakeSession,
    LoopbackDialer,
    make_writer,
    socket_released,
    written,
)
from kvmconsole.services import BridgeManager, SessionPhase


def _admitted_session(vm_id: str = "alpha", port: int = 5901) -> FakeSession:
    session = FakeSession(path=f"/ws/vnc/{vm_id}")
    session.attributes.update(vm_id=vm_id, port=port)
    session.phase = SessionPhase.ADMITTED
    return session


class TestSessionEstablished:
    async def test_dials_configured_host_and_port(self, dialer):
        manager = BridgeManager(host="localhost", dialer=dialer)
        session = _admitted_session()

        bridge = await manager.session_established(session)

        assert bridge is not None
        assert dialer.calls == [("localhost", 5901)]
        assert session.phase is SessionPhase.CONNECTED
        assert manager.get(session.id) is bridge
        assert manager.active_sessions == 1
        await manager.close()

    async def test_handshake_prefix_arrives_first(self, dialer):
        """Browser sends "RFB " to VM alpha; those 4 bytes hit the socket first."""
        manager = BridgeManager(host="localhost", dialer=dialer)
        session = _admitted_session()
        await manager.session_established(session)
        _, writer = dialer.connections[0]

        await manager.session_received_frame(session, bytes([0x52, 0x46, 0x42, 0x20]))
        await manager.session_received_frame(session, b"003.008\n")

        assert written(writer)[:4] == b"RFB "
        assert written(writer) == b"RFB 003.008\n"
        await manager.close()

    async def test_dial_failure_closes_session(self):
        dialer = FakeDialer(error=ConnectionRefusedError("Connection refused"))
        manager = BridgeManager(max_sessions=1, dialer=dialer)
        session = _admitted_session()
        assert manager.reserve(session.id)

        bridge = await manager.session_established(session)

        assert bridge is None
        assert session.close_code == 1011
        assert session.phase is SessionPhase.CLOSED
        assert manager.get(session.id) is None
        # Slot freed for the next caller
        assert manager.reserve("other") is True

    async def test_one_bridge_per_session(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session = _admitted_session()

        first = await manager.session_established(session)
        second = await manager.session_established(session)

        assert first is second
        assert len(dialer.calls) == 1
        await manager.close()


class TestSessionReceivedFrame:
    async def test_unknown_session_drops_frame(self, dialer):
        manager = BridgeManager(dialer=dialer)

        await manager.session_received_frame(_admitted_session(), b"ignored")

        assert dialer.calls == []

    async def test_frame_after_close_is_dropped(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session = _admitted_session()
        await manager.session_established(session)
        _, writer = dialer.connections[0]

        await manager.session_closed(session, 1000)
        await manager.session_received_frame(session, b"late")

        writer.write.assert_not_called()

    async def test_sessions_are_isolated(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session_a = _admitted_session("alpha", 5901)
        session_b = _admitted_session("gamma", 5903)
        await manager.session_established(session_a)
        await manager.session_established(session_b)
        (_, writer_a), (_, writer_b) = dialer.connections

        await manager.session_received_frame(session_a, b"to-a")
        await manager.session_received_frame(session_b, b"to-b")

        assert dialer.calls == [("localhost", 5901), ("localhost", 5903)]
        assert written(writer_a) == b"to-a"
        assert written(writer_b) == b"to-b"
        await manager.close()

    async def test_blocked_session_does_not_block_others(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session_a = _admitted_session("alpha", 5901)
        session_b = _admitted_session("gamma", 5903)
        await manager.session_established(session_a)
        await manager.session_established(session_b)
        (_, writer_a), (_, writer_b) = dialer.connections

        release = asyncio.Event()

        async def slow_drain():
            await release.wait()

        writer_a.drain.side_effect = slow_drain
        stuck = asyncio.create_task(manager.session_received_frame(session_a, b"a"))
        await asyncio.sleep(0)

        await asyncio.wait_for(manager.session_received_frame(session_b, b"b"), timeout=1)

        assert written(writer_b) == b"b"
        assert not stuck.done()
        release.set()
        await stuck
        await manager.close()


class TestSessionClosed:
    async def test_browser_close_releases_socket(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session = _admitted_session()
        bridge = await manager.session_established(session)
        reader, writer = dialer.connections[0]
        # Peer keeps sending while the browser goes away
        reader.feed_data(b"\x00" * 1024)

        await asyncio.wait_for(manager.session_closed(session, 1001), timeout=1)

        writer.close.assert_called_once()
        assert not bridge.is_connected
        assert manager.get(session.id) is None
        assert session.phase is SessionPhase.CLOSED
        assert manager.active_sessions == 0

    async def test_peer_hangup_closes_browser_side(self, dialer):
        manager = BridgeManager(dialer=dialer)
        session = _admitted_session()
        await manager.session_established(session)
        reader, _ = dialer.connections[0]

        reader.feed_eof()
        await asyncio.wait_for(session.closed.wait(), timeout=1)

        assert session.close_code == 1000
        await manager.session_closed(session, session.close_code)
        assert manager.active_sessions == 0

    async def test_unknown_session_is_noop(self):
        manager = BridgeManager()

        await manager.session_closed(_admitted_session(), 1000)

        assert manager.active_sessions == 0

    async def test_close_while_write_is_stuck(self, tcp_peer):
        peer = tcp_peer(read=False)
        dialer = LoopbackDialer()
        manager = BridgeManager(host="127.0.0.1", max_sessions=1, dialer=dialer)
        session = _admitted_session(port=peer.port)
        assert manager.reserve(session.id)
        await manager.session_established(session)
        sending = asyncio.create_task(manager.session_received_frame(session, b"x" * STALL_SIZE))
        await asyncio.sleep(0.2)
        assert not sending.done()

        await asyncio.wait_for(manager.session_closed(session, 1001), timeout=3)

        await asyncio.wait_for(sending, timeout=1)
        assert manager.get(session.id) is None
        assert manager.active_sessions == 0
        assert manager.reserve("next")
        assert socket_released(dialer.writers[0])

    async def test_queued_close_shares_the_session_lock(self):
        gate = asyncio.Event()

        async def slow_dialer(host, port):
            await gate.wait()
            return asyncio.StreamReader(), make_writer()

        manager = BridgeManager(dialer=slow_dialer)
        session = _admitted_session()
        establishing = asyncio.create_task(manager.session_established(session))
        await asyncio.sleep(0)
        lock = manager._locks[session.id]
        closing = asyncio.create_task(manager.session_closed(session, 1000))
        await asyncio.sleep(0)

        gate.set()
        await establishing
        # Close now holds or awaits the lock the dial held
        assert manager._locks[session.id] is lock
        await closing

        assert manager.get(session.id) is None
        assert session.id not in manager._locks
        assert manager.active_sessions == 0


class TestCapacity:
    def test_reserve_until_full(self):
        manager = BridgeManager(max_sessions=2)

        assert manager.reserve("a")
        assert manager.reserve("b")
        assert not manager.reserve("c")

    def test_reserve_is_idempotent_per_session(self):
        manager = BridgeManager(max_sessions=1)

        assert manager.reserve("a")
        assert manager.reserve("a")

    async def test_closed_session_frees_slot(self, dialer):
        manager = BridgeManager(max_sessions=1, dialer=dialer)
        session = _admitted_session()
        assert manager.reserve(session.id)
        await manager.session_established(session)
        assert not manager.reserve("next")

        await manager.session_closed(session, 1000)

        assert manager.reserve("next")


class TestShutdown:
    async def test_close_tears_down_all_tunnels(self, dialer):
        manager = BridgeManager(dialer=dialer)
        sessions = [_admitted_session("alpha", 5901), _admitted_session("gamma", 5903)]
        for session in sessions:
            await manager.session_established(session)

        await manager.close()

        assert manager.active_sessions == 0
        for session, (_, writer) in zip(sessions, dialer.connections):
            assert session.close_code == 1001
            assert session.phase is SessionPhase.CLOSED
            writer.close.assert_called_once()

    async def test_shutdown_while_write_is_stuck(self, tcp_peer):
        peer = tcp_peer(read=False)
        dialer = LoopbackDialer()
        manager = BridgeManager(host="127.0.0.1", dialer=dialer)
        session = _admitted_session(port=peer.port)
        await manager.session_established(session)
        sending = asyncio.create_task(manager.session_received_frame(session, b"x" * STALL_SIZE))
        await asyncio.sleep(0.2)

        await asyncio.wait_for(manager.close(), timeout=3)

        await asyncio.wait_for(sending, timeout=1)
        assert session.close_code == 1001
        assert socket_released(dialer.writers[0])
