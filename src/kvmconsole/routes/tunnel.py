"""WebSocket endpoint tunneling VNC to VM display servers."""

import logging

from fastapi import APIRouter, WebSocket, status

from kvmconsole.dependencies import AdmissionWsDep, BridgesWsDep
from kvmconsole.services import WebSocketSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/vnc/{vm_path:path}")
async def vnc_tunnel_endpoint(
    websocket: WebSocket,
    admission: AdmissionWsDep,
    bridges: BridgesWsDep,
) -> None:
    """Tunnel binary WebSocket frames to the VM's VNC server.

    Rejected requests are closed before ``accept()``, so the upgrade is
    refused and no frame is ever exchanged.
    """
    session = WebSocketSession(websocket)
    decision = await admission.admit(session)
    if not decision.accepted:
        code = (
            status.WS_1013_TRY_AGAIN_LATER
            if decision.busy
            else status.WS_1008_POLICY_VIOLATION
        )
        await session.close(code=code)
        return

    try:
        await session.accept()
        if await bridges.session_established(session) is None:
            return
        async for frame in session.frames():
            await bridges.session_received_frame(session, frame)
    finally:
        await bridges.session_closed(session, session.close_code)
