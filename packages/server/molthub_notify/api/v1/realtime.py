"""
WebSocket endpoint for realtime notification push, mounted at `settings.ws_path`.

Credential sources, first match wins: `X-Auth-Token` header, `Authorization:
Bearer` header, `?token=` query parameter. A missing or invalid credential
closes the socket with 4001 before it is registered.

Client frames: `{"type": "ping"}` answered with a `pong` envelope.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from molthub_notify.api.v1.deps import get_gateway
from molthub_notify.core.auth import extract_ws_credential
from molthub_notify.core.config import get_settings
from molthub_notify.core.errors import AuthenticationError
from molthub_notify.core.realtime import WS_CLOSE_UNAUTHORIZED, RealtimeGateway

settings = get_settings()
log = structlog.get_logger()

router = APIRouter()


@router.websocket(settings.ws_path)
async def notifications_websocket(
    websocket: WebSocket,
    gateway: RealtimeGateway = Depends(get_gateway),
):
    try:
        agent_id = gateway.authenticate(extract_ws_credential(websocket))
    except AuthenticationError as exc:
        log.warning("realtime.rejected", reason=exc.message)
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason="authentication_failed")
        return

    info = await gateway.connect(websocket, agent_id)
    try:
        while True:
            raw = await websocket.receive_text()
            await gateway.handle_client_frame(info, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(info)
