# app/api/realtime.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def socket_endpoint(ws: WebSocket):
    hub = ws.app.state.hub
    conn_id = await hub.connect(ws)
    user_id: Optional[str] = None
    try:
        while True:
            raw = await ws.receive_text()
            user_id = await hub.handle_message(conn_id, raw, user_id)
    except WebSocketDisconnect:
        logger.debug("ws closed: conn=%s user=%s", conn_id, user_id)
    finally:
        hub.disconnect(conn_id, user_id)
