"""
Real-time push over WebSockets.

Clients connect to /ws and may identify themselves with
{"type": "authenticate", "userId": "..."}; {"type": "logout"} or a
disconnect forgets the mapping. Shop status is broadcast to everybody, but
only when it actually changed since the previous push.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from app.core.cache import KeyValueStore
from app.core.utils import utcnow
from app.schemas.settings import ShopStatus

logger = logging.getLogger(__name__)

SHOP_STATUS_EVENT = "shopStatusUpdate"


class ConnectionHub:
    def __init__(self, user_map: KeyValueStore):
        self.connections: Dict[str, WebSocket] = {}
        self.user_map = user_map  # user id -> connection id

    async def connect(self, ws: WebSocket) -> str:
        await ws.accept()
        conn_id = uuid.uuid4().hex
        self.connections[conn_id] = ws
        return conn_id

    def authenticate(self, conn_id: str, user_id: str) -> None:
        if conn_id in self.connections and user_id:
            self.user_map.set(user_id, conn_id)
            logger.info("ws authenticated: user=%s conn=%s", user_id, conn_id)

    def logout(self, user_id: str) -> None:
        if user_id:
            self.user_map.delete(user_id)

    def disconnect(self, conn_id: str, user_id: Optional[str] = None) -> None:
        self.connections.pop(conn_id, None)
        if user_id and self.user_map.get(user_id) == conn_id:
            self.user_map.delete(user_id)

    async def handle_message(self, conn_id: str, raw: str, current_user: Optional[str]) -> Optional[str]:
        """
        Returns the user bound to this connection after the message.
        """
        try:
            msg = json.loads(raw)
        except ValueError:
            return current_user
        if not isinstance(msg, dict):
            return current_user
        kind = msg.get("type")
        if kind == "authenticate":
            user_id = str(msg.get("userId") or "").strip()
            if user_id:
                self.authenticate(conn_id, user_id)
                await self._send(conn_id, "authenticated", {"userId": user_id})
                return user_id
        elif kind == "logout" and current_user:
            self.logout(current_user)
            return None
        elif kind == "ping":
            await self._send(conn_id, "pong", {})
        return current_user

    async def _send(self, conn_id: str, event: str, payload: Any) -> bool:
        ws = self.connections.get(conn_id)
        if ws is None:
            return False
        try:
            await ws.send_json({"event": event, "data": payload})
            return True
        except (RuntimeError, ConnectionError, WebSocketDisconnect) as e:
            logger.warning("ws send failed, dropping conn=%s: %s", conn_id, e)
            self.connections.pop(conn_id, None)
            return False

    async def emit(self, event: str, payload: Any) -> int:
        sent = 0
        for conn_id in list(self.connections):
            if await self._send(conn_id, event, payload):
                sent += 1
        return sent

    async def emit_to_user(self, user_id: str, event: str, payload: Any) -> bool:
        conn_id = self.user_map.get(user_id)
        if conn_id is None:
            return False
        return await self._send(conn_id, event, payload)


def status_fingerprint(status: ShopStatus) -> str:
    return json.dumps(
        {"isOpen": status.isOpen, "nextOpenTime": status.nextOpenTime, "closingTime": status.closingTime},
        sort_keys=True,
    )


class ShopStatusBroadcaster:
    def __init__(self, hub: ConnectionHub, compute: Callable[[datetime], ShopStatus],
                 clock: Callable[[], datetime] = utcnow):
        self.hub = hub
        self.compute = compute
        self.clock = clock
        self.last_fingerprint: Optional[str] = None

    async def tick(self, now: Optional[datetime] = None) -> bool:
        status = await asyncio.to_thread(self.compute, now or self.clock())
        fp = status_fingerprint(status)
        if fp == self.last_fingerprint:
            return False
        self.last_fingerprint = fp
        await self.hub.emit(SHOP_STATUS_EVENT, status.model_dump())
        logger.info("shop status pushed: open=%s next=%s close=%s",
                    status.isOpen, status.nextOpenTime, status.closingTime)
        return True


async def run_periodically(interval: float, job: Callable[[], Awaitable[Any]], name: str) -> None:
    """
    Run `job` every `interval` seconds until cancelled; a failing run is
    logged and the schedule continues.
    """
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("periodic job %s failed", name)
        await asyncio.sleep(interval)
