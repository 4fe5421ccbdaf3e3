from typing import Dict, Set
from fastapi import WebSocket
import asyncio
import json
import logging

logger = logging.getLogger(__name__)


class ChangeBroadcaster:
    """Fans open-order change events out to the websockets of one room."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, room_id: str, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.rooms.setdefault(room_id, set()).add(websocket)
            logger.info("WebSocket connected room=%s, total connections=%d", room_id, len(self.rooms[room_id]))

    async def disconnect(self, room_id: str, websocket: WebSocket):
        async with self._lock:
            conns = self.rooms.get(room_id)
            if conns is not None:
                conns.discard(websocket)
                if not conns:
                    del self.rooms[room_id]
            logger.info("WebSocket disconnected room=%s", room_id)

    def connection_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, ()))

    async def publish(self, room_id: str, message: dict):
        data = json.dumps(message, default=str)
        async with self._lock:
            conns = list(self.rooms.get(room_id, ()))
        logger.info("Publishing %s to %d connections in room %s", message.get('eventType'), len(conns), room_id)
        dead = []
        for ws in conns:
            try:
                await ws.send_text(data)
            except Exception:
                logger.exception("Failed to send websocket message")
                dead.append(ws)
        for ws in dead:
            await self.disconnect(room_id, ws)

# singleton
broadcaster = ChangeBroadcaster()
