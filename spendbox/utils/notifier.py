"""
Per-user push channel over WebSockets.

Sockets join the room of the user they authenticated as. Publishing is
best-effort and at-most-once: a socket whose send fails is dropped and the
message is not retried. `publish` is safe to call from worker threads
(sync route handlers, the scheduler).
"""
import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi import WebSocket
from pydantic import BaseModel

logger = logging.getLogger(__name__)


def _jsonable(payload: Any) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True)
    if isinstance(payload, list):
        return [_jsonable(item) for item in payload]
    return payload


class NotificationHub:
    def __init__(self) -> None:
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._loops: Dict[WebSocket, asyncio.AbstractEventLoop] = {}
        self._lock = threading.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        with self._lock:
            self._loops[websocket] = asyncio.get_running_loop()

    def join(self, user_id: str, websocket: WebSocket) -> None:
        with self._lock:
            self._rooms[user_id].add(websocket)
        logger.info(f"Socket joined room of user {user_id}")

    def disconnect(self, websocket: WebSocket) -> None:
        with self._lock:
            self._loops.pop(websocket, None)
            for user_id in list(self._rooms):
                self._rooms[user_id].discard(websocket)
                if not self._rooms[user_id]:
                    del self._rooms[user_id]

    def room_size(self, user_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(user_id, ()))

    def publish(self, user_id: str, event: str, payload: Any = None) -> None:
        message = {"event": event, "data": _jsonable(payload)}
        with self._lock:
            targets = [(ws, self._loops.get(ws)) for ws in self._rooms.get(user_id, ())]

        for websocket, loop in targets:
            if loop is None or loop.is_closed():
                self.disconnect(websocket)
                continue
            asyncio.run_coroutine_threadsafe(self._send(websocket, message), loop)

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Dropping socket after failed send: {e}")
            self.disconnect(websocket)

    async def close(self) -> None:
        with self._lock:
            sockets = list(self._loops)
            self._loops.clear()
            self._rooms.clear()
        for websocket in sockets:
            try:
                await websocket.close()
            except Exception:
                # Already closed by the client
                continue
        logger.info(f"Notification hub closed ({len(sockets)} sockets)")
