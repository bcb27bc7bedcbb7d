"""
WebSocket endpoint for live expense events.

Protocol: the client sends {"event": "join-room", "token": "<jwt>"} and is
answered with {"event": "joined", "data": {"userId": ...}}. From then on it
receives expense-added, expense-updated, expense-deleted and expense-shared
events for its own account. Sockets that do not join within
WS_JOIN_TIMEOUT_SECONDS are closed with 1008.
"""
import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from spendbox.core.config import settings
from spendbox.core.deps import load_user_from_token
from spendbox.core.errors import AppError

router = APIRouter()
logger = logging.getLogger(__name__)


async def _refuse(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket):
    hub = websocket.app.state.notifier
    await hub.connect(websocket)
    loop = asyncio.get_running_loop()
    join_deadline = loop.time() + settings.WS_JOIN_TIMEOUT_SECONDS
    joined = False
    try:
        while True:
            if joined:
                text = await websocket.receive_text()
            else:
                try:
                    text = await asyncio.wait_for(websocket.receive_text(), max(join_deadline - loop.time(), 0))
                except asyncio.TimeoutError:
                    await _refuse(websocket, "Join timed out")
                    return
            try:
                message = json.loads(text)
            except ValueError:
                continue
            if not isinstance(message, dict) or message.get("event") != "join-room":
                continue

            try:
                user = await run_in_threadpool(load_user_from_token, str(message.get("token") or ""))
            except AppError as e:
                await _refuse(websocket, e.message)
                return

            requested = message.get("userId")
            if requested and requested != user.user_id:
                await _refuse(websocket, "Cannot join another user's room")
                return

            hub.join(user.user_id, websocket)
            joined = True
            await websocket.send_json({"event": "joined", "data": {"userId": user.user_id}})
    except WebSocketDisconnect:
        logger.debug("Socket disconnected")
    finally:
        hub.disconnect(websocket)
