"""
WebSocket fan-out.

Delivery is best-effort and at-most-once: a frame goes to whichever socket is
registered for the user id right now. A failed send drops that socket; nothing
is queued or retried, clients catch up by polling the REST endpoints.

Frames are JSON objects with a "type" key. Clients open with
{"type": "auth", "token": ...}; the server answers {"type": "auth_ok"} or
{"type": "error", "message": ...}.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from fastapi import HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder

from auth import authenticate_token

logger = logging.getLogger(__name__)

Frame = Dict[str, Any]
MessageHandler = Callable[[Dict[str, Any], Frame], Awaitable[None]]


class ConnectionHub:
    def __init__(self, name: str):
        self.name = name
        self._clients: Dict[str, WebSocket] = {}

    def register(self, user_id: str, websocket: WebSocket) -> None:
        self._clients[user_id] = websocket
        logger.info("User %s connected to %s", user_id, self.name)

    def unregister(self, websocket: WebSocket) -> Optional[str]:
        for user_id, ws in list(self._clients.items()):
            if ws is websocket:
                del self._clients[user_id]
                logger.info("User %s disconnected from %s", user_id, self.name)
                return user_id
        return None

    async def send(self, user_id: str, payload: Frame) -> bool:
        websocket = self._clients.get(user_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(jsonable_encoder(payload))
        except Exception as e:
            logger.warning("Dropping %s socket of user %s: %s", self.name, user_id, e)
            self._clients.pop(user_id, None)
            return False
        return True

    async def broadcast(self, user_ids: Iterable[str], payload: Frame, exclude: Optional[str] = None) -> int:
        sent = 0
        for user_id in set(user_ids):
            if user_id != exclude and await self.send(user_id, payload):
                sent += 1
        return sent


complaint_hub = ConnectionHub("complaints")
shop_chat_hub = ConnectionHub("shop-chats")


async def serve(websocket: WebSocket, hub: ConnectionHub, on_message: MessageHandler) -> None:
    """Run one client connection: authenticate, then hand "message" frames to on_message."""
    await websocket.accept()
    user = None
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except (ValueError, json.JSONDecodeError):
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "message": "Frames must be JSON objects"})
                continue
            kind = data.get("type")
            try:
                if kind == "auth":
                    user, _ = await run_in_threadpool(authenticate_token, str(data.get("token", "")))
                    # A socket belongs to one user at a time; re-auth moves it.
                    hub.unregister(websocket)
                    hub.register(user["id"], websocket)
                    await websocket.send_json({"type": "auth_ok", "userId": user["id"]})
                elif kind == "message":
                    if user is None:
                        await websocket.send_json({"type": "error", "message": "Not authenticated"})
                        continue
                    await on_message(user, data)
                else:
                    await websocket.send_json({"type": "error", "message": f"Unknown frame type: {kind}"})
            except HTTPException as e:
                await websocket.send_json(jsonable_encoder({"type": "error", "status": e.status_code, "message": e.detail}))
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
