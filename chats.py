import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

import storage
from auth import get_current_user
from permissions import can_access_chat
from realtime import serve, shop_chat_hub
from schemas import SenderType
from shops import load_shop, memberships_of, viewable_shop

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chats"])
ws_router = APIRouter(tags=["chats"])


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)


def load_chat(chat_id: str, current_user):
    chat = storage.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    shop = storage.get_shop(chat["shop_id"])
    if not can_access_chat(current_user, chat, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="Not allowed")
    return chat, shop


def sender_type_for(chat, current_user) -> SenderType:
    # The customer always speaks as USER, even when they also staff the shop.
    if chat["user_id"] == current_user["id"]:
        return SenderType.USER
    return SenderType.SHOP


async def post_chat_message(chat_id: str, current_user, text: str):
    chat, _ = await run_in_threadpool(load_chat, chat_id, current_user)
    sender_type = sender_type_for(chat, current_user)
    message = await run_in_threadpool(storage.add_chat_message, chat["id"], current_user["id"], sender_type, text)
    frame = {"type": "new_message", "chatId": chat["id"], "message": message}
    if sender_type == SenderType.SHOP:
        await shop_chat_hub.send(chat["user_id"], frame)
    else:
        memberships = await run_in_threadpool(storage.get_shop_memberships, chat["shop_id"])
        staff_ids = [m["user_id"] for m in memberships]
        await shop_chat_hub.broadcast(staff_ids, frame, exclude=current_user["id"])
    return message


@router.post("/shops/{shop_id}/chat", status_code=201)
def open_chat(shop_id: str, current_user=Depends(get_current_user)):
    shop = load_shop(shop_id)
    chat = storage.get_or_create_chat(shop["id"], current_user["id"])
    logger.debug("User %s opened chat %s with shop %s", current_user["id"], chat["id"], shop["id"])
    return chat


@router.get("/shops/{shop_id}/chats")
def shop_chats(shop_id: str, current_user=Depends(get_current_user)):
    shop = viewable_shop(shop_id, current_user)
    return storage.get_shop_chats(shop["id"])


@router.get("/shop-chats/{chat_id}")
def get_chat(chat_id: str, current_user=Depends(get_current_user)):
    chat, shop = load_chat(chat_id, current_user)
    return {**chat, "shop_name": shop["name"] if shop else "Unknown shop"}


@router.get("/shop-chats/{chat_id}/messages")
def chat_messages(chat_id: str, current_user=Depends(get_current_user)):
    chat, _ = load_chat(chat_id, current_user)
    messages = storage.get_chat_messages(chat["id"])
    storage.mark_chat_read(chat["id"], current_user["id"])
    return messages


@router.post("/shop-chats/{chat_id}/messages", status_code=201)
async def send_message(chat_id: str, payload: MessageRequest, current_user=Depends(get_current_user)):
    return await post_chat_message(chat_id, current_user, payload.message)


async def handle_ws_message(user, frame):
    text = str(frame.get("message") or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message must not be empty")
    message = await post_chat_message(str(frame.get("chatId", "")), user, text)
    # Echo to the sender so the client can swap its optimistic copy for the stored one.
    await shop_chat_hub.send(user["id"], {"type": "new_message", "chatId": message["chat_id"], "message": message})


@ws_router.websocket("/ws/shop-chats")
async def shop_chats_socket(websocket: WebSocket):
    await serve(websocket, shop_chat_hub, handle_ws_message)
