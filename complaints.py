import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

import moderation
import storage
from auth import get_current_user
from permissions import (
    can_access_complaint,
    can_access_shop_complaint,
    can_manage_complaint,
    can_manage_shop_complaint,
    can_view_shop,
)
from realtime import complaint_hub, serve
from roles import is_moderation_tier
from schemas import Complaint as ComplaintSchema, ShopComplaint as ShopComplaintSchema
from shops import load_shop, memberships_of

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["complaints"])
ws_router = APIRouter(tags=["complaints"])


# Request Models
class CreateComplaintRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    target_user_id: Optional[str] = None


class CreateShopComplaintRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)


class MessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


# Helpers

def load_complaint(complaint_id: str, current_user):
    complaint = storage.get_complaint(complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    if not can_access_complaint(current_user, complaint):
        raise HTTPException(status_code=403, detail="Not allowed")
    return complaint


def load_shop_complaint(shop_id: str, complaint_id: str, current_user):
    shop = load_shop(shop_id)
    complaint = storage.get_shop_complaint(shop["id"], complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    if not can_access_shop_complaint(current_user, shop, complaint, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="Not allowed")
    return shop, complaint


def tag_shop_complaints(complaints, shops_by_id=None):
    tagged = []
    for c in complaints:
        shop = (shops_by_id or {}).get(c["shop_id"]) or storage.get_shop(c["shop_id"])
        tagged.append({**c, "is_shop_complaint": True, "shop_name": shop["name"] if shop else "Unknown shop"})
    return tagged


def newest_first(complaints):
    return sorted(complaints, key=lambda c: (c["created_at"], c["id"]), reverse=True)


def apply_transition(action, *args):
    try:
        return action(*args)
    except moderation.TransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except moderation.AssignmentError as e:
        raise HTTPException(status_code=400, detail=str(e))


def complaint_audience(kind: str, complaint):
    audience = {complaint["user_id"]}
    if complaint.get("assigned_to_id"):
        audience.add(complaint["assigned_to_id"])
    if kind == storage.SHOP:
        audience.update(m["user_id"] for m in storage.get_shop_memberships(complaint["shop_id"]))
    return audience


async def post_complaint_message(kind: str, complaint, sender, text: str):
    message = await run_in_threadpool(storage.add_complaint_message, complaint["id"], sender["id"], text)
    audience = await run_in_threadpool(complaint_audience, kind, complaint)
    await complaint_hub.broadcast(
        audience,
        {"type": "new_message", "complaintId": complaint["id"], "message": message},
    )
    return message


# Platform complaints
@router.post("/complaints", status_code=201)
def create_complaint(payload: CreateComplaintRequest, current_user=Depends(get_current_user)):
    if payload.target_user_id and not storage.get_user(payload.target_user_id):
        raise HTTPException(status_code=404, detail="Target user not found")
    complaint_doc = ComplaintSchema(user_id=current_user["id"], **payload.model_dump())
    complaint = storage.create_complaint(complaint_doc)
    logger.info("Complaint %s filed by %s", complaint["id"], current_user["id"])
    return complaint


@router.get("/complaints")
def list_complaints(current_user=Depends(get_current_user)):
    if not is_moderation_tier(current_user.get("role")):
        return storage.get_user_complaints(current_user["id"])
    shops_by_id = {s["id"]: s for s in storage.get_all_shops()}
    platform = [{**c, "is_shop_complaint": False} for c in storage.get_all_complaints()]
    return newest_first(platform + tag_shop_complaints(storage.get_shop_complaints(), shops_by_id))


@router.get("/complaints/user")
def my_complaints(current_user=Depends(get_current_user)):
    platform = [{**c, "is_shop_complaint": False} for c in storage.get_user_complaints(current_user["id"])]
    shop = tag_shop_complaints(storage.get_shop_complaints(user_id=current_user["id"]))
    return newest_first(platform + shop)


@router.get("/complaints/{complaint_id}")
def get_complaint(complaint_id: str, current_user=Depends(get_current_user)):
    return load_complaint(complaint_id, current_user)


@router.get("/complaints/{complaint_id}/messages")
def complaint_messages(complaint_id: str, current_user=Depends(get_current_user)):
    complaint = load_complaint(complaint_id, current_user)
    return storage.get_complaint_messages(complaint["id"])


@router.post("/complaints/{complaint_id}/messages", status_code=201)
async def add_complaint_message(complaint_id: str, payload: MessageRequest, current_user=Depends(get_current_user)):
    complaint = await run_in_threadpool(load_complaint, complaint_id, current_user)
    return await post_complaint_message(storage.PLATFORM, complaint, current_user, payload.message)


def managed_complaint(complaint_id: str, current_user):
    if not can_manage_complaint(current_user.get("role")):
        raise HTTPException(status_code=403, detail="You cannot manage complaints")
    complaint = storage.get_complaint(complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return complaint


@router.patch("/complaints/{complaint_id}/assign")
def assign_complaint(complaint_id: str, current_user=Depends(get_current_user)):
    complaint = managed_complaint(complaint_id, current_user)
    return apply_transition(moderation.assign, storage.PLATFORM, complaint, current_user)


@router.patch("/complaints/{complaint_id}/resolve")
def resolve_complaint(complaint_id: str, current_user=Depends(get_current_user)):
    complaint = managed_complaint(complaint_id, current_user)
    return apply_transition(moderation.resolve, storage.PLATFORM, complaint)


@router.patch("/complaints/{complaint_id}/reject")
def reject_complaint(complaint_id: str, payload: Optional[RejectRequest] = None, current_user=Depends(get_current_user)):
    complaint = managed_complaint(complaint_id, current_user)
    return apply_transition(moderation.reject, storage.PLATFORM, complaint, payload.reason if payload else None)


# Shop complaints
@router.get("/shops/{shop_id}/complaints")
def list_shop_complaints(shop_id: str, current_user=Depends(get_current_user)):
    shop = load_shop(shop_id)
    if is_moderation_tier(current_user.get("role")) or can_view_shop(current_user, shop, memberships_of(current_user)):
        return storage.get_shop_complaints(shop_id=shop["id"])
    # Customers see the complaints they filed themselves.
    return storage.get_shop_complaints(shop_id=shop["id"], user_id=current_user["id"])


@router.post("/shops/{shop_id}/complaints", status_code=201)
def create_shop_complaint(shop_id: str, payload: CreateShopComplaintRequest, current_user=Depends(get_current_user)):
    shop = load_shop(shop_id)
    complaint_doc = ShopComplaintSchema(shop_id=shop["id"], user_id=current_user["id"], **payload.model_dump())
    complaint = storage.create_complaint(complaint_doc)
    logger.info("Shop complaint %s filed against shop %s by %s", complaint["id"], shop["id"], current_user["id"])
    return complaint


@router.get("/shops/{shop_id}/complaints/{complaint_id}")
def get_shop_complaint(shop_id: str, complaint_id: str, current_user=Depends(get_current_user)):
    _, complaint = load_shop_complaint(shop_id, complaint_id, current_user)
    return complaint


@router.get("/shops/{shop_id}/complaints/{complaint_id}/messages")
def shop_complaint_messages(shop_id: str, complaint_id: str, current_user=Depends(get_current_user)):
    _, complaint = load_shop_complaint(shop_id, complaint_id, current_user)
    return storage.get_complaint_messages(complaint["id"])


@router.post("/shops/{shop_id}/complaints/{complaint_id}/messages", status_code=201)
async def add_shop_complaint_message(shop_id: str, complaint_id: str, payload: MessageRequest,
                                     current_user=Depends(get_current_user)):
    _, complaint = await run_in_threadpool(load_shop_complaint, shop_id, complaint_id, current_user)
    return await post_complaint_message(storage.SHOP, complaint, current_user, payload.message)


def managed_shop_complaint(shop_id: str, complaint_id: str, current_user):
    shop = load_shop(shop_id)
    if not can_manage_shop_complaint(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="You cannot manage this shop's complaints")
    complaint = storage.get_shop_complaint(shop["id"], complaint_id)
    if not complaint:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return complaint


@router.patch("/shops/{shop_id}/complaints/{complaint_id}/assign")
def assign_shop_complaint(shop_id: str, complaint_id: str, current_user=Depends(get_current_user)):
    complaint = managed_shop_complaint(shop_id, complaint_id, current_user)
    return apply_transition(moderation.assign, storage.SHOP, complaint, current_user)


@router.patch("/shops/{shop_id}/complaints/{complaint_id}/resolve")
def resolve_shop_complaint(shop_id: str, complaint_id: str, current_user=Depends(get_current_user)):
    complaint = managed_shop_complaint(shop_id, complaint_id, current_user)
    return apply_transition(moderation.resolve, storage.SHOP, complaint)


@router.patch("/shops/{shop_id}/complaints/{complaint_id}/reject")
def reject_shop_complaint(shop_id: str, complaint_id: str, payload: Optional[RejectRequest] = None,
                          current_user=Depends(get_current_user)):
    complaint = managed_shop_complaint(shop_id, complaint_id, current_user)
    return apply_transition(moderation.reject, storage.SHOP, complaint, payload.reason if payload else None)


# WebSocket
async def handle_ws_message(user, frame):
    text = str(frame.get("message") or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message must not be empty")
    complaint_id = str(frame.get("complaintId", ""))
    if frame.get("shopId"):
        _, complaint = await run_in_threadpool(load_shop_complaint, str(frame["shopId"]), complaint_id, user)
        await post_complaint_message(storage.SHOP, complaint, user, text)
    else:
        complaint = await run_in_threadpool(load_complaint, complaint_id, user)
        await post_complaint_message(storage.PLATFORM, complaint, user, text)


@ws_router.websocket("/ws/complaints")
async def complaints_socket(websocket: WebSocket):
    await serve(websocket, complaint_hub, handle_ws_message)
