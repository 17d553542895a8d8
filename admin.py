import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError

import storage
from auth import get_current_user, require_role
from roles import ADMIN_TIER, OWNER_TIER, Role, is_moderation_tier
from schemas import ComplaintStatus, SenderType, SiteSettings as SiteSettingsSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["admin"])

PUBLIC_SETTINGS = ("site_name", "site_description", "contact_email", "terms_and_conditions", "privacy_policy", "about_us")


class BannedNameRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)


# Banned names
@router.get("/banned-names")
def list_banned_names(admin=Depends(require_role(*ADMIN_TIER))):
    return storage.get_banned_names()


@router.post("/banned-names", status_code=201)
def create_banned_name(payload: BannedNameRequest, admin=Depends(require_role(*ADMIN_TIER))):
    try:
        banned = storage.create_banned_name(payload.name.strip())
    except storage.ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Admin %s banned the name %r", admin["id"], banned["name"])
    return banned


@router.delete("/banned-names/{banned_id}")
def delete_banned_name(banned_id: str, admin=Depends(require_role(*ADMIN_TIER))):
    try:
        storage.delete_banned_name(banned_id)
    except storage.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Banned name removed"}


# Site settings
@router.get("/settings")
def get_settings():
    return storage.get_settings()


@router.get("/settings/public")
def get_public_settings():
    settings = storage.get_settings()
    return {key: settings.get(key) for key in PUBLIC_SETTINGS}


@router.patch("/settings")
def update_settings(updates: Dict[str, Any] = Body(...), admin=Depends(require_role(*ADMIN_TIER))):
    if not updates:
        raise HTTPException(status_code=400, detail="No data provided")
    unknown = set(updates) - set(SiteSettingsSchema.model_fields)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown settings: {', '.join(sorted(unknown))}")
    try:
        settings = SiteSettingsSchema(**{**storage.get_settings(), **updates})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    logger.info("Admin %s updated settings: %s", admin["id"], ", ".join(sorted(updates)))
    return storage.update_settings(settings)


# Staff maintenance
@router.post("/admin/update-staff-status")
def update_staff_status(owner=Depends(require_role(*OWNER_TIER))):
    """Give every SECURITY and ADMIN account the premium and verified badges."""
    updated = []
    for user in storage.list_users():
        if user["role"] in (Role.SECURITY.value, Role.ADMIN.value):
            u = storage.update_user(user["id"], {"is_premium": True, "is_verified": True})
            updated.append({k: u[k] for k in ("id", "username", "role", "is_premium", "is_verified")})
    return {"message": f"Updated {len(updated)} staff users with premium and verified status", "updated_users": updated}


@router.get("/admin/dashboard")
def dashboard(admin=Depends(require_role(*ADMIN_TIER))):
    shops = storage.get_all_shops()
    return {
        "users": len(storage.list_users()),
        "staff": len(storage.get_staff_users()),
        "blocked_users": len(storage.get_blocked_users()),
        "online_sessions": len(storage.get_active_sessions()),
        "shops": len(shops),
        "products": len(storage.list_products()),
        "pending_complaints": len(storage.get_pending_complaints(storage.PLATFORM)),
        "pending_shop_complaints": len(storage.get_pending_complaints(storage.SHOP)),
        "orders": len(storage.get_orders()),
        "transactions": sum(s.get("transactions_count", 0) for s in shops),
    }


@router.get("/notifications/counts")
def notification_counts(current_user=Depends(get_current_user)):
    uid = current_user["id"]
    counts = {"complaints": 0, "chats": 0, "shop_complaints": 0, "shop_chats": 0}

    own_chats = [c["id"] for c in storage.get_user_chats(uid)]
    counts["chats"] = storage.count_unread(own_chats, uid)

    shop_ids = {m["shop_id"] for m in storage.get_user_memberships(uid)}
    for shop_id in shop_ids:
        chat_ids = [c["id"] for c in storage.get_shop_chats(shop_id) if c["user_id"] != uid]
        counts["shop_chats"] += storage.count_unread(chat_ids, uid, sender_type=SenderType.USER.value)
        counts["shop_complaints"] += sum(
            1 for c in storage.get_shop_complaints(shop_id=shop_id) if c["status"] == ComplaintStatus.PENDING.value
        )

    if is_moderation_tier(current_user.get("role")):
        counts["complaints"] = len(storage.get_pending_complaints(storage.PLATFORM))
    return counts
