import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

import moderation
import storage
from auth import get_current_user, hash_password, reject_banned, require_role
from database import utcnow
from permissions import can_assign_role, can_modify_account
from roles import ADMIN_TIER, MODERATION_TIER, OWNER_TIER, Role, is_admin_tier
from schemas import OrderStatus, User as UserSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])


# Request Models
class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=40)
    password: str = Field(..., min_length=6, max_length=72)
    display_name: Optional[str] = Field(None, max_length=60)
    role: Role = Role.USER


class UpdateRoleRequest(BaseModel):
    role: Role


class UpdateStatusRequest(BaseModel):
    is_premium: Optional[bool] = None
    is_verified: Optional[bool] = None


class BlockRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    duration: Optional[str] = Field(None, description="Free text shown to the user")
    duration_hours: Optional[int] = Field(None, gt=0)
    expires_at: Optional[datetime] = None


class BulkStatusRequest(BaseModel):
    roles: List[Role]
    is_premium: Optional[bool] = None
    is_verified: Optional[bool] = None


# Helpers

def load_user(user_id: str):
    user = storage.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def modifiable_target(user_id: str, current_user):
    target = load_user(user_id)
    if not can_modify_account(current_user, target):
        raise HTTPException(status_code=403, detail="You cannot modify this user")
    return target


def block_expiry(payload: BlockRequest) -> Optional[datetime]:
    if payload.expires_at:
        expires_at = payload.expires_at
        if expires_at.tzinfo is not None:
            expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)
        return expires_at
    if payload.duration_hours:
        return utcnow() + timedelta(hours=payload.duration_hours)
    return None


def require_self_or_admin(user_id: str, current_user) -> None:
    if user_id != current_user["id"] and not is_admin_tier(current_user.get("role")):
        raise HTTPException(status_code=403, detail="Not allowed")


# User management routes
@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    search: Optional[str] = Query(None, max_length=100),
    admin=Depends(require_role(*ADMIN_TIER)),
):
    return [storage.public_user(u) for u in storage.list_users(role.value if role else None, search)]


@router.get("/users/staff")
def list_staff(admin=Depends(require_role(*ADMIN_TIER))):
    return [storage.public_user(u) for u in storage.get_staff_users()]


@router.get("/users/staff/online")
def online_staff(current_user=Depends(get_current_user)):
    online_ids = {s["user_id"] for s in storage.get_active_sessions()}
    return [storage.public_user(u) for u in storage.get_staff_users() if u["id"] in online_ids]


@router.post("/users", status_code=201)
def create_user(payload: CreateUserRequest, owner=Depends(require_role(*OWNER_TIER))):
    if not can_assign_role(owner["role"], payload.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions to grant this role")
    reject_banned(payload.username, payload.display_name)
    user_doc = UserSchema(
        username=payload.username,
        password_hash=hash_password(payload.password),
        display_name=payload.display_name or payload.username,
        role=payload.role,
    )
    try:
        user = storage.create_user(user_doc)
    except storage.ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return storage.public_user(user)


@router.post("/users/bulk-update-status")
def bulk_update_status(payload: BulkStatusRequest, owner=Depends(require_role(*OWNER_TIER))):
    updates = payload.model_dump(include={"is_premium", "is_verified"}, exclude_none=True)
    roles = {r.value for r in payload.roles}
    updated = []
    for user in storage.list_users():
        if user["role"] in roles and updates:
            updated.append(storage.public_user(storage.update_user(user["id"], updates)))
    return {"message": f"Updated {len(updated)} users", "updated_users": updated}


@router.get("/users/{user_id}")
def get_user(user_id: str):
    return storage.public_user(load_user(user_id))


@router.patch("/users/{user_id}/role")
def update_role(user_id: str, payload: UpdateRoleRequest, current_user=Depends(get_current_user)):
    target = modifiable_target(user_id, current_user)
    if not can_assign_role(current_user["role"], payload.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions to grant this role")
    user = storage.update_user(target["id"], {"role": payload.role.value})
    logger.info("User %s changed role of %s from %s to %s", current_user["id"], target["id"], target["role"], payload.role.value)
    return storage.public_user(user)


@router.patch("/users/{user_id}/status")
def update_status(user_id: str, payload: UpdateStatusRequest, current_user=Depends(get_current_user)):
    target = modifiable_target(user_id, current_user)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="Nothing to update")
    return storage.public_user(storage.update_user(target["id"], updates))


@router.patch("/users/{user_id}/verify")
def verify_user(user_id: str, current_user=Depends(require_role(*ADMIN_TIER))):
    target = modifiable_target(user_id, current_user)
    user = storage.update_user(target["id"], {"is_verified": not target.get("is_verified", False)})
    return storage.public_user(user)


@router.patch("/users/{user_id}/block")
def block_user(user_id: str, payload: BlockRequest, current_user=Depends(get_current_user)):
    target = modifiable_target(user_id, current_user)
    user = moderation.block(
        target, payload.reason, duration=payload.duration, expires_at=block_expiry(payload), blocked_by=current_user,
    )
    return storage.public_user(user)


@router.patch("/users/{user_id}/unblock")
def unblock_user(user_id: str, current_user=Depends(get_current_user)):
    target = modifiable_target(user_id, current_user)
    return storage.public_user(moderation.unblock(target))


@router.delete("/users/{user_id}")
def delete_user(user_id: str, owner=Depends(require_role(*OWNER_TIER))):
    target = modifiable_target(user_id, owner)
    storage.delete_user(target["id"])
    return {"message": "User deleted"}


@router.get("/users/{user_id}/shop-chats")
def user_shop_chats(user_id: str, current_user=Depends(get_current_user)):
    require_self_or_admin(user_id, current_user)
    return storage.get_user_chats(user_id)


@router.get("/users/{user_id}/orders/stats")
def order_stats(user_id: str, current_user=Depends(get_current_user)):
    require_self_or_admin(user_id, current_user)
    orders = storage.get_orders(user_id=user_id)
    return {
        "total": len(orders),
        "completed": sum(1 for o in orders if o["status"] == OrderStatus.COMPLETED.value),
        "cancelled": sum(1 for o in orders if o["status"] == OrderStatus.CANCELLED.value),
    }


@router.get("/users/{user_id}/transactions/stats")
def transaction_stats(user_id: str, current_user=Depends(get_current_user)):
    require_self_or_admin(user_id, current_user)
    purchases = [o for o in storage.get_orders(user_id=user_id) if o["status"] != OrderStatus.CANCELLED.value]
    sales = 0
    for shop in storage.get_shops_by_owner(user_id):
        sales += sum(1 for o in storage.get_orders(shop_id=shop["id"]) if o["status"] != OrderStatus.CANCELLED.value)
    return {"purchases": len(purchases), "sales": sales}


# Session routes
@router.get("/sessions/active")
def active_sessions(staff=Depends(require_role(*MODERATION_TIER))):
    return storage.get_active_sessions()


@router.get("/sessions/expired")
def expired_sessions(staff=Depends(require_role(*MODERATION_TIER))):
    return storage.get_expired_sessions()


@router.get("/sessions/user")
def my_sessions(current_user=Depends(get_current_user)):
    return storage.get_user_sessions(current_user["id"])
