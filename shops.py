import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

import storage
from auth import get_current_user, reject_banned, require_role
from permissions import (
    can_grant_shop_role,
    can_manage_shop,
    can_manage_shop_staff,
    can_view_shop,
)
from roles import ADMIN_TIER, Role, is_admin_tier, is_shop_staff_role
from schemas import Shop as ShopSchema, ShopStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["shops"])


# Request Models
class CreateShopRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str = Field("", max_length=2000)
    avatar_url: str = ""
    owner_id: Optional[str] = None


class UpdateShopRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = Field(None, max_length=2000)
    avatar_url: Optional[str] = None
    status: Optional[ShopStatus] = None
    is_verified: Optional[bool] = None
    block_reason: Optional[str] = None


class BlockShopRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AddStaffRequest(BaseModel):
    username: str
    role: Role


class UpdateStaffRequest(BaseModel):
    role: Role


_ADMIN_ONLY_FIELDS = {"status", "is_verified", "block_reason"}


# Helpers

def load_shop(shop_id: str):
    shop = storage.get_shop(shop_id)
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    return shop


def memberships_of(user):
    return storage.get_user_memberships(user["id"])


def managed_shop(shop_id: str, current_user):
    shop = load_shop(shop_id)
    if not can_manage_shop(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="You cannot manage this shop")
    return shop


def viewable_shop(shop_id: str, current_user):
    shop = load_shop(shop_id)
    if not can_view_shop(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="Not allowed")
    return shop


# Shop routes
@router.get("/shops")
def list_shops(search: Optional[str] = Query(None, max_length=100), owner_id: Optional[str] = None):
    if owner_id:
        return storage.get_shops_by_owner(owner_id)
    if search:
        return storage.search_shops(search)
    return storage.get_all_shops()


@router.get("/shops/{shop_id}")
def get_shop(shop_id: str):
    return load_shop(shop_id)


@router.post("/shops", status_code=201)
def create_shop(payload: CreateShopRequest, current_user=Depends(get_current_user)):
    role = current_user.get("role")
    if not is_admin_tier(role) and not is_shop_staff_role(role):
        raise HTTPException(status_code=403, detail="You cannot create shops")
    owner_id = payload.owner_id or current_user["id"]
    if owner_id != current_user["id"] and not is_admin_tier(role):
        raise HTTPException(status_code=403, detail="Only administrators can create shops for other users")
    reject_banned(payload.name)
    limit = storage.get_settings().get("max_shops_per_user", 0)
    if limit and storage.count_owned_shops(owner_id) >= limit:
        raise HTTPException(status_code=400, detail=f"A user may own at most {limit} shops")
    shop_doc = ShopSchema(owner_id=owner_id, name=payload.name, description=payload.description, avatar_url=payload.avatar_url)
    try:
        return storage.create_shop(shop_doc)
    except storage.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/shops/{shop_id}")
def update_shop(shop_id: str, payload: UpdateShopRequest, current_user=Depends(get_current_user)):
    shop = managed_shop(shop_id, current_user)
    updates = payload.model_dump(exclude_unset=True, mode="json")
    if _ADMIN_ONLY_FIELDS & updates.keys() and not is_admin_tier(current_user.get("role")):
        raise HTTPException(status_code=403, detail="Only administrators can change shop status")
    if "name" in updates:
        reject_banned(updates["name"])
    return storage.update_shop(shop["id"], updates)


@router.patch("/shops/{shop_id}/verify")
def verify_shop(shop_id: str, admin=Depends(require_role(*ADMIN_TIER))):
    shop = load_shop(shop_id)
    return storage.update_shop(shop["id"], {"is_verified": True})


@router.patch("/shops/{shop_id}/block")
def block_shop(shop_id: str, payload: BlockShopRequest, admin=Depends(require_role(*ADMIN_TIER))):
    shop = load_shop(shop_id)
    logger.info("Admin %s blocked shop %s: %s", admin["id"], shop["id"], payload.reason)
    return storage.update_shop(shop["id"], {"status": ShopStatus.BLOCKED.value, "block_reason": payload.reason})


@router.patch("/shops/{shop_id}/unblock")
def unblock_shop(shop_id: str, admin=Depends(require_role(*ADMIN_TIER))):
    shop = load_shop(shop_id)
    return storage.update_shop(shop["id"], {"status": ShopStatus.ACTIVE.value, "block_reason": None})


@router.delete("/shops/{shop_id}")
def delete_shop(shop_id: str, current_user=Depends(get_current_user)):
    shop = managed_shop(shop_id, current_user)
    storage.delete_shop(shop["id"])
    return {"message": "Shop deleted"}


@router.get("/shops/{shop_id}/products")
def shop_products(shop_id: str):
    return storage.get_products_by_shop(load_shop(shop_id)["id"])


# Shop staff routes
@router.get("/shops/{shop_id}/staff")
def list_staff(shop_id: str, current_user=Depends(get_current_user)):
    shop = viewable_shop(shop_id, current_user)
    return storage.get_shop_staff(shop["id"])


def staff_manager_shop(shop_id: str, current_user, role: Role):
    shop = load_shop(shop_id)
    if not can_manage_shop_staff(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="You cannot manage this shop's staff")
    if not can_grant_shop_role(current_user.get("role"), role):
        raise HTTPException(status_code=403, detail="Insufficient permissions to grant this role")
    return shop


@router.post("/shops/{shop_id}/staff", status_code=201)
def add_staff(shop_id: str, payload: AddStaffRequest, current_user=Depends(get_current_user)):
    shop = staff_manager_shop(shop_id, current_user, payload.role)
    user = storage.get_user_by_username(payload.username)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    try:
        return storage.add_shop_staff(shop["id"], user["id"], payload.role)
    except storage.ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch("/shops/{shop_id}/staff/{user_id}")
def update_staff(shop_id: str, user_id: str, payload: UpdateStaffRequest, current_user=Depends(get_current_user)):
    shop = staff_manager_shop(shop_id, current_user, payload.role)
    if user_id == shop["owner_id"]:
        raise HTTPException(status_code=400, detail="The shop owner's membership cannot be changed")
    try:
        return storage.update_shop_staff_role(shop["id"], user_id, payload.role)
    except storage.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/shops/{shop_id}/staff/{user_id}")
def remove_staff(shop_id: str, user_id: str, current_user=Depends(get_current_user)):
    shop = load_shop(shop_id)
    if not can_manage_shop_staff(current_user, shop, memberships_of(current_user)):
        raise HTTPException(status_code=403, detail="You cannot manage this shop's staff")
    if user_id == shop["owner_id"]:
        raise HTTPException(status_code=400, detail="The shop owner cannot be removed")
    try:
        storage.remove_shop_staff(shop["id"], user_id)
    except storage.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Staff member removed"}


# Current user's shops
@router.get("/user/shops")
def my_shops(current_user=Depends(get_current_user)):
    return storage.get_shops_by_owner(current_user["id"])


@router.get("/user/shop")
def my_shop(current_user=Depends(get_current_user)):
    shops = storage.get_shops_by_owner(current_user["id"])
    return shops[0] if shops else None
