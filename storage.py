"""
Data store.

CRUD and query helpers for every collection. All functions take and return
plain dicts with the Mongo "_id" turned into a string "id"; references between
documents are stored as those strings.

Lookups with a malformed id behave like lookups of a missing document.
"""
import logging
import math
import re
import threading
import weakref
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from database import utcnow
from roles import SHOP_ROLES, Role, as_role, role_label
from schemas import (
    BannedName as BannedNameSchema,
    Cart as CartSchema,
    ComplaintStatus,
    Complaint as ComplaintSchema,
    ComplaintMessage as ComplaintMessageSchema,
    Order as OrderSchema,
    Product as ProductSchema,
    Review as ReviewSchema,
    SenderType,
    Session as SessionSchema,
    Shop as ShopSchema,
    ShopChat as ShopChatSchema,
    ShopChatMessage as ShopChatMessageSchema,
    ShopComplaint as ShopComplaintSchema,
    ShopStaff as ShopStaffSchema,
    SiteSettings as SiteSettingsSchema,
    User as UserSchema,
)

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]

PLATFORM = "complaint"
SHOP = "shop_complaint"


class NotFoundError(LookupError):
    pass


class ConflictError(ValueError):
    pass


# Helpers

def _col(name: str):
    if database.db is None:
        raise RuntimeError("Database not configured")
    return database.db[name]


def to_oid(id_str: Any) -> Optional[ObjectId]:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def sanitize(doc: Optional[Doc]) -> Optional[Doc]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def public_user(user: Optional[Doc]) -> Optional[Doc]:
    if not user:
        return user
    d = {**user}
    d.pop("password_hash", None)
    return d


def _find_by_id(collection: str, id_str: Any) -> Optional[Doc]:
    oid = to_oid(id_str)
    if oid is None:
        return None
    return sanitize(_col(collection).find_one({"_id": oid}))


def _insert(collection: str, model) -> Doc:
    doc = model.model_dump()
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = _col(collection).insert_one(doc)
    doc["_id"] = res.inserted_id
    return sanitize(doc)


def _update(collection: str, id_str: Any, updates: Doc) -> Doc:
    oid = to_oid(id_str)
    if oid is None:
        raise NotFoundError(f"{collection} {id_str} not found")
    res = _col(collection).update_one({"_id": oid}, {"$set": {**updates, "updated_at": utcnow()}})
    if res.matched_count == 0:
        raise NotFoundError(f"{collection} {id_str} not found")
    return _find_by_id(collection, oid)


def _update_if(collection: str, id_str: Any, condition: Doc, updates: Doc) -> Optional[Doc]:
    oid = to_oid(id_str)
    if oid is None:
        return None
    doc = _col(collection).find_one_and_update(
        {"_id": oid, **condition},
        {"$set": {**updates, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return sanitize(doc)


def _contains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def _ordered(cursor, field: str = "created_at", direction: int = 1):
    return cursor.sort([(field, direction), ("_id", direction)])


# Users

def get_user(user_id: Any) -> Optional[Doc]:
    return _find_by_id("user", user_id)


def get_user_by_username(username: str) -> Optional[Doc]:
    return sanitize(_col("user").find_one({"username": username}))


def get_users(ids: Iterable[str]) -> Dict[str, Doc]:
    oids = [o for o in (to_oid(i) for i in set(ids)) if o is not None]
    if not oids:
        return {}
    return {str(u["_id"]): sanitize(u) for u in _col("user").find({"_id": {"$in": oids}})}


def create_user(user: UserSchema) -> Doc:
    if get_user_by_username(user.username):
        raise ConflictError("Username already taken")
    try:
        created = _insert("user", user)
    except DuplicateKeyError:
        raise ConflictError("Username already taken")
    logger.info("Created user %s (%s) with role %s", created["username"], created["id"], created["role"])
    return created


def update_user(user_id: Any, updates: Doc) -> Doc:
    return _update("user", user_id, updates)


def delete_user(user_id: Any) -> None:
    oid = to_oid(user_id)
    if oid is None:
        return
    uid = str(oid)
    _col("user").delete_one({"_id": oid})
    _col("shop_staff").delete_many({"user_id": uid})
    _col("session").delete_many({"user_id": uid})
    _col("cart").delete_many({"user_id": uid})
    logger.info("Deleted user %s", uid)


def list_users(role: Optional[str] = None, search: Optional[str] = None) -> List[Doc]:
    q: Doc = {}
    if role:
        q["role"] = role
    if search:
        q["$or"] = [{"username": _contains(search)}, {"display_name": _contains(search)}]
    return [sanitize(u) for u in _ordered(_col("user").find(q))]


def get_staff_users() -> List[Doc]:
    return [sanitize(u) for u in _ordered(_col("user").find({"role": {"$ne": Role.USER.value}}))]


def get_blocked_users() -> List[Doc]:
    return [sanitize(u) for u in _col("user").find({"is_blocked": True})]


def display_name(user: Optional[Doc]) -> str:
    if not user:
        return "Unknown user"
    return user.get("display_name") or user.get("username")


# Sessions

def create_session(user_id: str) -> Doc:
    return _insert("session", SessionSchema(user_id=user_id, start_time=utcnow()))


def get_session(session_id: Any) -> Optional[Doc]:
    return _find_by_id("session", session_id)


def end_session(session_id: Any) -> Doc:
    return _update("session", session_id, {"is_active": False, "end_time": utcnow()})


def end_user_sessions(user_id: str) -> int:
    res = _col("session").update_many(
        {"user_id": user_id, "is_active": True},
        {"$set": {"is_active": False, "end_time": utcnow()}},
    )
    return res.modified_count


def get_user_sessions(user_id: str) -> List[Doc]:
    return [sanitize(s) for s in _ordered(_col("session").find({"user_id": user_id}), "start_time", -1)]


def get_active_sessions() -> List[Doc]:
    return [sanitize(s) for s in _col("session").find({"is_active": True})]


def get_expired_sessions() -> List[Doc]:
    return [sanitize(s) for s in _col("session").find({"is_active": False})]


# Shops

def get_shop(shop_id: Any) -> Optional[Doc]:
    return _find_by_id("shop", shop_id)


def get_all_shops() -> List[Doc]:
    return [sanitize(s) for s in _ordered(_col("shop").find({}))]


def search_shops(query: str) -> List[Doc]:
    q = {"$or": [{"name": _contains(query)}, {"description": _contains(query)}]}
    return [sanitize(s) for s in _ordered(_col("shop").find(q))]


def get_shops_by_owner(user_id: str) -> List[Doc]:
    """Shops the user owns or holds a staff membership in."""
    shop_ids = [to_oid(m["shop_id"]) for m in get_user_memberships(user_id)]
    q = {"$or": [{"owner_id": user_id}, {"_id": {"$in": [s for s in shop_ids if s is not None]}}]}
    return [sanitize(s) for s in _ordered(_col("shop").find(q))]


def count_owned_shops(user_id: str) -> int:
    return _col("shop").count_documents({"owner_id": user_id})


def create_shop(shop: ShopSchema) -> Doc:
    owner = get_user(shop.owner_id)
    if not owner:
        raise NotFoundError(f"User {shop.owner_id} not found")
    created = _insert("shop", shop)
    add_shop_staff(created["id"], owner["id"], Role.SHOP_OWNER)
    logger.info("Created shop %s (%s) owned by %s", created["name"], created["id"], owner["id"])
    return created


def update_shop(shop_id: Any, updates: Doc) -> Doc:
    return _update("shop", shop_id, updates)


def delete_shop(shop_id: Any) -> None:
    shop = get_shop(shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found")
    sid = shop["id"]
    for product in get_products_by_shop(sid):
        delete_product(product["id"])
    chat_ids = [str(c["_id"]) for c in _col("shop_chat").find({"shop_id": sid})]
    _col("shop_chat_message").delete_many({"chat_id": {"$in": chat_ids}})
    _col("shop_chat").delete_many({"shop_id": sid})
    complaint_ids = [str(c["_id"]) for c in _col(SHOP).find({"shop_id": sid})]
    _col("complaint_message").delete_many({"complaint_id": {"$in": complaint_ids}})
    _col(SHOP).delete_many({"shop_id": sid})
    _col("shop_staff").delete_many({"shop_id": sid})
    _col("shop").delete_one({"_id": to_oid(sid)})
    logger.info("Deleted shop %s", sid)


# Shop staff memberships

def get_membership(shop_id: str, user_id: str) -> Optional[Doc]:
    return sanitize(_col("shop_staff").find_one({"shop_id": str(shop_id), "user_id": str(user_id)}))


def get_shop_memberships(shop_id: str) -> List[Doc]:
    return [sanitize(m) for m in _ordered(_col("shop_staff").find({"shop_id": str(shop_id)}), "added_at")]


def get_user_memberships(user_id: str) -> List[Doc]:
    return [sanitize(m) for m in _col("shop_staff").find({"user_id": str(user_id)})]


def _staff_entry(user: Doc, membership: Doc) -> Doc:
    return {**public_user(user), "role_name": membership["role"], "added_at": membership["added_at"]}


def get_shop_staff(shop_id: str) -> List[Doc]:
    memberships = get_shop_memberships(shop_id)
    users = get_users(m["user_id"] for m in memberships)
    return [_staff_entry(users[m["user_id"]], m) for m in memberships if m["user_id"] in users]


def _check_shop_role(role) -> Role:
    r = as_role(role)
    if r not in SHOP_ROLES:
        raise ValueError(f"Invalid shop staff role: {role}")
    return r


def add_shop_staff(shop_id: str, user_id: str, role) -> Doc:
    r = _check_shop_role(role)
    if not get_shop(shop_id):
        raise NotFoundError(f"Shop {shop_id} not found")
    user = get_user(user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if get_membership(shop_id, user_id):
        raise ConflictError("User is already a staff member of this shop")
    membership = ShopStaffSchema(shop_id=str(shop_id), user_id=str(user_id), role=r, added_at=utcnow())
    try:
        created = _insert("shop_staff", membership)
    except DuplicateKeyError:
        raise ConflictError("User is already a staff member of this shop")
    logger.info("Added user %s to shop %s as %s", user_id, shop_id, r.value)
    return _staff_entry(user, created)


def update_shop_staff_role(shop_id: str, user_id: str, role) -> Doc:
    r = _check_shop_role(role)
    membership = get_membership(shop_id, user_id)
    if not membership:
        raise NotFoundError("User is not a staff member of this shop")
    updated = _update("shop_staff", membership["id"], {"role": r.value})
    logger.info("Changed role of user %s in shop %s to %s", user_id, shop_id, r.value)
    return _staff_entry(get_user(user_id), updated)


def remove_shop_staff(shop_id: str, user_id: str) -> None:
    res = _col("shop_staff").delete_one({"shop_id": str(shop_id), "user_id": str(user_id)})
    if res.deleted_count == 0:
        raise NotFoundError("User is not a staff member of this shop")
    logger.info("Removed user %s from shop %s", user_id, shop_id)


# Products

def get_product(product_id: Any) -> Optional[Doc]:
    return _find_by_id("product", product_id)


def get_products_by_shop(shop_id: str) -> List[Doc]:
    return [sanitize(p) for p in _ordered(_col("product").find({"shop_id": str(shop_id)}))]


def count_products(shop_id: str) -> int:
    return _col("product").count_documents({"shop_id": str(shop_id)})


def list_products(search: Optional[str] = None, shop_id: Optional[str] = None, owner_id: Optional[str] = None) -> List[Doc]:
    q: Doc = {}
    if shop_id:
        q["shop_id"] = str(shop_id)
    elif owner_id:
        q["shop_id"] = {"$in": [s["id"] for s in get_shops_by_owner(owner_id)]}
    if search and search.strip():
        q["$or"] = [{"name": _contains(search.strip())}, {"description": _contains(search.strip())}]
    return [sanitize(p) for p in _ordered(_col("product").find(q))]


def create_product(product: ProductSchema) -> Doc:
    if not get_shop(product.shop_id):
        raise NotFoundError(f"Shop {product.shop_id} not found")
    return _insert("product", product)


def update_product(product_id: Any, updates: Doc) -> Doc:
    return _update("product", product_id, updates)


def delete_product(product_id: Any) -> None:
    oid = to_oid(product_id)
    if oid is None:
        return
    _col("review").delete_many({"product_id": str(oid)})
    _col("product").delete_one({"_id": oid})


# Reviews

_aggregate_guard = threading.Lock()
_aggregate_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def shop_lock(shop_id: str) -> threading.Lock:
    """Serializes read-aggregate-write sequences on one shop and its products."""
    with _aggregate_guard:
        lock = _aggregate_locks.get(str(shop_id))
        if lock is None:
            lock = _aggregate_locks[str(shop_id)] = threading.Lock()
        return lock


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def get_reviews_by_product(product_id: str) -> List[Doc]:
    reviews = [sanitize(r) for r in _ordered(_col("review").find({"product_id": str(product_id)}))]
    users = get_users(r["user_id"] for r in reviews)
    for r in reviews:
        u = users.get(r["user_id"])
        r["user_display_name"] = display_name(u) if u else f"User #{r['user_id']}"
        r["user_avatar_url"] = u.get("avatar_url") if u else None
        r["user_role"] = u.get("role", Role.USER.value) if u else Role.USER.value
        r["user_is_verified"] = bool(u and u.get("is_verified"))
        r["user_is_premium"] = bool(u and u.get("is_premium"))
    return reviews


def create_review(review: ReviewSchema) -> Doc:
    product = get_product(review.product_id)
    if not product:
        raise NotFoundError(f"Product {review.product_id} not found")
    with shop_lock(product["shop_id"]):
        created = _insert("review", review)
        recompute_ratings(product)
    return created


def recompute_ratings(product: Doc) -> None:
    """Product rating over its reviews, then shop rating over every review of every product."""
    ratings = [r["rating"] for r in _col("review").find({"product_id": product["id"]})]
    if ratings:
        update_product(product["id"], {"rating": round_half_up(sum(ratings) / len(ratings))})

    shop = get_shop(product["shop_id"])
    if not shop:
        return
    product_ids = [p["id"] for p in get_products_by_shop(shop["id"])]
    shop_ratings = [r["rating"] for r in _col("review").find({"product_id": {"$in": product_ids}})]
    if shop_ratings:
        update_shop(shop["id"], {"rating": round_half_up(sum(shop_ratings) / len(shop_ratings))})


# Complaints (platform and shop)

def get_complaint(complaint_id: Any) -> Optional[Doc]:
    return _find_by_id(PLATFORM, complaint_id)


def find_complaint(kind: str, complaint_id: Any) -> Optional[Doc]:
    return _find_by_id(kind, complaint_id)


def get_shop_complaint(shop_id: str, complaint_id: Any) -> Optional[Doc]:
    complaint = _find_by_id(SHOP, complaint_id)
    if not complaint or complaint.get("shop_id") != str(shop_id):
        return None
    return complaint


def get_all_complaints() -> List[Doc]:
    return [sanitize(c) for c in _ordered(_col(PLATFORM).find({}), direction=-1)]


def get_pending_complaints(kind: str = PLATFORM) -> List[Doc]:
    return [sanitize(c) for c in _col(kind).find({"status": ComplaintStatus.PENDING.value})]


def get_user_complaints(user_id: str) -> List[Doc]:
    q = {"$or": [{"user_id": user_id}, {"assigned_to_id": user_id}]}
    return [sanitize(c) for c in _ordered(_col(PLATFORM).find(q), direction=-1)]


def get_shop_complaints(shop_id: Optional[str] = None, user_id: Optional[str] = None) -> List[Doc]:
    q: Doc = {}
    if shop_id:
        q["shop_id"] = str(shop_id)
    if user_id:
        q["user_id"] = user_id
    return [sanitize(c) for c in _ordered(_col(SHOP).find(q), direction=-1)]


def create_complaint(complaint: ComplaintSchema) -> Doc:
    kind = SHOP if isinstance(complaint, ShopComplaintSchema) else PLATFORM
    if kind == SHOP and not get_shop(complaint.shop_id):
        raise NotFoundError(f"Shop {complaint.shop_id} not found")
    created = _insert(kind, complaint)
    text = "Shop complaint created." if kind == SHOP else "Complaint created."
    add_complaint_message(created["id"], complaint.user_id, text, is_system_message=True)
    logger.info("Created %s %s by user %s", kind, created["id"], complaint.user_id)
    return created


def transition_complaint(kind: str, complaint_id: Any, from_states: Iterable[str], updates: Doc) -> Optional[Doc]:
    """Apply `updates` only while the stored status is one of `from_states`; None when it is not."""
    return _update_if(kind, complaint_id, {"status": {"$in": list(from_states)}}, updates)


def get_complaint_messages(complaint_id: str) -> List[Doc]:
    return [sanitize(m) for m in _ordered(_col("complaint_message").find({"complaint_id": str(complaint_id)}))]


def add_complaint_message(complaint_id: str, user_id: Optional[str], message: str, is_system_message: bool = False) -> Doc:
    return _insert("complaint_message", ComplaintMessageSchema(
        complaint_id=str(complaint_id), user_id=user_id, message=message, is_system_message=is_system_message,
    ))


# Shop chats

def get_chat(chat_id: Any) -> Optional[Doc]:
    return _find_by_id("shop_chat", chat_id)


def add_chat_message(chat_id: str, sender_id: Optional[str], sender_type: SenderType, message: str) -> Doc:
    chat = get_chat(chat_id)
    if not chat:
        raise NotFoundError(f"Chat {chat_id} not found")
    created = _insert("shop_chat_message", ShopChatMessageSchema(
        chat_id=chat["id"], sender_id=sender_id, sender_type=sender_type, message=message,
    ))
    _update("shop_chat", chat["id"], {"last_message_at": created["created_at"]})
    return created


def get_or_create_chat(shop_id: str, user_id: str) -> Doc:
    """One chat per (shop, user); a new chat opens with system messages naming the shop staff."""
    shop = get_shop(shop_id)
    if not shop:
        raise NotFoundError(f"Shop {shop_id} not found")
    if not get_user(user_id):
        raise NotFoundError(f"User {user_id} not found")
    existing = sanitize(_col("shop_chat").find_one({"shop_id": shop["id"], "user_id": user_id}))
    if existing:
        return existing
    try:
        chat = _insert("shop_chat", ShopChatSchema(shop_id=shop["id"], user_id=user_id, last_message_at=utcnow()))
    except DuplicateKeyError:
        return sanitize(_col("shop_chat").find_one({"shop_id": shop["id"], "user_id": user_id}))
    add_chat_message(chat["id"], None, SenderType.SYSTEM, "Chat created. You can start talking to the shop.")
    for staff in get_shop_staff(shop["id"]):
        add_chat_message(
            chat["id"], None, SenderType.SYSTEM,
            f"{role_label(staff['role_name'])} {display_name(staff)} joined the chat.",
        )
    logger.info("Opened chat %s between shop %s and user %s", chat["id"], shop["id"], user_id)
    return get_chat(chat["id"])


def _last_message(chat_id: str) -> Optional[str]:
    last = list(_col("shop_chat_message").find({"chat_id": chat_id}).sort([("created_at", -1), ("_id", -1)]).limit(1))
    return last[0]["message"] if last else None


def get_user_chats(user_id: str) -> List[Doc]:
    chats = [sanitize(c) for c in _ordered(_col("shop_chat").find({"user_id": user_id}), "last_message_at", -1)]
    for c in chats:
        shop = get_shop(c["shop_id"])
        c["shop_name"] = shop["name"] if shop else "Unknown shop"
        c["last_message"] = _last_message(c["id"])
    return chats


def get_shop_chats(shop_id: str) -> List[Doc]:
    chats = [sanitize(c) for c in _ordered(_col("shop_chat").find({"shop_id": str(shop_id)}), "last_message_at", -1)]
    users = get_users(c["user_id"] for c in chats)
    for c in chats:
        c["user_name"] = display_name(users.get(c["user_id"]))
        c["last_message"] = _last_message(c["id"])
    return chats


def get_chat_messages(chat_id: str) -> List[Doc]:
    return [sanitize(m) for m in _ordered(_col("shop_chat_message").find({"chat_id": str(chat_id)}))]


def mark_chat_read(chat_id: str, reader_id: str) -> int:
    res = _col("shop_chat_message").update_many(
        {"chat_id": str(chat_id), "is_read": False, "sender_id": {"$ne": reader_id}},
        {"$set": {"is_read": True}},
    )
    return res.modified_count


def count_unread(chat_ids: List[str], reader_id: str, sender_type: Optional[str] = None) -> int:
    q: Doc = {"chat_id": {"$in": chat_ids}, "is_read": False, "sender_id": {"$ne": reader_id}}
    if sender_type:
        q["sender_type"] = sender_type
    return _col("shop_chat_message").count_documents(q)


# Cart and orders

def get_cart(user_id: str) -> Doc:
    cart = _col("cart").find_one({"user_id": user_id})
    if not cart:
        return {"user_id": user_id, "items": []}
    return sanitize(cart)


def _save_cart(user_id: str, items: List[Doc]) -> Doc:
    cart = CartSchema(user_id=user_id, items=items)
    _col("cart").update_one(
        {"user_id": user_id},
        {"$set": {"items": cart.model_dump()["items"], "updated_at": utcnow()}},
        upsert=True,
    )
    return get_cart(user_id)


def add_cart_item(user_id: str, product_id: str, quantity: int) -> Doc:
    if not get_product(product_id):
        raise NotFoundError(f"Product {product_id} not found")
    items = get_cart(user_id)["items"]
    for it in items:
        if it["product_id"] == product_id:
            it["quantity"] += quantity
            break
    else:
        items.append({"product_id": product_id, "quantity": quantity})
    return _save_cart(user_id, items)


def remove_cart_item(user_id: str, product_id: str) -> Doc:
    items = [it for it in get_cart(user_id)["items"] if it["product_id"] != product_id]
    return _save_cart(user_id, items)


def clear_cart(user_id: str) -> Doc:
    return _save_cart(user_id, [])


def get_order(order_id: Any) -> Optional[Doc]:
    return _find_by_id("order", order_id)


def create_order(order: OrderSchema) -> Doc:
    return _insert("order", order)


def transition_order(order_id: Any, from_status: str, updates: Doc) -> Optional[Doc]:
    return _update_if("order", order_id, {"status": from_status}, updates)


def get_orders(user_id: Optional[str] = None, shop_id: Optional[str] = None) -> List[Doc]:
    q: Doc = {}
    if user_id:
        q["user_id"] = user_id
    if shop_id:
        q["shop_id"] = str(shop_id)
    return [sanitize(o) for o in _ordered(_col("order").find(q), direction=-1)]


def decrement_stock(product_id: str, quantity: int) -> bool:
    """Take `quantity` units if that many are in stock."""
    res = _col("product").update_one(
        {"_id": to_oid(product_id), "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}, "$set": {"updated_at": utcnow()}},
    )
    return res.modified_count == 1


def restock(product_id: str, quantity: int) -> None:
    _col("product").update_one({"_id": to_oid(product_id)}, {"$inc": {"quantity": quantity}, "$set": {"updated_at": utcnow()}})


def increment_transactions(shop_id: str, count: int = 1) -> None:
    _col("shop").update_one({"_id": to_oid(shop_id)}, {"$inc": {"transactions_count": count}})


# Admin console

def get_banned_names() -> List[Doc]:
    return [sanitize(b) for b in _ordered(_col("banned_name").find({}))]


def create_banned_name(name: str) -> Doc:
    if _col("banned_name").find_one({"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}):
        raise ConflictError("Name is already banned")
    return _insert("banned_name", BannedNameSchema(name=name))


def delete_banned_name(banned_id: Any) -> None:
    oid = to_oid(banned_id)
    if oid is None or _col("banned_name").delete_one({"_id": oid}).deleted_count == 0:
        raise NotFoundError(f"Banned name {banned_id} not found")


def find_banned_name(*texts: Optional[str]) -> Optional[str]:
    """The first banned name contained (case-insensitively) in any of the texts."""
    lowered = [t.lower() for t in texts if t]
    for b in _col("banned_name").find({}):
        if any(b["name"].lower() in t for t in lowered):
            return b["name"]
    return None


def get_settings() -> Doc:
    doc = _col("site_settings").find_one({})
    if not doc:
        return SiteSettingsSchema().model_dump()
    doc.pop("_id", None)
    return doc


def update_settings(settings: SiteSettingsSchema) -> Doc:
    doc = settings.model_dump()
    doc["updated_at"] = utcnow()
    _col("site_settings").replace_one({}, doc, upsert=True)
    return get_settings()
