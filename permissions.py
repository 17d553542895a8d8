"""
Permission decisions.

Every function here is a pure predicate over plain documents (dicts with an
"id" key, as returned by storage). Routers turn a False into HTTP 403.

Shop-scoped rights come from shop_staff membership rows only. A user whose
global role is SHOP_OWNER but who has no membership for a shop gets nothing on
that shop.
"""
from typing import Any, Dict, Iterable, Optional

from roles import (
    SHOP_MANAGER_ROLES,
    Role,
    as_role,
    is_admin_tier,
    is_moderation_tier,
    is_owner_tier,
)

Doc = Dict[str, Any]

_ADMIN_PROTECTED = frozenset({Role.OWNER, Role.SECURITY})
_HEADADMIN_PROTECTED = _ADMIN_PROTECTED | {Role.ADMIN}
_MODERATOR_TARGETS = frozenset({Role.USER, Role.SHOP_OWNER, Role.SHOP_MAIN, Role.SHOP_STAFF})

_ADMIN_GRANTS = frozenset({Role.MODERATOR, Role.SHOP_MAIN, Role.SHOP_STAFF, Role.USER})
_MODERATOR_GRANTS = frozenset({Role.USER})


def can_modify_user(acting_role, target_role) -> bool:
    acting = as_role(acting_role)
    target = as_role(target_role)
    if acting is None or target is None:
        return False
    if target == Role.OWNER:
        return False
    if is_owner_tier(acting):
        return True
    if acting == Role.ADMIN:
        return target not in _ADMIN_PROTECTED
    if acting == Role.HEADADMIN:
        return target not in _HEADADMIN_PROTECTED
    if acting == Role.MODERATOR:
        return target in _MODERATOR_TARGETS
    return False


def can_modify_account(actor: Doc, target: Doc) -> bool:
    """can_modify_user for two user documents; nobody modifies themselves."""
    if not actor or not target:
        return False
    if str(actor.get("id")) == str(target.get("id")):
        return False
    return can_modify_user(actor.get("role"), target.get("role"))


def can_assign_role(acting_role, new_role) -> bool:
    acting = as_role(acting_role)
    granted = as_role(new_role)
    if acting is None or granted is None or granted == Role.OWNER:
        return False
    if is_owner_tier(acting):
        return True
    if acting in (Role.ADMIN, Role.HEADADMIN):
        return granted in _ADMIN_GRANTS
    if acting == Role.MODERATOR:
        return granted in _MODERATOR_GRANTS
    return False


def membership_role(user: Doc, shop: Doc, memberships: Iterable[Doc]) -> Optional[Role]:
    """The user's shop_staff role in this shop, if any."""
    if not user or not shop:
        return None
    for m in memberships or ():
        if str(m.get("shop_id")) == str(shop.get("id")) and str(m.get("user_id")) == str(user.get("id")):
            return as_role(m.get("role"))
    return None


def can_manage_shop(user: Doc, shop: Doc, memberships: Iterable[Doc] = ()) -> bool:
    if not user or not shop:
        return False
    if is_admin_tier(user.get("role")):
        return True
    if str(shop.get("owner_id")) == str(user.get("id")):
        return True
    return membership_role(user, shop, memberships) in SHOP_MANAGER_ROLES


def can_view_shop(user: Doc, shop: Doc, memberships: Iterable[Doc] = ()) -> bool:
    memberships = list(memberships or ())
    if can_manage_shop(user, shop, memberships):
        return True
    return membership_role(user, shop, memberships) is not None


def can_manage_shop_staff(user: Doc, shop: Doc, memberships: Iterable[Doc] = ()) -> bool:
    if user and as_role(user.get("role")) == Role.HEADADMIN:
        return bool(shop)
    return can_manage_shop(user, shop, memberships)


def can_manage_complaint(acting_role) -> bool:
    return is_moderation_tier(acting_role)


def can_manage_shop_complaint(user: Doc, shop: Doc, memberships: Iterable[Doc] = ()) -> bool:
    if not user or not shop:
        return False
    if can_manage_complaint(user.get("role")):
        return True
    return membership_role(user, shop, memberships) in SHOP_MANAGER_ROLES


def can_access_complaint(user: Doc, complaint: Doc) -> bool:
    if not user or not complaint:
        return False
    if is_moderation_tier(user.get("role")):
        return True
    return str(complaint.get("user_id")) == str(user.get("id"))


def can_access_shop_complaint(user: Doc, shop: Doc, complaint: Doc, memberships: Iterable[Doc] = ()) -> bool:
    if not complaint:
        return False
    if can_access_complaint(user, complaint):
        return True
    return can_view_shop(user, shop, memberships)


def can_access_chat(user: Doc, chat: Doc, shop: Doc, memberships: Iterable[Doc] = ()) -> bool:
    """The chat's customer or anybody allowed to view the shop."""
    if not user or not chat:
        return False
    if str(chat.get("user_id")) == str(user.get("id")):
        return True
    return can_view_shop(user, shop, memberships)


def can_grant_shop_role(acting_role, shop_role) -> bool:
    """Shop staff managers hand out SHOP_MAIN and SHOP_STAFF; SHOP_OWNER is an owner-tier grant."""
    granted = as_role(shop_role)
    if granted == Role.SHOP_OWNER:
        return is_owner_tier(acting_role)
    return granted in (Role.SHOP_MAIN, Role.SHOP_STAFF)
