"""
Role hierarchy.

Platform staff, from most to least privileged: OWNER and SECURITY (same
privileges), ADMIN, HEADADMIN, MODERATOR. Shop staff: SHOP_OWNER, SHOP_MAIN,
SHOP_STAFF. Everybody else is USER.
"""
from enum import Enum
from typing import Optional


class Role(str, Enum):
    OWNER = "OWNER"
    SECURITY = "SECURITY"
    ADMIN = "ADMIN"
    HEADADMIN = "HEADADMIN"
    MODERATOR = "MODERATOR"
    SHOP_OWNER = "SHOP_OWNER"
    SHOP_MAIN = "SHOP_MAIN"
    SHOP_STAFF = "SHOP_STAFF"
    USER = "USER"


OWNER_TIER = frozenset({Role.OWNER, Role.SECURITY})
ADMIN_TIER = OWNER_TIER | {Role.ADMIN}
MODERATION_TIER = ADMIN_TIER | {Role.HEADADMIN, Role.MODERATOR}
SHOP_ROLES = frozenset({Role.SHOP_OWNER, Role.SHOP_MAIN, Role.SHOP_STAFF})
SHOP_MANAGER_ROLES = frozenset({Role.SHOP_OWNER, Role.SHOP_MAIN})

ROLE_LABELS = {
    Role.OWNER: "Platform Owner",
    Role.SECURITY: "Security Service",
    Role.ADMIN: "Admin",
    Role.HEADADMIN: "Head Admin",
    Role.MODERATOR: "Moderator",
    Role.SHOP_OWNER: "Shop Owner",
    Role.SHOP_MAIN: "Shop Manager",
    Role.SHOP_STAFF: "Shop Staff",
    Role.USER: "User",
}


def as_role(value) -> Optional[Role]:
    """Coerce a stored role string to Role; unknown values give None."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def is_owner_tier(role) -> bool:
    return as_role(role) in OWNER_TIER


def is_admin_tier(role) -> bool:
    return as_role(role) in ADMIN_TIER


def is_moderation_tier(role) -> bool:
    return as_role(role) in MODERATION_TIER


# Platform staff and the moderation tier are the same five roles
is_platform_staff = is_moderation_tier


def is_shop_staff_role(role) -> bool:
    return as_role(role) in SHOP_ROLES


def moderation_tier(role) -> str:
    """Classify a role as "owner", "admin", "moderator" or "none"."""
    if is_owner_tier(role):
        return "owner"
    if is_admin_tier(role):
        return "admin"
    if is_moderation_tier(role):
        return "moderator"
    return "none"


def role_label(role) -> str:
    r = as_role(role)
    return ROLE_LABELS[r] if r else ROLE_LABELS[Role.USER]
