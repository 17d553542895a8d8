"""
Moderation state machines.

Complaints move PENDING -> IN_PROGRESS -> RESOLVED, or to REJECTED from either
open state. RESOLVED and REJECTED are terminal; any other move raises
TransitionError and writes nothing. Callers check permissions first.

Users move ACTIVE <-> BLOCKED. A block either lasts until `block_expires_at`
or, when that is None, until somebody unblocks the user.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

import storage
from database import utcnow
from roles import role_label
from schemas import ComplaintStatus

logger = logging.getLogger(__name__)

Doc = Dict[str, Any]

OPEN_STATES = frozenset({ComplaintStatus.PENDING.value, ComplaintStatus.IN_PROGRESS.value})


class TransitionError(Exception):
    def __init__(self, complaint: Doc, action: str):
        self.complaint = complaint
        self.action = action
        super().__init__(f"Cannot {action} a complaint in state {complaint.get('status')}")


class AssignmentError(ValueError):
    pass


def _staff_text(staff: Optional[Doc]) -> str:
    if not staff:
        return "Staff member"
    return f"{role_label(staff.get('role'))} {storage.display_name(staff)}"


def _transition(kind: str, complaint: Doc, action: str, from_states: Iterable[str], updates: Doc) -> Doc:
    # Status is re-checked by the write itself; `complaint` may be stale.
    updated = storage.transition_complaint(kind, complaint["id"], from_states, updates)
    if updated is None:
        current = storage.find_complaint(kind, complaint["id"]) or complaint
        raise TransitionError(current, action)
    return updated


def assign(kind: str, complaint: Doc, staff: Doc) -> Doc:
    if complaint.get("status") != ComplaintStatus.PENDING.value:
        raise TransitionError(complaint, "assign")
    if not staff or staff.get("is_blocked"):
        raise AssignmentError("A blocked user cannot be assigned to a complaint")
    updated = _transition(kind, complaint, "assign", (ComplaintStatus.PENDING.value,), {
        "status": ComplaintStatus.IN_PROGRESS.value,
        "assigned_to_id": staff["id"],
    })
    storage.add_complaint_message(
        complaint["id"], staff["id"], f"{_staff_text(staff)} took the complaint.", is_system_message=True,
    )
    logger.info("%s %s assigned to %s", kind, complaint["id"], staff["id"])
    return updated


def resolve(kind: str, complaint: Doc) -> Doc:
    if complaint.get("status") != ComplaintStatus.IN_PROGRESS.value:
        raise TransitionError(complaint, "resolve")
    updated = _transition(kind, complaint, "resolve", (ComplaintStatus.IN_PROGRESS.value,), {
        "status": ComplaintStatus.RESOLVED.value,
        "resolved_at": utcnow(),
    })
    assignee = storage.get_user(updated.get("assigned_to_id"))
    storage.add_complaint_message(
        complaint["id"], updated.get("assigned_to_id"), f"{_staff_text(assignee)} closed the complaint.",
        is_system_message=True,
    )
    logger.info("%s %s resolved", kind, complaint["id"])
    return updated


def reject(kind: str, complaint: Doc, reason: Optional[str] = None) -> Doc:
    if complaint.get("status") not in OPEN_STATES:
        raise TransitionError(complaint, "reject")
    updated = _transition(kind, complaint, "reject", OPEN_STATES, {
        "status": ComplaintStatus.REJECTED.value,
        "resolved_at": utcnow(),
    })
    text = f"The complaint was rejected. Reason: {reason}" if reason else "The complaint was rejected."
    storage.add_complaint_message(
        complaint["id"], updated.get("assigned_to_id") or updated.get("user_id"), text, is_system_message=True,
    )
    logger.info("%s %s rejected", kind, complaint["id"])
    return updated


# Blocks

@dataclass(frozen=True)
class Permanent:
    pass


@dataclass(frozen=True)
class Until:
    expires_at: datetime


BlockStatus = Union[Permanent, Until]


def block_status(user: Doc) -> Optional[BlockStatus]:
    """None for an active user."""
    if not user or not user.get("is_blocked"):
        return None
    expires_at = user.get("block_expires_at")
    return Until(expires_at) if expires_at else Permanent()


def block_details(user: Doc) -> Doc:
    """Payload returned to a blocked user who tries to authenticate."""
    status = block_status(user)
    return {
        "error": "Account blocked",
        "reason": user.get("block_reason") or "Violation of the site rules",
        "blocked_at": user.get("blocked_at").isoformat() if user.get("blocked_at") else None,
        "duration": user.get("block_duration") or ("Permanent" if isinstance(status, Permanent) else None),
        "expires_at": status.expires_at.isoformat() if isinstance(status, Until) else None,
    }


def block(user: Doc, reason: str, duration: Optional[str] = None, expires_at: Optional[datetime] = None,
          blocked_by: Optional[Doc] = None) -> Doc:
    updated = storage.update_user(user["id"], {
        "is_blocked": True,
        "block_reason": reason,
        "blocked_at": utcnow(),
        "block_duration": duration,
        "block_expires_at": expires_at,
        "blocked_by_id": blocked_by["id"] if blocked_by else None,
    })
    storage.end_user_sessions(user["id"])
    logger.info("Blocked user %s (reason=%r, expires_at=%s)", user["id"], reason, expires_at)
    return updated


def unblock(user: Doc) -> Doc:
    updated = storage.update_user(user["id"], {
        "is_blocked": False,
        "block_reason": None,
        "blocked_at": None,
        "block_duration": None,
        "block_expires_at": None,
        "blocked_by_id": None,
    })
    logger.info("Unblocked user %s", user["id"])
    return updated


def block_expired(user: Doc, now: Optional[datetime] = None) -> bool:
    status = block_status(user)
    return isinstance(status, Until) and status.expires_at <= (now or utcnow())


def refresh_block(user: Doc) -> Doc:
    """Lift a block whose expiry has passed; returns the current user document."""
    if block_expired(user):
        return unblock(user)
    return user


def sweep_expired_blocks() -> int:
    now = utcnow()
    lifted = 0
    for user in storage.get_blocked_users():
        if block_expired(user, now):
            unblock(user)
            lifted += 1
    if lifted:
        logger.info("Lifted %d expired blocks", lifted)
    return lifted
