from datetime import timedelta

import pytest

import moderation
import storage
from database import utcnow
from roles import Role
from schemas import Complaint as ComplaintSchema, ShopComplaint as ShopComplaintSchema

from conftest import make_shop, make_user


@pytest.fixture
def complaint(db):
    author = make_user("author")
    return storage.create_complaint(ComplaintSchema(user_id=author["id"], title="Broken", description="It broke"))


@pytest.fixture
def moderator(db):
    return make_user("mod", Role.MODERATOR)


def system_messages(complaint):
    return [m for m in storage.get_complaint_messages(complaint["id"]) if m["is_system_message"]]


def test_creation_adds_system_message(complaint):
    messages = storage.get_complaint_messages(complaint["id"])
    assert [m["message"] for m in messages] == ["Complaint created."]
    assert complaint["status"] == "PENDING"
    assert complaint["resolved_at"] is None


def test_assign_moves_to_in_progress_with_one_message(complaint, moderator):
    before = len(system_messages(complaint))
    updated = moderation.assign(storage.PLATFORM, complaint, moderator)
    assert updated["status"] == "IN_PROGRESS"
    assert updated["assigned_to_id"] == moderator["id"]
    after = system_messages(complaint)
    assert len(after) == before + 1
    assert after[-1]["message"] == "Moderator Mod took the complaint."


def test_resolve_pending_is_rejected_without_changes(complaint):
    before = storage.get_complaint_messages(complaint["id"])
    with pytest.raises(moderation.TransitionError):
        moderation.resolve(storage.PLATFORM, complaint)
    assert storage.get_complaint(complaint["id"])["status"] == "PENDING"
    assert storage.get_complaint_messages(complaint["id"]) == before


def test_resolve_sets_resolved_at(complaint, moderator):
    taken = moderation.assign(storage.PLATFORM, complaint, moderator)
    resolved = moderation.resolve(storage.PLATFORM, taken)
    assert resolved["status"] == "RESOLVED"
    assert resolved["resolved_at"] is not None
    assert system_messages(complaint)[-1]["message"] == "Moderator Mod closed the complaint."


def test_stale_copy_cannot_reopen_a_rejected_complaint(complaint, moderator):
    taken = moderation.assign(storage.PLATFORM, complaint, moderator)
    moderation.reject(storage.PLATFORM, taken, "duplicate")
    before = storage.get_complaint_messages(complaint["id"])

    # `taken` still says IN_PROGRESS
    with pytest.raises(moderation.TransitionError) as exc:
        moderation.resolve(storage.PLATFORM, taken)
    assert exc.value.complaint["status"] == "REJECTED"

    stored = storage.get_complaint(complaint["id"])
    assert stored["status"] == "REJECTED"
    assert storage.get_complaint_messages(complaint["id"]) == before


def test_stale_copy_cannot_assign_twice(complaint, moderator):
    other = make_user("mod-two", Role.MODERATOR)
    moderation.assign(storage.PLATFORM, complaint, moderator)
    with pytest.raises(moderation.TransitionError):
        moderation.assign(storage.PLATFORM, complaint, other)
    assert storage.get_complaint(complaint["id"])["assigned_to_id"] == moderator["id"]
    assert len(system_messages(complaint)) == 2


def test_terminal_states_refuse_every_transition(complaint, moderator):
    rejected = moderation.reject(storage.PLATFORM, complaint, "duplicate")
    assert rejected["status"] == "REJECTED"
    assert rejected["resolved_at"] is not None
    assert system_messages(complaint)[-1]["message"] == "The complaint was rejected. Reason: duplicate"
    for action, args in ((moderation.assign, (moderator,)), (moderation.resolve, ()), (moderation.reject, ("again",))):
        with pytest.raises(moderation.TransitionError):
            action(storage.PLATFORM, rejected, *args)


def test_blocked_staff_cannot_be_assigned(complaint, moderator):
    blocked = moderation.block(moderator, "abuse")
    with pytest.raises(moderation.AssignmentError):
        moderation.assign(storage.PLATFORM, complaint, blocked)
    assert storage.get_complaint(complaint["id"])["assigned_to_id"] is None


def test_shop_complaints_use_their_own_collection(db):
    owner = make_user("owner")
    shop = make_shop(owner)
    customer = make_user("customer")
    created = storage.create_complaint(ShopComplaintSchema(
        shop_id=shop["id"], user_id=customer["id"], title="Late", description="Still waiting",
    ))
    assert storage.get_complaint(created["id"]) is None
    assert storage.get_shop_complaint(shop["id"], created["id"])["title"] == "Late"
    taken = moderation.assign(storage.SHOP, created, owner)
    assert taken["status"] == "IN_PROGRESS"
    assert storage.get_complaint_messages(created["id"])[0]["message"] == "Shop complaint created."


# Blocks

def test_block_and_unblock(db):
    user = make_user("spammer")
    storage.create_session(user["id"])
    blocked = moderation.block(user, "spam", duration="1 day")
    assert isinstance(moderation.block_status(blocked), moderation.Permanent)
    assert storage.get_active_sessions() == []
    details = moderation.block_details(blocked)
    assert details["reason"] == "spam"
    assert details["duration"] == "1 day"
    assert details["expires_at"] is None

    active = moderation.unblock(blocked)
    assert moderation.block_status(active) is None
    assert active["block_reason"] is None


def test_timed_block_expires(db):
    user = make_user("temp")
    expires = utcnow() + timedelta(hours=1)
    blocked = moderation.block(user, "cool down", expires_at=expires)
    assert isinstance(moderation.block_status(blocked), moderation.Until)
    assert not moderation.block_expired(blocked)
    assert moderation.block_expired(blocked, now=expires + timedelta(seconds=1))
    assert moderation.refresh_block(blocked)["is_blocked"] is True


def test_sweep_lifts_only_expired_blocks(db):
    expired = moderation.block(make_user("old"), "x", expires_at=utcnow() - timedelta(minutes=1))
    permanent = moderation.block(make_user("forever"), "y")
    assert moderation.sweep_expired_blocks() == 1
    assert storage.get_user(expired["id"])["is_blocked"] is False
    assert storage.get_user(permanent["id"])["is_blocked"] is True
