# Overview: Admin/seller conversations; one record per unordered pair, even under concurrent creation.

from __future__ import annotations

import enum
import logging
import time

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Conversation, User, ROLE_ADMIN, ROLE_SELLER
from ..validation import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .concurrency import run_with_retry
"""
Conversation Dedup Invariants (authoritative)

- At most one Conversation exists per unordered {admin, seller} pair.
- The pair is stored canonically: ids sorted as strings into
  participant_one_id / participant_two_id. The unique constraint on those
  columns is the insert-if-absent primitive.
- Creation moves Absent -> Reserved (row flushed) -> Committed. A racing
  insert that loses on the unique key surfaces as DuplicateConversation and
  the fallback tiers converge on the committed record.
"""

logger = logging.getLogger(__name__)

SELECTOR_ME = "me"
SELECTOR_ADMIN = "admin"


class CreationState(enum.Enum):
    ABSENT = "absent"
    RESERVED = "reserved"
    COMMITTED = "committed"


class DuplicateConversation(Exception):
    """Guarded insert found (or lost a race against) an existing pair."""

    def __init__(self, existing: Conversation | None = None):
        super().__init__("Conversation already exists for this pair")
        self.existing = existing


def canonical_pair(user_a_id, user_b_id) -> tuple[int, int]:
    """Order two ids the same way regardless of who asks first."""
    first, second = sorted((user_a_id, user_b_id), key=str)
    return int(first), int(second)


def _find_by_pair(pair: tuple[int, int]) -> Conversation | None:
    return (
        db.session.query(Conversation)
        .filter_by(participant_one_id=pair[0], participant_two_id=pair[1])
        .first()
    )


def _load_user(user_id) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return user


def _validate_pair(user_a: User, user_b: User) -> None:
    roles = {user_a.role, user_b.role}
    if user_a.id == user_b.id or roles != {ROLE_ADMIN, ROLE_SELLER}:
        raise ForbiddenError(
            "Conversations can only be between admin and seller",
            details={"roles": [user_a.role, user_b.role]},
        )


def _insert(pair: tuple[int, int]) -> Conversation:
    conversation = Conversation(
        participant_one_id=pair[0],
        participant_two_id=pair[1],
        unread_count=0,
    )
    db.session.add(conversation)
    db.session.flush()
    logger.debug("Conversation %s %s", pair, CreationState.RESERVED.value)
    db.session.commit()
    logger.debug("Conversation %s %s id=%s", pair, CreationState.COMMITTED.value, conversation.id)
    return conversation


def _guarded_insert(pair: tuple[int, int]) -> Conversation:
    """Tier 1: insert only if the pair is still absent."""
    def _op():
        existing = _find_by_pair(pair)
        if existing is not None:
            raise DuplicateConversation(existing)
        try:
            return _insert(pair)
        except IntegrityError:
            db.session.rollback()
            raise DuplicateConversation()

    return run_with_retry(_op)


def _forced_insert(pair: tuple[int, int]) -> Conversation | None:
    """Tier 3: insert without the existence check, then re-read by id."""
    try:
        conversation = _insert(pair)
    except IntegrityError:
        db.session.rollback()
        return None
    return db.session.get(Conversation, conversation.id)


def get_or_create_conversation(user_a_id, user_b_id) -> tuple[Conversation, bool]:
    """
    Return the single conversation for an admin/seller pair, creating it on
    first use. The bool tells whether this call created the record.

    Creation tiers:
    1. guarded insert
    2. on duplicate, short delay and re-query
    3. forced insert, re-fetched by id
    ConflictError only if all three come back empty.
    """
    user_a = _load_user(user_a_id)
    user_b = _load_user(user_b_id)
    _validate_pair(user_a, user_b)

    pair = canonical_pair(user_a.id, user_b.id)

    existing = _find_by_pair(pair)
    if existing is not None:
        return existing, False

    try:
        return _guarded_insert(pair), True
    except DuplicateConversation as dup:
        if dup.existing is not None:
            return dup.existing, False
        logger.info("Conversation insert for %s lost a race, re-querying", pair)

    delay = current_app.config.get("CONVERSATION_RETRY_DELAY_SECONDS", 0.1)
    if delay:
        time.sleep(delay)

    existing = _find_by_pair(pair)
    if existing is not None:
        return existing, False

    logger.warning("Conversation for %s still absent after retry, forcing insert", pair)
    forced = _forced_insert(pair)
    if forced is not None:
        return forced, True

    existing = _find_by_pair(pair)
    if existing is not None:
        return existing, False

    raise ConflictError("Could not create conversation", details={"participants": list(pair)})


def create_conversation(actor: User, recipient_id) -> tuple[Conversation, bool]:
    if recipient_id in (None, ""):
        raise ValidationError("Recipient ID is required")
    return get_or_create_conversation(actor.id, recipient_id)


def get_conversation(conversation_id) -> Conversation:
    conversation = db.session.get(Conversation, conversation_id) if conversation_id is not None else None
    if not conversation:
        raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
    return conversation


def _involving(user_id: int):
    return db.session.query(Conversation).filter(
        or_(
            Conversation.participant_one_id == user_id,
            Conversation.participant_two_id == user_id,
        )
    )


def list_conversations(actor: User) -> list[Conversation]:
    """Conversations containing the actor, most recent activity first."""
    return (
        _involving(actor.id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )


def _singleton_admin() -> User:
    admin = (
        db.session.query(User)
        .filter_by(role=ROLE_ADMIN)
        .order_by(User.id.asc())
        .first()
    )
    if not admin:
        raise NotFoundError("Admin user not found")
    return admin


def _resolve_selector(requester: User, selector) -> User:
    if selector is None or str(selector).strip() == "":
        raise ValidationError("User selector is required")

    value = str(selector).strip()
    if value.lower() == SELECTOR_ME:
        return requester
    if value.lower() == SELECTOR_ADMIN:
        return _singleton_admin()
    try:
        user_id = int(value)
    except ValueError:
        raise ValidationError("User selector must be an id, 'me' or 'admin'")
    return _load_user(user_id)


def _between(user_a_id: int, user_b_id: int) -> list[Conversation]:
    existing = _find_by_pair(canonical_pair(user_a_id, user_b_id))
    return [existing] if existing is not None else []


def get_conversations_by_user(requester: User, target_selector) -> list[Conversation]:
    """
    Conversations for a selector: literal id, "me" or "admin".

    Sellers only ever see conversations that include themselves. Admins
    asking about someone else get the conversation between the two.
    """
    target = _resolve_selector(requester, target_selector)

    if target.id == requester.id:
        return list_conversations(requester)

    if requester.is_seller:
        if not target.is_admin:
            raise ForbiddenError("Not authorized to view these conversations")
        return _between(requester.id, target.id)

    if requester.is_admin:
        return _between(requester.id, target.id)

    raise ForbiddenError("Not authorized to view these conversations")


def _normalize_id(value) -> str:
    return str(value).strip().casefold()


def is_participant(user: User, conversation: Conversation) -> bool:
    """
    Whether user may read and write in conversation.

    Checked in order: exact id match, normalized id match, then (only when
    CHAT_ROLE_FALLBACK_ENABLED) a seller against an admin/seller pair.
    """
    if user is None or conversation is None:
        return False

    participant_ids = conversation.participant_ids
    if user.id in participant_ids:
        return True

    normalized = _normalize_id(user.id)
    if any(_normalize_id(pid) == normalized for pid in participant_ids):
        return True

    if current_app.config.get("CHAT_ROLE_FALLBACK_ENABLED") and user.is_seller:
        roles = sorted(p.role for p in conversation.participants if p is not None)
        if roles == sorted((ROLE_ADMIN, ROLE_SELLER)):
            logger.warning(
                "User %s authorized for conversation %s by role fallback",
                user.id, conversation.id,
            )
            return True

    return False


def require_participant(user: User, conversation: Conversation) -> None:
    if not is_participant(user, conversation):
        raise ForbiddenError("Not authorized to access this conversation")
