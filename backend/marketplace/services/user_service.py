# Overview: Service-layer operations for user records (admin user management, seller profiles).

from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import Conversation, Order, User, ROLE_ADMIN, ROLE_SELLER, VALID_ROLES
from ..validation import (
    ConflictError,
    ForbiddenError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from . import session_service, storage_service
from .auth_service import normalize_email
from .concurrency import commit_with_retry

logger = logging.getLogger(__name__)

# Balances move only through ledger_service.
FINANCIAL_FIELDS = {"credit_amount", "pending_amount", "total_orders"}

IMAGE_FIELDS = {
    "identity_url": storage_service.FOLDER_IDENTITY,
    "profile_url": storage_service.FOLDER_PROFILES,
}

ADMIN_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "email",
        "phone",
        "shop_name",
        "identity_url",
        "profile_url",
        "approved",
        "is_active",
    },
)

SELF_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "shop_name", "profile_url"},
)

# Client-facing aliases accepted on input
FIELD_ALIASES = {
    "shopName": "shop_name",
    "identity": "identity_url",
    "profile": "profile_url",
    "creditAmount": "credit_amount",
    "pendingAmount": "pending_amount",
    "totalOrders": "total_orders",
    "isActive": "is_active",
}


def _normalize_keys(payload: dict) -> dict:
    return {FIELD_ALIASES.get(k, k): v for k, v in payload.items()}


def _load(user_id) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if not user:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return user


def list_users(actor: User, role: str | None = None) -> list[User]:
    if not actor.is_admin:
        raise ForbiddenError("Only admins can list users")
    q = db.session.query(User)
    if role:
        if role not in VALID_ROLES:
            raise ValidationError("Invalid role", details={"allowed": sorted(VALID_ROLES)})
        q = q.filter(User.role == role)
    return q.order_by(User.created_at.desc(), User.id.desc()).all()


def get_user(user_id, actor: User) -> User:
    """Admins read anyone; sellers read only themselves."""
    if actor.is_seller and str(actor.id) != str(user_id):
        raise ForbiddenError("Not authorized to view this user")
    return _load(user_id)


def update_user(user_id, payload: dict, actor: User) -> User:
    """
    Profile and approval updates.

    Admins edit seller profiles, approval and activation; sellers edit their
    own profile fields. Balances are never accepted here.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = _normalize_keys(payload)

    blocked = sorted(FINANCIAL_FIELDS & set(payload))
    if blocked:
        raise ValidationError(
            "Financial fields cannot be updated directly",
            details={"fields": blocked},
        )

    user = _load(user_id)
    if actor.is_admin:
        if user.is_admin and user.id != actor.id:
            raise ForbiddenError("Cannot modify another admin")
        policy = ADMIN_POLICY
    elif actor.id == user.id:
        policy = SELF_POLICY
    else:
        raise ForbiddenError("Not authorized to update this user")

    images = {k: payload.pop(k) for k in list(payload) if k in IMAGE_FIELDS}
    patch = validate_payload(model=User, payload=payload, policy=policy, partial=True)

    for field, value in images.items():
        if field not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {field}")
        patch[field] = storage_service.resolve_image(value, IMAGE_FIELDS[field])

    if "email" in patch:
        patch["email"] = normalize_email(patch["email"])
        clash = (
            db.session.query(User.id)
            .filter(User.email == patch["email"], User.id != user.id)
            .first()
        )
        if clash:
            raise ConflictError("Email already in use")

    if user.is_admin and patch.get("is_active") is False:
        raise ConflictError("The admin account cannot be deactivated")

    deactivated = patch.get("is_active") is False and user.is_active

    for k, v in patch.items():
        setattr(user, k, v)

    commit_with_retry()

    if deactivated:
        session_service.revoke_all_user_sessions(user.id, reason="User account deactivated")
    logger.info("User %s updated by %s: %s", user.id, actor.id, sorted(patch))
    return user


def set_seller_approval(seller_id, approved: bool, actor: User | None = None) -> User:
    """Approve (or un-approve) a seller. actor None means a trusted CLI call."""
    if actor is not None and not actor.is_admin:
        raise ForbiddenError("Only admins can approve sellers")
    seller = _load(seller_id)
    if seller.role != ROLE_SELLER:
        raise ValidationError("Only sellers need approval")
    seller.approved = bool(approved)
    commit_with_retry()
    logger.info("Seller %s approved=%s", seller.id, seller.approved)
    return seller


def delete_user(user_id, actor: User) -> None:
    """
    Remove a seller account.

    Sellers with orders or conversations keep their history: they are
    refused here and should be deactivated instead.
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can delete users")
    user = _load(user_id)
    if user.role == ROLE_ADMIN:
        raise ConflictError("The admin account cannot be deleted")

    has_orders = db.session.query(Order.id).filter(Order.seller_id == user.id).first()
    has_conversations = (
        db.session.query(Conversation.id)
        .filter(or_(
            Conversation.participant_one_id == user.id,
            Conversation.participant_two_id == user.id,
        ))
        .first()
    )
    if has_orders or has_conversations:
        raise ConflictError(
            "User has orders or conversations; deactivate the account instead",
            details={"user_id": user.id},
        )

    db.session.delete(user)
    commit_with_retry()
    logger.info("User %s deleted by %s", user_id, actor.id)
