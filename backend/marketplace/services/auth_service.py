# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

ACCOUNT RULES:
- Sellers sign up themselves and start unapproved with zero balances.
- Unapproved sellers cannot log in until an admin approves them.
- Exactly one admin account exists; it is bootstrapped by ensure_admin().

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor BCRYPT_ROUNDS, default 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
"""

import logging
import re

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, ROLE_ADMIN, ROLE_SELLER
from ..time_utils import utcnow
from ..validation import ConflictError, ForbiddenError, ValidationError
from . import storage_service

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthenticationError(ValidationError):
    """Unknown email or wrong password."""
    status_code = 401
    kind = "invalid_credentials"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() compares in constant time. Malformed hashes verify
    as False.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email) -> str:
    value = (email or "").strip().lower() if isinstance(email, str) else ""
    if not EMAIL_RE.match(value):
        raise ValidationError("A valid email is required")
    return value


def signup_seller(
    *,
    name: str,
    email: str,
    password: str,
    identity: str,
    phone: str | None = None,
    shop_name: str | None = None,
) -> User:
    """
    Register a seller account pending admin approval.

    identity must be a base64 data URI; it is uploaded to object storage
    and only its URL is stored.
    """
    name = (name or "").strip() if isinstance(name, str) else ""
    if not name or not email or not password or not identity:
        raise ValidationError("Name, email, password, and identity are required")

    email = normalize_email(email)
    if not storage_service.is_data_uri(identity):
        raise ValidationError("Identity image is required as base64")

    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("User already exists with this email")

    password_hash = hash_password(password)
    identity_url = storage_service.upload(identity, storage_service.FOLDER_IDENTITY)

    user = User(
        name=name,
        email=email,
        phone=(phone or "").strip(),
        shop_name=(shop_name or "").strip(),
        identity_url=identity_url,
        password_hash=password_hash,
        role=ROLE_SELLER,
        approved=False,
        credit_amount=0,
        pending_amount=0,
        total_orders=0,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User already exists with this email")

    logger.info("Seller %s signed up (awaiting approval)", user.id)
    return user


def authenticate(email: str, password: str) -> User:
    """
    Verify credentials for admin or seller login.

    Raises AuthenticationError on unknown email / wrong password and
    ForbiddenError for sellers that are not approved yet or deactivated.
    Updates last_login_at on success.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = (
        db.session.query(User)
        .filter(User.email == str(email).strip().lower())
        .first()
    )
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    if not user.is_active:
        raise ForbiddenError("Account is deactivated")

    if user.is_seller and not user.approved:
        raise ForbiddenError("Wait for the approval notification")

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def ensure_admin(name: str | None = None, email: str | None = None, password: str | None = None) -> tuple[User, bool]:
    """
    Create the singleton admin if none exists.

    Returns (admin, created). An existing admin is never modified.
    """
    existing = (
        db.session.query(User)
        .filter_by(role=ROLE_ADMIN)
        .order_by(User.id.asc())
        .first()
    )
    if existing:
        return existing, False

    config = current_app.config
    admin = User(
        name=name or config.get("ADMIN_NAME", "Admin"),
        email=normalize_email(email or config.get("ADMIN_EMAIL")),
        password_hash=hash_password(password or config.get("ADMIN_PASSWORD")),
        role=ROLE_ADMIN,
        approved=True,
        credit_amount=0,
        pending_amount=0,
        total_orders=0,
    )
    db.session.add(admin)
    db.session.commit()
    logger.info("Created admin account %s", admin.email)
    return admin, True
