from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, money


ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
VALID_ROLES = {ROLE_ADMIN, ROLE_SELLER}


class User(db.Model):
    """
    Admin and seller accounts.

    Sellers carry the marketplace balances:
    - credit_amount: spendable balance used to accept new orders
    - pending_amount: funds reserved against accepted, undelivered orders

    Balances are only ever changed through ledger_service (single UPDATE
    statements); the CHECK constraints back the non-negative invariant.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("credit_amount >= 0", name="ck_users_credit_non_negative"),
        db.CheckConstraint("pending_amount >= 0", name="ck_users_pending_non_negative"),
        db.Index("ix_users_role_approved", "role", "approved"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)
    shop_name = db.Column(db.String(120), nullable=True)

    # Uploaded document/profile image URLs (object storage)
    identity_url = db.Column(db.String(512), nullable=True)
    profile_url = db.Column(db.String(512), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default=ROLE_SELLER, index=True)
    approved = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    credit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    pending_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_seller(self) -> bool:
        return self.role == ROLE_SELLER

    def to_summary(self) -> dict:
        """Participant summary embedded in conversations and orders."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "shop_name": self.shop_name,
            "profile_url": self.profile_url,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "shop_name": self.shop_name,
            "identity_url": self.identity_url,
            "profile_url": self.profile_url,
            "role": self.role,
            "approved": self.approved,
            "is_active": self.is_active,
            "credit_amount": money(self.credit_amount),
            "pending_amount": money(self.pending_amount),
            "total_orders": self.total_orders,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Opaque bearer tokens issued at login.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 7-day absolute timeout
    - 24-hour idle timeout
    - Revocable on logout or account deactivation
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship(
        "User",
        backref=db.backref("sessions", lazy=True, cascade="all, delete-orphan", passive_deletes=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
