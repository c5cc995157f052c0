from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, money


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_PICKED = "picked"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_REJECTED = "rejected"
ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_PICKED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_REJECTED,
)

RESPONSE_PENDING = "pending"
RESPONSE_ACCEPTED = "accepted"
RESPONSE_REJECTED = "rejected"
SELLER_RESPONSES = (RESPONSE_PENDING, RESPONSE_ACCEPTED, RESPONSE_REJECTED)


class Order(db.Model):
    """
    Admin-created order addressed to one seller.

    Two independent state fields:
    - seller_response: pending -> accepted | rejected, exactly once
    - status: pending -> processing (on accept) -> picked -> delivered

    total_amount / total_profit are always recomputed from items
    (see order_service._apply_items); they are never set on their own.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_seller_response_status", "seller_id", "seller_response", "status"),
        db.Index("ix_orders_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-1739999999123456-0042")
    order_number = db.Column(db.String(64), nullable=False, unique=True)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_profit = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    seller_response = db.Column(db.String(16), nullable=False, default=RESPONSE_PENDING, index=True)

    notes = db.Column(db.Text, nullable=False, default="")
    rejection_reason = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("User", foreign_keys=[seller_id])
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "seller_id": self.seller_id,
            "seller": self.seller.to_summary() if self.seller else None,
            "created_by_user_id": self.created_by_user_id,
            "items": [item.to_dict() for item in self.items],
            "total_amount": money(self.total_amount),
            "total_profit": money(self.total_profit),
            "status": self.status,
            "seller_response": self.seller_response,
            "notes": self.notes,
            "rejection_reason": self.rejection_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "accepted_at": to_utc_z(self.accepted_at) if self.accepted_at else None,
            "delivered_at": to_utc_z(self.delivered_at) if self.delivered_at else None,
        }


class OrderItem(db.Model):
    """Line item with a pricing snapshot taken when the order was built."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Nullable so catalog deletions do not rewrite order history
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    original_price = db.Column(db.Numeric(12, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    profit = db.Column(db.Numeric(12, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": self.product.to_summary() if self.product else None,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "original_price": money(self.original_price),
            "discounted_price": money(self.discounted_price),
            "total_price": money(self.total_price),
            "profit": money(self.profit),
        }


class OrderSequence(db.Model):
    """
    Atomic order number counter.

    One row per sequence name; incremented with a single UPDATE so two
    concurrent order creations never read the same count.
    """
    __tablename__ = "order_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class BalanceLedgerEntry(db.Model):
    """
    Append-only journal of seller balance movements.

    Invariants:
    - Written in the same transaction as the balance UPDATE it records.
    - Never updated or deleted; order_id is kept as a plain value so that
      deleting an order leaves its history intact.
    - credit_after / pending_after are the balances right after the movement.
    """
    __tablename__ = "balance_ledger_entries"
    __table_args__ = (
        db.Index("ix_balance_ledger_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_id = db.Column(db.Integer, nullable=True, index=True)
    order_number = db.Column(db.String(64), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)

    # recharge, reserve, deliver, refund
    event_type = db.Column(db.String(32), nullable=False, index=True)
    credit_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    pending_delta = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_after = db.Column(db.Numeric(12, 2), nullable=False)
    pending_after = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "actor_user_id": self.actor_user_id,
            "event_type": self.event_type,
            "credit_delta": money(self.credit_delta),
            "pending_delta": money(self.pending_delta),
            "credit_after": money(self.credit_after),
            "pending_after": money(self.pending_after),
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
