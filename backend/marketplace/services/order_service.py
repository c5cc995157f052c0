"""
Order Service - order lifecycle and its ledger effects

State machine:
    seller_response: pending -> accepted | rejected (exactly once)
    status:          pending -> processing (accept) -> picked -> delivered
                     pending -> rejected (seller rejects)

Financial effects (ledger_service):
    accept   credit -= total, pending += total
    deliver  pending -= total (floored at 0), credit += total + profit,
             total_orders += 1 (once; repeated deliveries are no-ops)
    delete   accepted and undelivered orders give the reservation back

Each operation runs inside run_with_retry; the order row is locked and the
status change commits together with its balance UPDATE or not at all.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal

from sqlalchemy import case, func, text, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Order,
    OrderItem,
    OrderSequence,
    Product,
    User,
    ROLE_SELLER,
)
from ..models.orders import (
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PICKED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_REJECTED,
    RESPONSE_ACCEPTED,
    RESPONSE_PENDING,
    RESPONSE_REJECTED,
)
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    parse_quantity,
)
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

ADMIN_SETTABLE_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_PICKED,
    ORDER_STATUS_DELIVERED,
)
SELLER_RESPONSE_CHOICES = (RESPONSE_ACCEPTED, RESPONSE_REJECTED)

ORDER_SEQUENCE_NAME = "orders"


def _begin_write() -> None:
    # SQLite: take the write lock up front so read-check-write runs serialized.
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def _require_admin(actor: User, message: str) -> None:
    if not actor or not actor.is_admin:
        raise ForbiddenError(message)


def _validate_seller(seller_id) -> User:
    seller = db.session.query(User).filter_by(id=seller_id).first() if seller_id else None
    if not seller or seller.role != ROLE_SELLER or not seller.approved:
        raise ValidationError(
            "Invalid or unapproved seller",
            details={"seller_id": seller_id},
        )
    return seller


def _build_items(items) -> list[OrderItem]:
    """
    Resolve products and snapshot their pricing.

    total_price = discounted_price * quantity
    profit      = (original_price - discounted_price) * quantity
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    built: list[OrderItem] = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"position": position})

        product_id = item.get("product_id", item.get("productId"))
        quantity = parse_quantity(item.get("quantity"))

        product = db.session.query(Product).filter_by(id=product_id).first() if product_id else None
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        original_price = Decimal(product.price)
        discounted_price = Decimal(product.selling_price)

        built.append(OrderItem(
            position=position,
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            original_price=original_price,
            discounted_price=discounted_price,
            total_price=discounted_price * quantity,
            profit=(original_price - discounted_price) * quantity,
        ))
    return built


def _apply_items(order: Order, items: list[OrderItem]) -> None:
    """Replace items and recompute totals; the only place totals are written."""
    order.items = items
    order.total_amount = sum((i.total_price for i in items), Decimal("0"))
    order.total_profit = sum((i.profit for i in items), Decimal("0"))


def next_order_number() -> str:
    """
    Allocate an order number: high-resolution timestamp + atomic sequence.

    The counter is bumped with a single UPDATE so concurrent creations never
    share a sequence value even within the same microsecond.
    """
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.name == ORDER_SEQUENCE_NAME)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(OrderSequence.next_number)
            .filter_by(name=ORDER_SEQUENCE_NAME)
            .scalar()
        )
        seq = current - 1
    else:
        sequence = OrderSequence(name=ORDER_SEQUENCE_NAME, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(sequence)
            seq = 1
        except IntegrityError:
            # Another transaction created the row first.
            db.session.execute(stmt)
            db.session.flush()
            current = (
                db.session.query(OrderSequence.next_number)
                .filter_by(name=ORDER_SEQUENCE_NAME)
                .scalar()
            )
            seq = current - 1

    micros = time.time_ns() // 1_000
    return f"ORD-{micros}-{seq:04d}"


def _load_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def create_order(seller_id, items, notes: str | None, actor: User) -> Order:
    """Create a pending order for an approved seller. No balance effect."""
    _require_admin(actor, "Only admins can create orders")
    if not seller_id or not items:
        raise ValidationError("Seller ID and at least one item are required")

    actor_id = actor.id

    def _op():
        _begin_write()
        seller = _validate_seller(seller_id)
        built = _build_items(items)

        order = Order(
            order_number=next_order_number(),
            seller_id=seller.id,
            created_by_user_id=actor_id,
            status=ORDER_STATUS_PENDING,
            seller_response=RESPONSE_PENDING,
            notes=(notes or "").strip(),
        )
        _apply_items(order, built)

        db.session.add(order)
        db.session.commit()
        logger.info(
            "Order %s created for seller %s total=%s profit=%s",
            order.order_number, seller.id, order.total_amount, order.total_profit,
        )
        return order

    return run_with_retry(_op)


def list_orders(actor: User) -> list[Order]:
    """Admin: every order. Seller: own orders. Newest first."""
    q = db.session.query(Order)
    if actor.is_seller:
        q = q.filter(Order.seller_id == actor.id)
    elif not actor.is_admin:
        raise ForbiddenError("Unauthorized")
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order(order_id: int, actor: User) -> Order:
    q = db.session.query(Order).filter(Order.id == order_id)
    if actor.is_seller:
        q = q.filter(Order.seller_id == actor.id)
    order = q.first()
    if not order:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def seller_order_response(
    order_id: int,
    response: str,
    actor: User,
    rejection_reason: str | None = None,
) -> Order:
    """
    Seller accepts or rejects an order, exactly once.

    Accept reserves the order total (credit -> pending) and moves the order
    to processing. Reject records the reason and moves the order to the
    terminal rejected status.
    """
    if not actor or not actor.is_seller:
        raise ForbiddenError("Only sellers can respond to orders")

    response = (response or "").strip().lower()
    if response not in SELLER_RESPONSE_CHOICES:
        raise ValidationError("Invalid response", details={"allowed": list(SELLER_RESPONSE_CHOICES)})

    actor_id = actor.id

    def _op():
        _begin_write()
        order = _load_order_locked(order_id)
        if order.seller_id != actor_id:
            raise NotFoundError("Order not found", details={"order_id": order_id})

        if order.seller_response != RESPONSE_PENDING:
            raise ConflictError(
                "Order has already been responded to",
                details={"seller_response": order.seller_response},
            )

        if response == RESPONSE_ACCEPTED:
            ledger_service.reserve_for_order(order, actor_user_id=actor_id)
            order.status = ORDER_STATUS_PROCESSING
            order.accepted_at = utcnow()
        else:
            order.rejection_reason = (rejection_reason or "").strip()
            order.status = ORDER_STATUS_REJECTED

        order.seller_response = response
        db.session.commit()
        logger.info("Order %s %s by seller %s", order.order_number, response, actor_id)
        return order

    return run_with_retry(_op)


def update_order_status(order_id: int, new_status: str, actor: User) -> Order:
    """
    Admin moves an order through fulfilment.

    Only the first transition into delivered touches balances; delivered_at
    marks the payout, so moving a delivered order back and forth never pays
    twice. Orders the seller has not accepted cannot be fulfilled, and
    rejected orders are terminal.
    """
    _require_admin(actor, "Only admins can update order status")

    new_status = (new_status or "").strip().lower()
    if new_status not in ADMIN_SETTABLE_STATUSES:
        raise ValidationError("Invalid status", details={"allowed": list(ADMIN_SETTABLE_STATUSES)})

    actor_id = actor.id

    def _op():
        _begin_write()
        order = _load_order_locked(order_id)

        if order.status == ORDER_STATUS_REJECTED or order.seller_response == RESPONSE_REJECTED:
            raise ConflictError("Rejected orders cannot change status")

        if new_status != ORDER_STATUS_PENDING and order.seller_response != RESPONSE_ACCEPTED:
            raise ConflictError(
                "Order must be accepted by the seller before fulfilment",
                details={"seller_response": order.seller_response},
            )

        old_status = order.status
        order.status = new_status

        if new_status == ORDER_STATUS_DELIVERED and order.delivered_at is None:
            order.delivered_at = utcnow()
            ledger_service.release_on_delivery(order, actor_user_id=actor_id)

        db.session.commit()
        logger.info("Order %s status %s -> %s", order.order_number, old_status, new_status)
        return order

    return run_with_retry(_op)


def update_order(order_id: int, patch: dict, actor: User) -> Order:
    """Admin edit of seller, items and notes; answered orders are frozen."""
    _require_admin(actor, "Only admins can update orders")
    patch = patch or {}

    def _op():
        _begin_write()
        order = _load_order_locked(order_id)

        if order.seller_response == RESPONSE_ACCEPTED:
            raise ConflictError("Cannot update accepted orders")
        if order.seller_response == RESPONSE_REJECTED or order.status == ORDER_STATUS_REJECTED:
            raise ConflictError("Cannot update rejected orders")

        seller_id = patch.get("seller_id", patch.get("sellerId"))
        if seller_id and str(seller_id) != str(order.seller_id):
            seller = _validate_seller(seller_id)
            order.seller_id = seller.id

        if "items" in patch:
            _apply_items(order, _build_items(patch["items"]))

        if "notes" in patch and patch["notes"] is not None:
            order.notes = str(patch["notes"]).strip()

        db.session.commit()
        return order

    return run_with_retry(_op)


def delete_order(order_id: int, actor: User) -> None:
    """
    Admin delete. An accepted order that is not yet delivered still holds a
    reservation, which goes back to the seller's credit. Orders that were ever
    delivered already released their funds, so nothing is refunded for them.
    """
    _require_admin(actor, "Only admins can delete orders")
    actor_id = actor.id

    def _op():
        _begin_write()
        order = _load_order_locked(order_id)

        if order.seller_response == RESPONSE_ACCEPTED and order.delivered_at is None:
            ledger_service.refund_reservation(order, actor_user_id=actor_id)

        order_number = order.order_number
        db.session.delete(order)
        db.session.commit()
        logger.info("Order %s deleted by %s", order_number, actor_id)

    run_with_retry(_op)


def get_order_stats(seller_id, actor: User) -> dict:
    """
    Dashboard aggregates for one seller. Sellers only ever see themselves;
    admins must name the seller.
    """
    if actor.is_seller:
        if seller_id is not None and str(seller_id) != str(actor.id):
            raise ForbiddenError("Unauthorized")
        seller_id = actor.id
    elif not actor.is_admin:
        raise ForbiddenError("Unauthorized")

    if seller_id is None:
        raise ValidationError("seller_id is required")

    seller = db.session.query(User).filter_by(id=seller_id).first()
    if not seller:
        raise NotFoundError("Seller not found", details={"seller_id": seller_id})

    def _count_when(cond):
        return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)

    def _sum_when(cond, column):
        return func.coalesce(func.sum(case((cond, column), else_=0)), 0)

    accepted = Order.seller_response == RESPONSE_ACCEPTED
    delivered = Order.status == ORDER_STATUS_DELIVERED

    row = db.session.query(
        func.count(Order.id),
        func.coalesce(func.sum(Order.total_amount), 0),
        func.coalesce(func.sum(Order.total_profit), 0),
        _count_when(Order.seller_response == RESPONSE_PENDING),
        _count_when(accepted),
        _count_when(Order.seller_response == RESPONSE_REJECTED),
        _count_when(delivered),
        _sum_when(accepted & (Order.status != ORDER_STATUS_DELIVERED), Order.total_amount),
        _sum_when(delivered, Order.total_amount),
    ).filter(Order.seller_id == seller.id).one()

    status_rows = (
        db.session.query(Order.status, func.count(Order.id))
        .filter(Order.seller_id == seller.id)
        .group_by(Order.status)
        .all()
    )

    def _dec(value) -> Decimal:
        return Decimal(str(value or 0)).quantize(Decimal("0.01"))

    pending_amount = _dec(seller.pending_amount)
    available_amount = _dec(row[8])

    return {
        "seller_id": seller.id,
        "totalOrders": int(row[0] or 0),
        "totalRevenue": _dec(row[1]),
        "totalProfit": _dec(row[2]),
        "pendingOrders": int(row[3] or 0),
        "acceptedOrders": int(row[4] or 0),
        "rejectedOrders": int(row[5] or 0),
        "deliveredOrders": int(row[6] or 0),
        "ordersByStatus": {status: int(count) for status, count in status_rows},
        "pendingOrderAmount": _dec(row[7]),
        "availableAmount": available_amount,
        "creditAmount": _dec(seller.credit_amount),
        "pendingAmount": pending_amount,
        "availableBalance": available_amount - pending_amount,
    }
