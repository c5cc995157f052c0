# Overview: Seller balance ledger; every credit/pending movement goes through this module.

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import case, update

from ..extensions import db
from ..models import BalanceLedgerEntry, Order, User, ROLE_SELLER
from ..validation import ForbiddenError, InsufficientBalanceError, NotFoundError, ValidationError, parse_amount
from .concurrency import lock_for_update, run_with_retry
"""
Balance Ledger Invariants (authoritative)

- credit_amount >= 0 and pending_amount >= 0 for every user, always.
- Each movement is ONE UPDATE statement on the user row, so a debit/credit
  pair (e.g. credit -> pending on accept) can never be half applied.
- Subtractions from pending are floored at zero inside the statement.
- Every movement appends a BalanceLedgerEntry in the same transaction.
- This module never commits; callers own the transaction boundary.
"""

logger = logging.getLogger(__name__)

EVENT_RECHARGE = "recharge"
EVENT_RESERVE = "reserve"
EVENT_DELIVER = "deliver"
EVENT_REFUND = "refund"

ZERO = Decimal("0")


def _floored_subtract(column, amount):
    return case((column >= amount, column - amount), else_=ZERO)


def _balances(user_id: int) -> tuple[Decimal, Decimal]:
    row = (
        db.session.query(User.credit_amount, User.pending_amount)
        .filter(User.id == user_id)
        .one_or_none()
    )
    if row is None:
        raise NotFoundError("Seller not found", details={"seller_id": user_id})
    return Decimal(row[0] or 0), Decimal(row[1] or 0)


def _locked_balances(user_id: int) -> tuple[Decimal, Decimal]:
    row = lock_for_update(
        db.session.query(User.credit_amount, User.pending_amount).filter(User.id == user_id)
    ).one_or_none()
    if row is None:
        raise NotFoundError("Seller not found", details={"seller_id": user_id})
    return Decimal(row[0] or 0), Decimal(row[1] or 0)


def _apply(
    *,
    user_id: int,
    values: dict,
    event_type: str,
    order: Order | None = None,
    actor_user_id: int | None = None,
    guard=None,
    note: str | None = None,
) -> BalanceLedgerEntry | None:
    """
    Run one balance UPDATE and journal it.

    Returns None when the guard condition rejected the update (rowcount 0).
    """
    credit_before, pending_before = _locked_balances(user_id)

    stmt = update(User).where(User.id == user_id)
    if guard is not None:
        stmt = stmt.where(guard)
    stmt = stmt.values(**values).execution_options(synchronize_session="fetch")

    result = db.session.execute(stmt)
    if not result.rowcount:
        return None

    credit_after, pending_after = _balances(user_id)
    entry = BalanceLedgerEntry(
        user_id=user_id,
        order_id=order.id if order is not None else None,
        order_number=order.order_number if order is not None else None,
        actor_user_id=actor_user_id,
        event_type=event_type,
        credit_delta=credit_after - credit_before,
        pending_delta=pending_after - pending_before,
        credit_after=credit_after,
        pending_after=pending_after,
        note=note,
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        "Ledger %s user=%s order=%s credit=%s pending=%s",
        event_type,
        user_id,
        entry.order_number,
        credit_after,
        pending_after,
    )
    return entry


def reserve_for_order(order: Order, actor_user_id: int | None = None) -> BalanceLedgerEntry:
    """
    Move order.total_amount from credit to pending (seller accepts).

    The balance check is part of the UPDATE's WHERE clause, so concurrent
    accepts cannot both pass on the same credit.
    """
    amount = Decimal(order.total_amount)
    entry = _apply(
        user_id=order.seller_id,
        values={
            "credit_amount": User.credit_amount - amount,
            "pending_amount": User.pending_amount + amount,
        },
        guard=User.credit_amount >= amount,
        event_type=EVENT_RESERVE,
        order=order,
        actor_user_id=actor_user_id,
    )
    if entry is None:
        available, _ = _balances(order.seller_id)
        raise InsufficientBalanceError(required=amount, available=available)
    return entry


def release_on_delivery(order: Order, actor_user_id: int | None = None) -> BalanceLedgerEntry:
    """
    Delivery: reserved funds leave pending (floored at zero) and the order
    amount plus its profit lands in credit; the seller's delivered count
    goes up by one.
    """
    amount = Decimal(order.total_amount)
    profit = Decimal(order.total_profit)
    entry = _apply(
        user_id=order.seller_id,
        values={
            "pending_amount": _floored_subtract(User.pending_amount, amount),
            "credit_amount": User.credit_amount + amount + profit,
            "total_orders": User.total_orders + 1,
        },
        event_type=EVENT_DELIVER,
        order=order,
        actor_user_id=actor_user_id,
    )
    if entry is None:
        raise NotFoundError("Seller not found", details={"seller_id": order.seller_id})
    return entry


def refund_reservation(order: Order, actor_user_id: int | None = None) -> BalanceLedgerEntry:
    """Undo reserve_for_order for an accepted order that was never delivered."""
    amount = Decimal(order.total_amount)
    entry = _apply(
        user_id=order.seller_id,
        values={
            "credit_amount": User.credit_amount + amount,
            "pending_amount": _floored_subtract(User.pending_amount, amount),
        },
        event_type=EVENT_REFUND,
        order=order,
        actor_user_id=actor_user_id,
        note=f"Order {order.order_number} deleted",
    )
    if entry is None:
        raise NotFoundError("Seller not found", details={"seller_id": order.seller_id})
    return entry


def recharge_credit(seller_id: int, amount, actor: User, note: str | None = None) -> BalanceLedgerEntry:
    """
    Admin top-up of a seller's spendable credit.

    The generic user update endpoints refuse financial fields; this is the
    only way credit enters the system apart from deliveries.
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can recharge seller credit")

    value = parse_amount(amount)
    if value <= 0:
        raise ValidationError("amount must be > 0")

    def _op():
        seller = db.session.query(User).filter_by(id=seller_id).first()
        if not seller or seller.role != ROLE_SELLER:
            raise NotFoundError("Seller not found", details={"seller_id": seller_id})

        entry = _apply(
            user_id=seller_id,
            values={"credit_amount": User.credit_amount + value},
            event_type=EVENT_RECHARGE,
            actor_user_id=actor.id,
            note=note,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


def list_ledger_entries(user_id: int, actor: User, limit: int = 100) -> list[BalanceLedgerEntry]:
    """Journal for one seller, newest first. Sellers may read only their own."""
    if actor.is_seller and actor.id != user_id:
        raise ForbiddenError("Not authorized to view this ledger")

    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise NotFoundError("User not found", details={"user_id": user_id})

    limit = max(1, min(int(limit or 100), 500))
    return (
        db.session.query(BalanceLedgerEntry)
        .filter_by(user_id=user_id)
        .order_by(BalanceLedgerEntry.created_at.desc(), BalanceLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )
