"""
Order lifecycle and seller balance tests.

Verifies:
- Order totals and profit are derived from item price snapshots
- Accept moves the order total from credit to pending, exactly once
- Insufficient credit rejects the accept and leaves balances untouched
- Delivery releases pending and pays out total + profit, once
- Delete refunds an outstanding reservation (never after delivery)
- Every balance movement is journaled
"""

from decimal import Decimal

import pytest

from marketplace.models import BalanceLedgerEntry, Order, User
from marketplace.services import ledger_service, order_service
from marketplace.validation import (
    ConflictError,
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)

from conftest import balances, set_credit


def _order(admin, seller, product, quantity=2):
    return order_service.create_order(
        seller.id, [{"product_id": product.id, "quantity": quantity}], "rush", admin,
    )


def _assert_non_negative(db_session, *user_ids):
    for user_id in user_ids:
        credit, pending = balances(db_session, user_id)
        assert credit >= 0
        assert pending >= 0


# =============================================================================
# CREATE
# =============================================================================


class TestCreateOrder:

    def test_totals_from_discounted_price(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)

        assert order.total_amount == Decimal("160.00")
        assert order.total_profit == Decimal("40.00")
        assert order.status == "pending"
        assert order.seller_response == "pending"
        assert order.order_number.startswith("ORD-")

        item = order.items[0]
        assert item.original_price == Decimal("100.00")
        assert item.discounted_price == Decimal("80.00")
        assert item.total_price == Decimal("160.00")
        assert item.profit == Decimal("40.00")

    def test_no_balance_effect(self, db_session, admin, seller, product):
        _order(admin, seller, product)
        assert balances(db_session, seller.id) == (Decimal("200.00"), Decimal("0.00"))

    def test_quantity_defaults_to_one_and_price_falls_back(self, db_session, admin, seller, plain_product):
        order = order_service.create_order(seller.id, [{"product_id": plain_product.id}], None, admin)

        assert order.items[0].quantity == 1
        assert order.total_amount == Decimal("25.00")
        assert order.total_profit == Decimal("0.00")

    def test_order_numbers_are_unique(self, db_session, admin, seller, product):
        numbers = {_order(admin, seller, product).order_number for _ in range(5)}
        assert len(numbers) == 5

    def test_requires_admin(self, db_session, seller, product):
        with pytest.raises(ForbiddenError):
            _order(seller, seller, product)

    def test_empty_items_rejected(self, db_session, admin, seller):
        with pytest.raises(ValidationError):
            order_service.create_order(seller.id, [], None, admin)

    def test_unapproved_seller_rejected(self, db_session, admin, unapproved_seller, product):
        with pytest.raises(ValidationError):
            _order(admin, unapproved_seller, product)

    def test_admin_cannot_be_the_seller(self, db_session, admin, product):
        with pytest.raises(ValidationError):
            _order(admin, admin, product)

    def test_unknown_product(self, db_session, admin, seller):
        with pytest.raises(NotFoundError):
            order_service.create_order(seller.id, [{"product_id": 9999, "quantity": 1}], None, admin)
        assert db_session.query(Order).count() == 0

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "two", True])
    def test_bad_quantity(self, db_session, admin, seller, product, quantity):
        with pytest.raises(ValidationError):
            order_service.create_order(
                seller.id, [{"product_id": product.id, "quantity": quantity}], None, admin,
            )


# =============================================================================
# SELLER RESPONSE
# =============================================================================


class TestSellerResponse:

    def test_accept_reserves_total(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)

        order = order_service.seller_order_response(order.id, "accepted", seller)

        assert order.status == "processing"
        assert order.seller_response == "accepted"
        assert order.accepted_at is not None
        assert balances(db_session, seller.id) == (Decimal("40.00"), Decimal("160.00"))

    def test_second_response_conflicts(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)

        with pytest.raises(ConflictError):
            order_service.seller_order_response(order.id, "accepted", seller)
        with pytest.raises(ConflictError):
            order_service.seller_order_response(order.id, "rejected", seller)

        # Reserved only once
        assert balances(db_session, seller.id) == (Decimal("40.00"), Decimal("160.00"))

    def test_insufficient_balance_leaves_balances(self, db_session, admin, seller, product):
        set_credit(db_session, seller.id, "100")
        order = _order(admin, seller, product)

        with pytest.raises(InsufficientBalanceError) as exc:
            order_service.seller_order_response(order.id, "accepted", seller)

        assert exc.value.required == Decimal("160.00")
        assert exc.value.available == Decimal("100.00")
        assert exc.value.to_dict()["details"] == {"required": "160.00", "available": "100.00"}
        assert balances(db_session, seller.id) == (Decimal("100.00"), Decimal("0.00"))

        db_session.expire_all()
        order = db_session.get(Order, order.id)
        assert order.seller_response == "pending"
        assert order.status == "pending"
        assert db_session.query(BalanceLedgerEntry).count() == 0

    def test_exact_balance_accepts(self, db_session, admin, seller, product):
        set_credit(db_session, seller.id, "160")
        order = _order(admin, seller, product)

        order_service.seller_order_response(order.id, "accepted", seller)

        assert balances(db_session, seller.id) == (Decimal("0.00"), Decimal("160.00"))

    def test_reject_records_reason(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)

        order = order_service.seller_order_response(
            order.id, "rejected", seller, rejection_reason="Out of stock",
        )

        assert order.seller_response == "rejected"
        assert order.status == "rejected"
        assert order.rejection_reason == "Out of stock"
        assert balances(db_session, seller.id) == (Decimal("200.00"), Decimal("0.00"))

    def test_other_seller_cannot_respond(self, db_session, admin, seller, other_seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(NotFoundError):
            order_service.seller_order_response(order.id, "accepted", other_seller)

    def test_admin_cannot_respond(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(ForbiddenError):
            order_service.seller_order_response(order.id, "accepted", admin)

    def test_invalid_response(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(ValidationError):
            order_service.seller_order_response(order.id, "maybe", seller)


# =============================================================================
# STATUS / DELIVERY
# =============================================================================


class TestDelivery:

    def test_full_scenario(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        assert (order.total_amount, order.total_profit) == (Decimal("160.00"), Decimal("40.00"))

        order_service.seller_order_response(order.id, "accepted", seller)
        assert balances(db_session, seller.id) == (Decimal("40.00"), Decimal("160.00"))

        order = order_service.update_order_status(order.id, "delivered", admin)
        assert order.status == "delivered"
        assert order.delivered_at is not None
        assert balances(db_session, seller.id) == (Decimal("240.00"), Decimal("0.00"))

        db_session.expire_all()
        assert db_session.get(User, seller.id).total_orders == 1

    def test_repeat_delivery_is_a_noop(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        order_service.update_order_status(order.id, "picked", admin)
        order_service.update_order_status(order.id, "delivered", admin)
        order_service.update_order_status(order.id, "delivered", admin)

        assert balances(db_session, seller.id) == (Decimal("240.00"), Decimal("0.00"))
        db_session.expire_all()
        assert db_session.get(User, seller.id).total_orders == 1

    def test_redelivery_after_moving_back_pays_nothing(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        order_service.update_order_status(order.id, "delivered", admin)
        after_first = balances(db_session, seller.id)

        order_service.update_order_status(order.id, "picked", admin)
        order = order_service.update_order_status(order.id, "delivered", admin)

        assert balances(db_session, seller.id) == after_first == (Decimal("240.00"), Decimal("0.00"))
        assert order.status == "delivered"
        db_session.expire_all()
        assert db_session.get(User, seller.id).total_orders == 1
        entries = db_session.query(BalanceLedgerEntry).filter_by(order_id=order.id).all()
        assert sorted(e.event_type for e in entries) == ["deliver", "reserve"]

    def test_pending_release_is_floored(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        # Reservation drifted below the order total
        db_session.query(User).filter_by(id=seller.id).update({"pending_amount": Decimal("100")})
        db_session.commit()

        order_service.update_order_status(order.id, "delivered", admin)

        credit, pending = balances(db_session, seller.id)
        assert pending == Decimal("0.00")
        assert credit == Decimal("240.00")

    def test_unaccepted_order_cannot_be_fulfilled(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(ConflictError):
            order_service.update_order_status(order.id, "delivered", admin)
        assert balances(db_session, seller.id) == (Decimal("200.00"), Decimal("0.00"))

    def test_rejected_order_is_terminal(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "rejected", seller)
        with pytest.raises(ConflictError):
            order_service.update_order_status(order.id, "processing", admin)

    def test_invalid_status(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(ValidationError):
            order_service.update_order_status(order.id, "rejected", admin)

    def test_seller_cannot_change_status(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        with pytest.raises(ForbiddenError):
            order_service.update_order_status(order.id, "picked", seller)


# =============================================================================
# UPDATE / DELETE
# =============================================================================


class TestUpdateAndDelete:

    def test_update_recomputes_totals(self, db_session, admin, seller, product, plain_product):
        order = _order(admin, seller, product)

        order = order_service.update_order(
            order.id,
            {"items": [{"product_id": plain_product.id, "quantity": 3}], "notes": "changed"},
            admin,
        )

        assert order.total_amount == Decimal("75.00")
        assert order.total_profit == Decimal("0.00")
        assert order.notes == "changed"
        assert len(order.items) == 1

    def test_update_reassigns_seller(self, db_session, admin, seller, other_seller, product):
        order = _order(admin, seller, product)
        order = order_service.update_order(order.id, {"seller_id": other_seller.id}, admin)
        assert order.seller_id == other_seller.id

    def test_accepted_order_is_frozen(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        with pytest.raises(ConflictError):
            order_service.update_order(order.id, {"notes": "late edit"}, admin)

    def test_rejected_order_is_frozen(self, db_session, admin, seller, other_seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "rejected", seller)

        with pytest.raises(ConflictError):
            order_service.update_order(order.id, {"seller_id": other_seller.id}, admin)

        db_session.expire_all()
        assert db_session.get(Order, order.id).seller_id == seller.id

    def test_update_with_empty_items_rejected(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)

        with pytest.raises(ValidationError):
            order_service.update_order(order.id, {"items": []}, admin)

        db_session.expire_all()
        order = db_session.get(Order, order.id)
        assert len(order.items) == 1
        assert order.total_amount == Decimal("160.00")

    def test_price_snapshot_survives_product_edit(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        product.discounted_price = Decimal("10.00")
        db_session.commit()

        db_session.expire_all()
        order = db_session.get(Order, order.id)
        assert order.total_amount == Decimal("160.00")

    def test_delete_refunds_reservation(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)

        order_service.delete_order(order.id, admin)

        assert balances(db_session, seller.id) == (Decimal("200.00"), Decimal("0.00"))
        assert db_session.query(Order).count() == 0

    def test_delete_after_delivery_does_not_refund(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        order_service.update_order_status(order.id, "delivered", admin)

        order_service.delete_order(order.id, admin)

        assert balances(db_session, seller.id) == (Decimal("240.00"), Decimal("0.00"))

    def test_delete_after_delivery_moved_back_does_not_refund(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        order_service.update_order_status(order.id, "delivered", admin)
        order_service.update_order_status(order.id, "picked", admin)

        order_service.delete_order(order.id, admin)

        assert balances(db_session, seller.id) == (Decimal("240.00"), Decimal("0.00"))

    def test_delete_pending_order_has_no_balance_effect(self, db_session, admin, seller, product):
        order = _order(admin, seller, product)
        order_service.delete_order(order.id, admin)
        assert balances(db_session, seller.id) == (Decimal("200.00"), Decimal("0.00"))

    def test_delete_missing_order(self, db_session, admin):
        with pytest.raises(NotFoundError):
            order_service.delete_order(12345, admin)

    def test_balances_never_negative(self, db_session, admin, seller, product, plain_product):
        orders = [_order(admin, seller, product, quantity=1) for _ in range(3)]
        for order in orders:
            try:
                order_service.seller_order_response(order.id, "accepted", seller)
            except InsufficientBalanceError:
                pass
            _assert_non_negative(db_session, seller.id)

        order_service.update_order_status(orders[0].id, "delivered", admin)
        _assert_non_negative(db_session, seller.id)
        for order in orders:
            order_service.delete_order(order.id, admin)
            _assert_non_negative(db_session, seller.id)


# =============================================================================
# LISTING / STATS / JOURNAL
# =============================================================================


class TestQueries:

    def test_seller_sees_only_own_orders(self, db_session, admin, seller, other_seller, product):
        mine = _order(admin, seller, product)
        _order(admin, other_seller, product)

        assert [o.id for o in order_service.list_orders(seller)] == [mine.id]
        assert len(order_service.list_orders(admin)) == 2

        theirs = order_service.list_orders(other_seller)[0]
        with pytest.raises(NotFoundError):
            order_service.get_order(theirs.id, seller)

    def test_stats(self, db_session, admin, seller, product, plain_product):
        delivered = _order(admin, seller, product, quantity=1)        # 80 / 20
        accepted = _order(admin, seller, plain_product, quantity=2)   # 50 / 0
        rejected = _order(admin, seller, plain_product, quantity=1)   # 25 / 0
        _order(admin, seller, plain_product, quantity=1)              # pending

        order_service.seller_order_response(delivered.id, "accepted", seller)
        order_service.update_order_status(delivered.id, "delivered", admin)
        order_service.seller_order_response(accepted.id, "accepted", seller)
        order_service.seller_order_response(rejected.id, "rejected", seller)

        stats = order_service.get_order_stats(None, seller)

        assert stats["totalOrders"] == 4
        assert stats["totalRevenue"] == Decimal("180.00")
        assert stats["totalProfit"] == Decimal("20.00")
        assert stats["pendingOrders"] == 1
        assert stats["acceptedOrders"] == 2
        assert stats["rejectedOrders"] == 1
        assert stats["deliveredOrders"] == 1
        assert stats["ordersByStatus"] == {"delivered": 1, "processing": 1, "rejected": 1, "pending": 1}
        assert stats["pendingOrderAmount"] == Decimal("50.00")
        assert stats["availableAmount"] == Decimal("80.00")
        assert stats["pendingAmount"] == Decimal("50.00")
        assert stats["availableBalance"] == Decimal("30.00")

    def test_seller_cannot_read_other_stats(self, db_session, seller, other_seller):
        with pytest.raises(ForbiddenError):
            order_service.get_order_stats(other_seller.id, seller)

    def test_admin_stats_need_seller(self, db_session, admin, seller):
        with pytest.raises(ValidationError):
            order_service.get_order_stats(None, admin)
        assert order_service.get_order_stats(seller.id, admin)["totalOrders"] == 0

    def test_journal_records_each_movement(self, db_session, admin, seller, product):
        ledger_service.recharge_credit(seller.id, "10.00", admin, note="top-up")
        order = _order(admin, seller, product)
        order_service.seller_order_response(order.id, "accepted", seller)
        order_service.update_order_status(order.id, "delivered", admin)

        entries = ledger_service.list_ledger_entries(seller.id, seller)
        by_type = {e.event_type: e for e in entries}

        assert set(by_type) == {"recharge", "reserve", "deliver"}
        assert by_type["recharge"].credit_delta == Decimal("10.00")
        assert by_type["reserve"].credit_delta == Decimal("-160.00")
        assert by_type["reserve"].pending_delta == Decimal("160.00")
        assert by_type["deliver"].credit_delta == Decimal("200.00")
        assert by_type["deliver"].pending_after == Decimal("0.00")
        assert by_type["deliver"].credit_after == Decimal("250.00")

    def test_recharge_rules(self, db_session, admin, seller):
        with pytest.raises(ForbiddenError):
            ledger_service.recharge_credit(seller.id, "10", seller)
        with pytest.raises(ValidationError):
            ledger_service.recharge_credit(seller.id, "0", admin)
        with pytest.raises(ValidationError):
            ledger_service.recharge_credit(seller.id, "-5", admin)
        with pytest.raises(NotFoundError):
            ledger_service.recharge_credit(admin.id, "5", admin)

    def test_seller_cannot_read_other_journal(self, db_session, seller, other_seller):
        with pytest.raises(ForbiddenError):
            ledger_service.list_ledger_entries(other_seller.id, seller)
