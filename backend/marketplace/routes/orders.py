# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/marketplace/routes/orders.py
"""
Order API routes

Admins create, edit, fulfil and delete orders; sellers accept or reject
the orders addressed to them. Balance effects happen in order_service.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN, ROLE_SELLER
from ..services import order_service
from ..validation import MarketplaceError
from ..decorators import require_auth, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_order_route():
    """
    Create an order for an approved seller.

    Body: {"seller_id": int, "items": [{"product_id": int, "quantity": int}], "notes": str}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            data.get("seller_id", data.get("sellerId")),
            data.get("items"),
            data.get("notes"),
            g.current_user,
        )
        return jsonify({"message": "Order created successfully", "order": order.to_dict()}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders_route():
    """Admin: all orders. Seller: own orders."""
    try:
        orders = order_service.list_orders(g.current_user)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/stats")
@require_auth
def order_stats_route():
    """
    Dashboard statistics.

    Query params:
    - seller_id: int (admins; sellers always get their own)
    """
    try:
        stats = order_service.get_order_stats(
            request.args.get("seller_id", type=int),
            g.current_user,
        )
        payload = {k: (f"{v:.2f}" if not isinstance(v, (int, dict)) else v) for k, v in stats.items()}
        return jsonify(payload), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute order stats")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.current_user)
        return jsonify({"order": order.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_order_route(order_id: int):
    """Edit seller, items or notes of an order the seller has not accepted."""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order(order_id, data, g.current_user)
        return jsonify({"message": "Order updated successfully", "order": order.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id, g.current_user)
        return jsonify({"message": "Order deleted successfully"}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/response")
@require_auth
@require_role(ROLE_SELLER)
def seller_response_route(order_id: int):
    """
    Seller accepts or rejects an order.

    Body: {"response": "accepted" | "rejected", "rejection_reason": str}
    Accepting needs credit_amount >= order total (400 insufficient_balance).
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.seller_order_response(
            order_id,
            data.get("response"),
            g.current_user,
            rejection_reason=data.get("rejection_reason", data.get("rejectionReason")),
        )
        return jsonify({
            "message": f"Order {order.seller_response} successfully",
            "order": order.to_dict(),
            "seller": g.current_user.to_dict(),
        }), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record seller response")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_role(ROLE_ADMIN)
def update_status_route(order_id: int):
    """Body: {"status": "pending" | "processing" | "picked" | "delivered"}"""
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.update_order_status(order_id, data.get("status"), g.current_user)
        return jsonify({"message": "Order status updated successfully", "order": order.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
