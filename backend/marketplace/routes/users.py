# Overview: Flask API routes for user operations; parses input and returns JSON responses.

# backend/marketplace/routes/users.py
"""
User management routes

Admins manage seller accounts (profile, approval, activation, credit).
Sellers may read and edit their own profile and read their own ledger.
Balances are never writable here except through the recharge endpoint.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN
from ..services import ledger_service, user_service
from ..validation import MarketplaceError
from ..decorators import require_auth, require_role


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    """
    Query params:
    - role: "seller" | "admin" (optional)
    """
    try:
        users = user_service.list_users(g.current_user, role=request.args.get("role"))
        return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list users")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    try:
        user = user_service.get_user(user_id, g.current_user)
        return jsonify({"user": user.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    try:
        user = user_service.update_user(user_id, request.get_json(silent=True), g.current_user)
        return jsonify({"message": "User updated successfully", "user": user.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.delete("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_user_route(user_id: int):
    try:
        user_service.delete_user(user_id, g.current_user)
        return jsonify({"message": "User deleted successfully"}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.post("/<int:user_id>/recharge")
@require_auth
@require_role(ROLE_ADMIN)
def recharge_route(user_id: int):
    """Body: {"amount": "100.00", "note": str}"""
    try:
        data = request.get_json(silent=True) or {}
        entry = ledger_service.recharge_credit(
            user_id, data.get("amount"), g.current_user, note=data.get("note"),
        )
        user = user_service.get_user(user_id, g.current_user)
        return jsonify({"entry": entry.to_dict(), "user": user.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to recharge credit")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.get("/<int:user_id>/ledger")
@require_auth
def ledger_route(user_id: int):
    """
    Balance journal, newest first.

    Query params:
    - limit: int (default 100, max 500)
    """
    try:
        entries = ledger_service.list_ledger_entries(
            user_id, g.current_user, limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch ledger")
        return jsonify({"error": "Internal server error"}), 500
