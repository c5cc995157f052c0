# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/marketplace/routes/auth.py
"""
Authentication API routes

- Seller self-signup (pending admin approval)
- Login for admin and approved sellers (opaque bearer token)
- Logout revokes the presented token
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..validation import MarketplaceError
from ..decorators import require_auth, bearer_token


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/signup")
def signup_route():
    """
    Body: {"name", "email", "password", "identity": <base64 data URI>,
           "phone"?, "shop_name"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        auth_service.signup_seller(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            identity=data.get("identity"),
            phone=data.get("phone"),
            shop_name=data.get("shop_name", data.get("shopName")),
        )
        return jsonify({"message": "Signup successful, please wait for admin verification"}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to sign up seller")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes
    and as {"token": ...} auth data on the Socket.IO connection.
    """
    try:
        data = request.get_json(silent=True) or {}
        user = auth_service.authenticate(data.get("email"), data.get("password"))

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(bearer_token())
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200
