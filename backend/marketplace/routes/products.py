# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/marketplace/routes/products.py
"""
Product catalog routes.

Reads are public; writes require the admin role. "image" accepts a base64
data URI (uploaded to object storage) or an existing URL.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..models import ROLE_ADMIN
from ..services import products_service
from ..validation import MarketplaceError
from ..decorators import require_auth, require_role

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    Query params:
    - category: str (optional)
    """
    products = products_service.list_products(category=request.args.get("category"))
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    try:
        return jsonify(products_service.get_product(product_id).to_dict()), 200
    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product():
    try:
        product = products_service.create_product(request.get_json(silent=True), g.current_user)
        return jsonify({"message": "Product created successfully", "product": product.to_dict()}), 201

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product(product_id: int):
    try:
        product = products_service.update_product(product_id, request.get_json(silent=True), g.current_user)
        return jsonify({"message": "Product updated", "product": product.to_dict()}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product(product_id: int):
    try:
        products_service.delete_product(product_id, g.current_user)
        return jsonify({"message": "Product deleted"}), 200

    except MarketplaceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
