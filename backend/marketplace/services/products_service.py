# backend/marketplace/services/products_service.py
"""
Products Service

Public catalog reads; admin-only writes. Images arrive as base64 data URIs
and are stored through storage_service; only the URL is persisted.
"""
from __future__ import annotations

import logging

from sqlalchemy import update

from ..extensions import db
from ..models import OrderItem, Product, User
from ..validation import (
    ForbiddenError,
    ModelValidationPolicy,
    NotFoundError,
    enforce_rules_product,
    validate_payload,
)
from . import storage_service
from .concurrency import commit_with_retry

logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "price", "discounted_price", "quantity", "category"},
    required_on_create={"name", "price", "category"},
)

FIELD_ALIASES = {"discountedPrice": "discounted_price"}


def _split_payload(payload: dict | None) -> tuple[dict, object, bool]:
    payload = {FIELD_ALIASES.get(k, k): v for k, v in (payload or {}).items()}
    has_image = "image" in payload or "image_url" in payload
    image = payload.pop("image", None)
    image_url = payload.pop("image_url", None)
    return payload, image if image is not None else image_url, has_image


def _require_admin(actor: User) -> None:
    if not actor or not actor.is_admin:
        raise ForbiddenError("Only admins can manage products")


def list_products(category: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if category:
        q = q.filter(Product.category == category)
    return q.order_by(Product.created_at.desc(), Product.id.desc()).all()


def get_product(product_id) -> Product:
    product = db.session.get(Product, product_id) if product_id is not None else None
    if not product:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def create_product(payload: dict, actor: User) -> Product:
    _require_admin(actor)
    fields, image, _ = _split_payload(payload)

    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    product = Product(**patch)
    product.image_url = storage_service.resolve_image(image, storage_service.FOLDER_PRODUCTS)

    db.session.add(product)
    commit_with_retry()
    logger.info("Product %s created", product.id)
    return product


def update_product(product_id, payload: dict, actor: User) -> Product:
    """Partial update; existing orders keep their price snapshots."""
    _require_admin(actor)
    product = get_product(product_id)
    fields, image, has_image = _split_payload(payload)

    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=True)
    if "price" in patch and "discounted_price" not in patch:
        # A lowered list price must still cover the current discount.
        patch_check = dict(patch, discounted_price=product.discounted_price)
        enforce_rules_product(patch_check)
    else:
        enforce_rules_product(patch, current_price=product.price)

    for k, v in patch.items():
        setattr(product, k, v)
    if has_image:
        product.image_url = storage_service.resolve_image(image, storage_service.FOLDER_PRODUCTS)

    commit_with_retry()
    return product


def delete_product(product_id, actor: User) -> None:
    """Delete a product; order items keep their snapshot and lose the link."""
    _require_admin(actor)
    product = get_product(product_id)

    db.session.execute(
        update(OrderItem)
        .where(OrderItem.product_id == product.id)
        .values(product_id=None)
        .execution_options(synchronize_session="fetch")
    )
    db.session.delete(product)
    commit_with_retry()
    logger.info("Product %s deleted by %s", product_id, actor.id)
