from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, money


class Product(db.Model):
    """
    Catalog product offered to sellers.

    price is the list price; discounted_price (nullable) is what the seller
    pays per unit. Orders snapshot both prices onto their items, so later
    edits here never change an existing order.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(12, 2), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    category = db.Column(db.String(120), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def selling_price(self):
        """Price an order is billed at; falls back to list price."""
        return self.discounted_price if self.discounted_price is not None else self.price

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image_url": self.image_url,
            "price": money(self.price),
            "discounted_price": money(self.discounted_price),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "price": money(self.price),
            "discounted_price": money(self.discounted_price),
            "quantity": self.quantity,
            "category": self.category,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
