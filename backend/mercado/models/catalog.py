from __future__ import annotations

from ..extensions import db
from mercado.time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    subcategories = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "subcategories": list(self.subcategories or []),
        }


class Product(db.Model):
    """
    Catalog product.

    `stock` is a cache of SUM(stock_movements.quantity_delta) for the product.
    It is only ever written by inventory_service, in the same transaction as
    the movement that changes it, so it can always be rebuilt from the ledger.

    `cost_cents` is optional; line items capture a cost snapshot when they
    enter a cart (70% of price when no explicit cost is set).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category_id", "is_active"),
        db.CheckConstraint(
            "discount_percent IS NULL OR (discount_percent >= 0 AND discount_percent <= 100)",
            name="ck_products_discount_percent",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Scanned at the POS, so it doubles as the barcode
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    bundle_offers = db.relationship(
        "BundleOffer",
        backref="product",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BundleOffer.quantity",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category.slug if self.category else None,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "discount_percent": float(self.discount_percent) if self.discount_percent is not None else None,
            "bundle_offers": [b.to_dict() for b in self.bundle_offers],
            "stock": self.stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class BundleOffer(db.Model):
    """Tier price: `quantity` units of the product together cost `price_cents`."""
    __tablename__ = "bundle_offers"
    __table_args__ = (
        db.UniqueConstraint("product_id", "quantity", name="uq_bundle_offers_product_qty"),
        db.CheckConstraint("quantity > 0", name="ck_bundle_offers_quantity_positive"),
        db.CheckConstraint("price_cents >= 0", name="ck_bundle_offers_price_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {"quantity": self.quantity, "price_cents": self.price_cents}
