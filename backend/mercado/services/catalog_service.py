# backend/mercado/services/catalog_service.py
"""
Catalog reads for the storefront and the POS.

Products are listed with their bundle tiers and an effective cost: when a
product has no explicit cost_cents, the listing fills in the 70%-of-price
default so every consumer (cart, POS cache, reports) sees the same basis.
"""
from __future__ import annotations

from ..extensions import db
from ..models import BundleOffer, Category, Product
from ..models.inventory import MOVEMENT_RECEPTION
from ..validation import ConflictError
from .inventory_service import record_movement
from .pricing_service import ProductSnapshot, default_unit_cost_cents


def _product_payload(product: Product) -> dict:
    data = product.to_dict()
    if data["cost_cents"] is None:
        data["cost_cents"] = default_unit_cost_cents(product.price_cents)
    return data


def fetch_products(page: int | None = None, limit: int | None = None, *, include_inactive: bool = False) -> dict:
    """
    Product listing. Without `page`, every product is returned.

    Returns {"items": [...], "total": n}
    """
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    total = base_query.count()
    if page is None:
        products = base_query.all()
    else:
        limit = min(limit or 100, 500)
        page = max(page, 1)
        products = base_query.offset((page - 1) * limit).limit(limit).all()

    return {
        "items": [_product_payload(p) for p in products],
        "total": total,
    }


def fetch_categories() -> dict:
    categories = db.session.query(Category).order_by(Category.name.asc()).all()
    return {"items": [c.to_dict() for c in categories]}


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def find_by_sku(sku: str) -> Product | None:
    if not sku:
        return None
    return db.session.query(Product).filter_by(sku=sku.strip()).first()


def product_snapshot(product: Product) -> ProductSnapshot:
    """Immutable pricing view of a catalog row, as carts hold it."""
    return ProductSnapshot.from_dict(_product_payload(product))


def create_category(slug: str, name: str, subcategories: list[str] | None = None) -> Category:
    if db.session.query(Category).filter_by(slug=slug).first() is not None:
        raise ConflictError(f"Category {slug} already exists")
    category = Category(slug=slug, name=name, subcategories=subcategories or [])
    db.session.add(category)
    db.session.commit()
    return category


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    category: Category | None = None,
    cost_cents: int | None = None,
    discount_percent=None,
    bundle_offers: list[dict] | None = None,
    description: str | None = None,
    initial_stock: int = 0,
) -> Product:
    """
    Create a catalog product. Opening stock is recorded as a `reception`
    movement so the cached stock starts out matching the ledger.
    """
    if find_by_sku(sku) is not None:
        raise ConflictError(f"SKU {sku} already exists")

    product = Product(
        sku=sku,
        name=name,
        description=description,
        category=category,
        price_cents=price_cents,
        cost_cents=cost_cents,
        discount_percent=discount_percent,
        stock=0,
    )
    for tier in bundle_offers or []:
        product.bundle_offers.append(
            BundleOffer(quantity=int(tier["quantity"]), price_cents=int(tier["price_cents"]))
        )
    db.session.add(product)
    db.session.flush()

    if initial_stock:
        record_movement(product.id, initial_stock, MOVEMENT_RECEPTION, "Stock inicial")

    db.session.commit()
    return product
