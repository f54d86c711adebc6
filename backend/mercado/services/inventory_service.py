# Overview: Inventory ledger; append-only stock movements and the derived stock level.

# backend/mercado/services/inventory_service.py
"""
Inventory Ledger Invariants (authoritative)

- Stock is ledger-derived: current stock of a product is SUM(quantity_delta)
  over its StockMovement rows.
- Movements are append-only. Corrections are new movements, never edits.
- Product.stock is a cache of that sum. It is updated in the same DB
  transaction as every movement insert, so it always matches the ledger;
  reconcile_stock() verifies (and can rebuild) it.
- The ledger does no business validation beyond a valid product reference,
  a known movement type and a non-zero quantity. Callers (orders, returns,
  adjustments) choose the sign and type. Stock may go negative.
- Spoilage (merma) is every `adjustment` movement with a negative quantity.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RECEPTION,
    MOVEMENT_TYPES,
)
from mercado.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


class InventoryError(Exception):
    """Raised for invalid ledger writes."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(InventoryError):
    """The referenced product does not exist."""


def _get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found", {"product_id": product_id})
    return product


def record_movement(
    product_id: int,
    quantity: int,
    movement_type: str,
    reason: str | None = None,
    *,
    order_id: int | None = None,
    return_id: int | None = None,
    occurred_at: datetime | None = None,
    commit: bool = False,
) -> StockMovement:
    """
    Append one movement and move the cached stock by the same amount.

    With commit=False (the default) the caller owns the transaction; order and
    return transitions use this to write their movements atomically with the
    status change.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise InventoryError(f"Unknown movement type: {movement_type}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
        raise InventoryError("Movement quantity must be a non-zero integer")

    product = _get_product(product_id)

    movement = StockMovement(
        product_id=product.id,
        quantity_delta=quantity,
        type=movement_type,
        reason=reason,
        order_id=order_id,
        return_id=return_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    product.stock = (product.stock or 0) + quantity
    db.session.flush()

    if commit:
        db.session.commit()
    return movement


def current_stock(product_id: int, as_of: datetime | None = None) -> int:
    """SUM of all movements for the product (optionally as-of, inclusive)."""
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.product_id == product_id)
    if as_of is not None:
        q = q.filter(StockMovement.occurred_at <= as_of)
    return int(q.scalar() or 0)


def list_movements(product_id: int | None = None, movement_type: str | None = None) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == movement_type)
    return q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).all()


def list_spoilage_movements() -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.type == MOVEMENT_ADJUSTMENT, StockMovement.quantity_delta < 0)
        .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
        .all()
    )


def receive_stock(product_id: int, quantity: int, reason: str | None = None) -> StockMovement:
    """Goods received from a supplier (positive `reception` movement)."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InventoryError("Received quantity must be > 0")

    def _op():
        _get_product(product_id, lock=True)
        return record_movement(product_id, quantity, MOVEMENT_RECEPTION, reason, commit=True)

    return run_with_retry(_op)


def adjust_stock(product_id: int, quantity_delta: int, reason: str) -> StockMovement:
    """
    Manual stock correction. Negative deltas are spoilage/merma and show up in
    the spoilage report; a reason is always required.
    """
    if not reason or not reason.strip():
        raise InventoryError("Adjustment reason is required")

    def _op():
        _get_product(product_id, lock=True)
        return record_movement(product_id, quantity_delta, MOVEMENT_ADJUSTMENT, reason.strip(), commit=True)

    return run_with_retry(_op)


def reconcile_stock(*, repair: bool = False) -> list[dict]:
    """
    Compare every product's cached stock with its ledger sum.

    Returns the mismatches. With repair=True the cache is rewritten from the
    ledger (the ledger is never touched).
    """
    sums = dict(
        db.session.query(StockMovement.product_id, func.sum(StockMovement.quantity_delta))
        .group_by(StockMovement.product_id)
        .all()
    )

    mismatches = []
    for product in db.session.query(Product).order_by(Product.id).all():
        ledger = int(sums.get(product.id) or 0)
        if (product.stock or 0) != ledger:
            mismatches.append({
                "product_id": product.id,
                "sku": product.sku,
                "cached_stock": product.stock,
                "ledger_stock": ledger,
            })
            if repair:
                product.stock = ledger

    if repair and mismatches:
        db.session.commit()
    return mismatches


def get_product_or_none(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)
