# backend/mercado/routes/inventory.py
"""
Inventory ledger routes.

Stock is never written directly: receptions and adjustments append
movements and the cached stock follows.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- as_of filtering is inclusive: occurred_at <= as_of.
"""
from flask import Blueprint, request, current_app

from ..models.inventory import MOVEMENT_TYPES
from mercado.time_utils import parse_iso_datetime
from ..services import inventory_service
from ..services.inventory_service import InventoryError, ProductNotFoundError
from ..validation import ValidationError, require_int, require_positive_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/receive")
def receive_inventory_route():
    """
    Receive goods from a supplier.

    Request body: {"product_id": 1, "quantity": 24, "reason": "Factura 0012"}
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_positive_int(payload.get("product_id"), "product_id")
        quantity = require_positive_int(payload.get("quantity"), "quantity")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movement = inventory_service.receive_stock(product_id, quantity, payload.get("reason"))
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    except InventoryError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return {"error": "Internal server error"}, 500

    return {
        "movement": movement.to_dict(),
        "stock": inventory_service.current_stock(product_id),
    }, 201


@inventory_bp.post("/adjust")
def adjust_inventory_route():
    """
    Manual correction. Negative quantities are spoilage (merma).

    Request body: {"product_id": 1, "quantity": -3, "reason": "Vencido"}
    """
    payload = request.get_json(silent=True) or {}
    try:
        product_id = require_positive_int(payload.get("product_id"), "product_id")
        quantity = require_int(payload.get("quantity"), "quantity")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        movement = inventory_service.adjust_stock(product_id, quantity, payload.get("reason") or "")
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    except InventoryError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return {"error": "Internal server error"}, 500

    return {
        "movement": movement.to_dict(),
        "stock": inventory_service.current_stock(product_id),
    }, 201


@inventory_bp.get("/movements")
def list_movements_route():
    product_id = request.args.get("product_id")
    movement_type = request.args.get("type")
    try:
        product_id = require_positive_int(product_id, "product_id") if product_id is not None else None
    except ValidationError as e:
        return {"error": str(e)}, 400
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        return {"error": f"type must be one of: {', '.join(MOVEMENT_TYPES)}"}, 400

    movements = inventory_service.list_movements(product_id=product_id, movement_type=movement_type)
    return {"items": [m.to_dict() for m in movements]}


@inventory_bp.get("/<int:product_id>")
def stock_level_route(product_id: int):
    """Ledger-derived stock, optionally as of a point in time (?as_of=...)."""
    as_of_raw = request.args.get("as_of")
    try:
        as_of = parse_iso_datetime(as_of_raw) if as_of_raw else None
    except ValueError:
        return {"error": "as_of must be an ISO-8601 datetime"}, 400

    product = inventory_service.get_product_or_none(product_id)
    if product is None:
        return {"error": "Product not found"}, 404

    return {
        "product_id": product_id,
        "stock": inventory_service.current_stock(product_id, as_of=as_of),
        "cached_stock": product.stock,
        "as_of": as_of_raw,
    }
