# Overview: Flask API routes for orders; checkout, POS batch sync and fulfillment transitions.

# backend/mercado/routes/orders.py
"""
Order API Routes

DESIGN:
- POST /api/orders creates one online order from a checkout snapshot
- POST /api/orders/batch stores a batch of POS sales (idempotent per sale_uid)
- Fulfillment transitions are explicit endpoints; the generic PATCH
  endpoints exist for back-office tooling and go through the same table

ERRORS:
- 400: invalid payload / totals mismatch (OrderError)
- 404: order, address or product not found
- 409: transition not allowed from the current state
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_service
from ..services.inventory_service import InventoryError
from ..services.order_service import InvalidTransitionError, OrderError, OrderNotFoundError


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_error_response(e: OrderError):
    if isinstance(e, OrderNotFoundError):
        status = 404
    elif isinstance(e, InvalidTransitionError):
        status = 409
    else:
        status = 400
    return jsonify({"error": str(e), "details": e.details}), status


def _order_response(order, status: int = 200):
    return jsonify({"order": order.to_dict()}), status


# =============================================================================
# CREATION
# =============================================================================

@orders_bp.post("")
def create_order_route():
    """
    Create an online order.

    Request body: cart snapshot plus
    {
        "user_id": "u-123",
        "address_id": 4,
        "delivery_notes": "Timbre 2B"  (optional)
    }
    """
    payload = request.get_json(silent=True)
    try:
        order = order_service.create_order(payload)
        return _order_response(order, 201)
    except OrderError as e:
        return _order_error_response(e)
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/batch")
def create_orders_batch_route():
    """
    Store queued POS sales.

    Request body: {"orders": [sale, ...]}
    Returns 201: {"created": n, "skipped": [sale_uid, ...], "order_ids": [...]}
    """
    data = request.get_json(silent=True) or {}
    orders = data.get("orders")
    if not isinstance(orders, list):
        return jsonify({"error": "orders must be a list"}), 400

    try:
        result = order_service.create_orders_batch(orders)
        return jsonify(result), 201
    except OrderError as e:
        return _order_error_response(e)
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to store POS batch")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
def list_orders_route():
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", 50))
    except ValueError:
        return jsonify({"error": "page and limit must be integers"}), 400

    result = order_service.list_orders(
        user_id=request.args.get("user_id"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "orders": [o.to_dict() for o in result["orders"]],
        "total": result["total"],
    })


@orders_bp.get("/pickup")
def list_pickup_orders_route():
    """Ready orders waiting for a rider."""
    orders = order_service.list_orders_for_pickup()
    return jsonify({"orders": [o.to_dict() for o in orders]})


@orders_bp.get("/rider/<rider_id>")
def list_rider_orders_route(rider_id: str):
    orders = order_service.list_rider_orders(rider_id)
    return jsonify({"orders": [o.to_dict() for o in orders]})


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        return _order_response(order_service.get_order(order_id))
    except OrderError as e:
        return _order_error_response(e)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition(action: str, func, *args, **kwargs):
    try:
        return _order_response(func(*args, **kwargs))
    except OrderError as e:
        current_app.logger.info("Order transition rejected (%s): %s", action, e)
        return _order_error_response(e)
    except InventoryError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/dispatcher")
def assign_dispatcher_route(order_id: int):
    data = request.get_json(silent=True) or {}
    return _transition(
        "assign dispatcher", order_service.assign_to_dispatcher, order_id, data.get("dispatcher_id")
    )


@orders_bp.post("/<int:order_id>/picking")
def complete_picking_route(order_id: int):
    """
    Request body:
    {"missing": {"<product_id>": units, ...}}  or  {"missing": [product_id, ...]}
    """
    data = request.get_json(silent=True) or {}
    missing = data.get("missing")
    if missing is not None and not isinstance(missing, (dict, list)):
        return jsonify({"error": "missing must be an object or a list"}), 400
    try:
        if isinstance(missing, dict):
            missing = {int(pid): qty for pid, qty in missing.items()}
        elif isinstance(missing, list):
            missing = [int(pid) for pid in missing]
    except (TypeError, ValueError):
        return jsonify({"error": "missing must reference product ids"}), 400

    return _transition("complete picking", order_service.complete_picking, order_id, missing)


@orders_bp.post("/<int:order_id>/rider")
def assign_rider_route(order_id: int):
    data = request.get_json(silent=True) or {}
    return _transition("assign rider", order_service.assign_to_rider, order_id, data.get("rider_id"))


@orders_bp.post("/<int:order_id>/delivered")
def mark_delivered_route(order_id: int):
    return _transition("mark delivered", order_service.mark_delivered, order_id)


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    data = request.get_json(silent=True) or {}
    return _transition("cancel order", order_service.cancel_order, order_id, data.get("reason"))


@orders_bp.patch("/<int:order_id>/status")
def update_status_route(order_id: int):
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status is required"}), 400
    return _transition("update order status", order_service.update_order_status, order_id, status)


@orders_bp.patch("/<int:order_id>/fulfillment")
def update_fulfillment_route(order_id: int):
    data = request.get_json(silent=True) or {}
    status = data.get("fulfillment_status")
    if not status:
        return jsonify({"error": "fulfillment_status is required"}), 400
    return _transition(
        "update fulfillment status",
        order_service.update_fulfillment_status,
        order_id,
        status,
        dispatcher_id=data.get("dispatcher_id"),
        rider_id=data.get("rider_id"),
    )
