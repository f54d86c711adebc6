# Overview: Flask API routes for the financial ledger; expenses, returns and profit reports.

# backend/mercado/routes/finance.py
"""
Financial ledger routes.

- Expenses are recorded by hand (rent, salaries, ...)
- Returns are recorded here because they move money (refund) and stock
- Summary and spoilage reports are read-only
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import finance_service, return_service
from ..services.return_service import ReturnError, ReturnOrderNotFoundError
from ..validation import ValidationError


finance_bp = Blueprint("finance", __name__, url_prefix="/api/finance")


# =============================================================================
# EXPENSES
# =============================================================================

@finance_bp.get("/expenses")
def list_expenses_route():
    expenses = finance_service.list_expenses(category=request.args.get("category"))
    return jsonify({"items": [e.to_dict() for e in expenses]})


@finance_bp.post("/expenses")
def add_expense_route():
    """
    Request body:
    {
        "amount_cents": 150000,
        "category": "Alquiler",
        "description": "Alquiler local central",
        "date": "2026-03-01T00:00:00Z"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        expense = finance_service.add_expense(
            amount_cents=data.get("amount_cents"),
            category=data.get("category"),
            description=data.get("description"),
            occurred_at=data.get("date"),
        )
        return jsonify({"expense": expense.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to add expense")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURNS
# =============================================================================

@finance_bp.get("/returns")
def list_returns_route():
    order_id = request.args.get("order_id", type=int)
    returns = return_service.list_returns(order_id=order_id)
    return jsonify({"items": [r.to_dict() for r in returns]})


@finance_bp.post("/returns")
def create_return_route():
    """
    Request body:
    {
        "order_id": 12,
        "items": [{"product_id": 3, "quantity": 1}],
        "reason": "Producto dañado",
        "restocked": false
    }

    Returns:
        201: Return recorded, order moved to Devuelto
        400: Invalid input or quantity exceeds what is returnable
        404: Order not found
    """
    data = request.get_json(silent=True) or {}
    order_id = data.get("order_id")
    if not isinstance(order_id, int) or isinstance(order_id, bool):
        return jsonify({"error": "order_id is required"}), 400

    try:
        return_doc = return_service.create_return(
            order_id=order_id,
            items=data.get("items"),
            reason=data.get("reason"),
            restocked=bool(data.get("restocked", False)),
        )
        return jsonify({"return": return_doc.to_dict()}), 201
    except ReturnOrderNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReturnError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REPORTS
# =============================================================================

@finance_bp.get("/summary")
def financial_summary_route():
    try:
        summary = finance_service.get_financial_summary(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(summary)


@finance_bp.get("/spoilage")
def spoilage_report_route():
    return jsonify(finance_service.get_spoilage_report())
