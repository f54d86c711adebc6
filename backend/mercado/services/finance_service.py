# Overview: Financial ledger; operating expenses, profit summary and spoilage valuation.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Expense, Order, OrderLine, Product, Return, ReturnLine
from ..models.finance import EXPENSE_CATEGORIES
from ..models.orders import STATUS_CANCELLED
from ..validation import ValidationError, enforce_rules_amount, enforce_rules_choice
from mercado.time_utils import parse_iso_datetime, utcnow
from .inventory_service import list_spoilage_movements
from .pricing_service import default_unit_cost_cents


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except (AttributeError, ValueError):
        raise ValidationError("start/end must be ISO-8601 datetimes")
    return start_dt, end_dt


def add_expense(amount_cents: int, category: str, description: str, occurred_at: str | None = None) -> Expense:
    patch = {"amount_cents": amount_cents, "category": category}
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    enforce_rules_amount(patch)
    enforce_rules_choice(patch, "category", EXPENSE_CATEGORIES)
    if not description or not str(description).strip():
        raise ValidationError("description is required")

    when, _ = _parse_range(occurred_at, None)
    expense = Expense(
        amount_cents=amount_cents,
        category=category,
        description=str(description).strip(),
        occurred_at=when or utcnow(),
    )
    db.session.add(expense)
    db.session.commit()
    return expense


def list_expenses(category: str | None = None) -> list[Expense]:
    q = db.session.query(Expense)
    if category is not None:
        q = q.filter(Expense.category == category)
    return q.order_by(Expense.occurred_at.desc(), Expense.id.desc()).all()


def get_financial_summary(start: str | None = None, end: str | None = None) -> dict:
    """
    Profit summary over non-cancelled orders.

    - revenue: what customers were charged (order totals, fees included)
    - refunds: refunds paid on returns
    - cost_of_goods: line cost snapshots for the units that left the store;
      units found missing at picking are written off as spoilage instead,
      and restocked returned units come back off the cost
    - net_profit: revenue - refunds - cost_of_goods - expenses
    """
    start_dt, end_dt = _parse_range(start, end)

    def _window(q, col):
        if start_dt is not None:
            q = q.filter(col >= start_dt)
        if end_dt is not None:
            q = q.filter(col <= end_dt)
        return q

    orders_q = _window(
        db.session.query(
            func.coalesce(func.sum(Order.total_cents), 0),
            func.count(Order.id),
        ).filter(Order.status != STATUS_CANCELLED),
        Order.created_at,
    )
    revenue, order_count = orders_q.one()

    cogs_q = _window(
        db.session.query(
            func.coalesce(
                func.sum(OrderLine.unit_cost_cents * (OrderLine.quantity - OrderLine.missing_quantity)),
                0,
            )
        )
        .join(Order, Order.id == OrderLine.order_id)
        .filter(Order.status != STATUS_CANCELLED),
        Order.created_at,
    )
    cogs = int(cogs_q.scalar() or 0)

    refunds = int(_window(
        db.session.query(func.coalesce(func.sum(Return.refund_amount_cents), 0)),
        Return.created_at,
    ).scalar() or 0)

    restocked_cost = int(_window(
        db.session.query(func.coalesce(func.sum(ReturnLine.unit_cost_cents * ReturnLine.quantity), 0))
        .join(Return, Return.id == ReturnLine.return_id)
        .filter(Return.restocked.is_(True)),
        Return.created_at,
    ).scalar() or 0)

    expenses = int(_window(
        db.session.query(func.coalesce(func.sum(Expense.amount_cents), 0)),
        Expense.occurred_at,
    ).scalar() or 0)

    revenue = int(revenue or 0)
    cost_of_goods = cogs - restocked_cost
    gross_profit = revenue - refunds - cost_of_goods

    return {
        "order_count": int(order_count or 0),
        "revenue_cents": revenue,
        "refunds_cents": refunds,
        "cost_of_goods_cents": cost_of_goods,
        "gross_profit_cents": gross_profit,
        "expenses_cents": expenses,
        "net_profit_cents": gross_profit - expenses,
    }


def get_spoilage_report() -> dict:
    """Negative adjustments (merma, picking shortfalls, damaged returns) valued at product cost."""
    movements = list_spoilage_movements()
    product_ids = {m.product_id for m in movements}
    products = {}
    if product_ids:
        products = {
            p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
        }

    items = []
    total_units = 0
    total_loss = 0
    for m in movements:
        product = products.get(m.product_id)
        if product is None:
            continue
        unit_cost = product.cost_cents if product.cost_cents is not None else default_unit_cost_cents(product.price_cents)
        units = -m.quantity_delta
        loss = units * unit_cost
        total_units += units
        total_loss += loss
        items.append({
            **m.to_dict(),
            "product_name": product.name,
            "units": units,
            "unit_cost_cents": unit_cost,
            "loss_cents": loss,
        })

    return {
        "items": items,
        "total_units": total_units,
        "total_loss_cents": total_loss,
    }
