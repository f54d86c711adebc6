"""
Return processing.

WHY: A refund must be the share of what the customer actually paid for the
line, not the current catalog price. The order line total already has bundle
tiers and percentage discounts folded in, so the refund is pro-rated from it:

    refund = round_half_up(line_total_cents * (already + returned) / purchased)
           - round_half_up(line_total_cents * already / purchased)

Each return is priced as the difference of cumulative shares, so a line
returned in several parts refunds exactly its line total.

INVENTORY EFFECT:
- restocked:     positive `return` movement (goods back on the shelf)
- not restocked: negative `adjustment` movement (damaged goods written off),
  which the spoilage report picks up

The movements, the Return document and the order status change (Devuelto)
commit together or not at all.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Order, Return, ReturnLine
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_RETURN
from ..models.orders import STATUS_CANCELLED, STATUS_RETURNED
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import record_movement
from .pricing_service import round_half_up


logger = logging.getLogger(__name__)


class ReturnError(Exception):
    """Raised for return operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ReturnOrderNotFoundError(ReturnError):
    pass


def prorated_refund_cents(
    line_total_cents: int, purchased_qty: int, returned_qty: int, already_returned: int = 0
) -> int:
    if purchased_qty <= 0:
        return 0
    total = Decimal(line_total_cents)
    after = round_half_up(total * (already_returned + returned_qty) / purchased_qty)
    before = round_half_up(total * already_returned / purchased_qty)
    return after - before


def _returned_quantities(order_id: int) -> dict[int, int]:
    """order_line_id -> units already returned across earlier returns."""
    rows = (
        db.session.query(ReturnLine.order_line_id, func.sum(ReturnLine.quantity))
        .join(Return, Return.id == ReturnLine.return_id)
        .filter(Return.order_id == order_id)
        .group_by(ReturnLine.order_line_id)
        .all()
    )
    return {line_id: int(qty or 0) for line_id, qty in rows}


def create_return(order_id: int, items: list[dict], reason: str, restocked: bool) -> Return:
    """
    Record a customer return against an order.

    items: [{"product_id": int, "quantity": int}, ...]
           (an "order_line_id" may be given instead of product_id)
    """
    if not reason or not str(reason).strip():
        raise ReturnError("Return reason is required")
    if not isinstance(items, list) or not items:
        raise ReturnError("Return must include at least one item")

    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise ReturnOrderNotFoundError(f"Order {order_id} not found", {"order_id": order_id})
        if order.status == STATUS_CANCELLED:
            raise ReturnError("Cancelled orders cannot be returned", {"order_id": order.id})

        by_line_id = {line.id: line for line in order.lines}
        by_product = {line.product_id: line for line in order.lines}
        already = _returned_quantities(order.id)

        requested: dict[int, int] = {}
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                raise ReturnError(f"items[{index}] must be an object")
            if raw.get("order_line_id") is not None:
                line = by_line_id.get(raw["order_line_id"])
            else:
                line = by_product.get(raw.get("product_id"))
            if line is None:
                raise ReturnError(
                    f"items[{index}] is not part of order {order.id}",
                    {"item": raw},
                )
            qty = raw.get("quantity")
            if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
                raise ReturnError(f"items[{index}].quantity must be a positive integer")
            requested[line.id] = requested.get(line.id, 0) + qty

        doc = Return(
            order_id=order.id,
            reason=str(reason).strip(),
            restocked=bool(restocked),
            channel=order.channel,
            refund_amount_cents=0,
        )

        refund_total = 0
        for line_id, qty in requested.items():
            line = by_line_id[line_id]
            # Units written off at picking never reached the customer
            remaining = line.quantity - (line.missing_quantity or 0) - already.get(line_id, 0)
            if qty > remaining:
                raise ReturnError(
                    f"Cannot return {qty} of {line.product_name}; only {remaining} returnable",
                    {"order_line_id": line_id, "requested": qty, "returnable": remaining},
                )
            refund = prorated_refund_cents(
                line.line_total_cents, line.quantity, qty, already.get(line_id, 0)
            )
            refund_total += refund
            doc.lines.append(ReturnLine(
                order_line_id=line.id,
                product_id=line.product_id,
                quantity=qty,
                unit_cost_cents=line.unit_cost_cents,
                refund_cents=refund,
            ))

        doc.refund_amount_cents = refund_total
        db.session.add(doc)
        db.session.flush()

        for rl in doc.lines:
            if doc.restocked:
                record_movement(
                    rl.product_id, rl.quantity, MOVEMENT_RETURN,
                    f"Devolución pedido #{order.id}",
                    order_id=order.id, return_id=doc.id,
                )
            else:
                record_movement(
                    rl.product_id, -rl.quantity, MOVEMENT_ADJUSTMENT,
                    f"Dañado en devolución #{doc.id}",
                    order_id=order.id, return_id=doc.id,
                )

        order.status = STATUS_RETURNED
        db.session.commit()
        return doc

    doc = run_with_retry(_op)
    logger.info("Return %s on order %s: refund %s cents", doc.id, order_id, doc.refund_amount_cents)
    return doc


def list_returns(order_id: int | None = None) -> list[Return]:
    q = db.session.query(Return)
    if order_id is not None:
        q = q.filter(Return.order_id == order_id)
    return q.order_by(Return.created_at.desc(), Return.id.desc()).all()
