from __future__ import annotations

from ..extensions import db
from mercado.time_utils import to_utc_z


EXPENSE_CATEGORIES = (
    "Salarios",
    "Alquiler",
    "Servicios",
    "Marketing",
    "Suministros",
    "Impuestos",
    "Otros",
)

RETURN_REASONS = (
    "Producto dañado",
    "Producto incorrecto",
    "No le gustó al cliente",
    "Otro",
)


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
            "date": to_utc_z(self.occurred_at),
        }


class Return(db.Model):
    """
    Customer return against an order.

    refund_amount_cents is the sum of the lines' pro-rated refunds, taken from
    the original order line totals (never from current catalog prices).
    """
    __tablename__ = "returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=False)
    restocked = db.Column(db.Boolean, nullable=False, default=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    channel = db.Column(db.String(16), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    lines = db.relationship("ReturnLine", backref="return_doc", lazy="selectin", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "returned_items": [line.to_dict() for line in self.lines],
            "reason": self.reason,
            "restocked": self.restocked,
            "refund_amount_cents": self.refund_amount_cents,
            "channel": self.channel,
            "date": to_utc_z(self.created_at),
        }


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "order_line_id": self.order_line_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "refund_cents": self.refund_cents,
        }
