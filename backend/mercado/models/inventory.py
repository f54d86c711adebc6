from __future__ import annotations

from ..extensions import db
from mercado.time_utils import to_utc_z


MOVEMENT_RECEPTION = "reception"
MOVEMENT_SALE_POS = "sale-pos"
MOVEMENT_SALE_ONLINE = "sale-online"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"

MOVEMENT_TYPES = (
    MOVEMENT_RECEPTION,
    MOVEMENT_SALE_POS,
    MOVEMENT_SALE_ONLINE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)


class StockMovement(db.Model):
    """
    One signed stock change. Append-only: rows are never updated or deleted.

    Positive quantity_delta increases stock (reception, restocked return),
    negative decreases it (sales, spoilage, picking shortfalls).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.CheckConstraint("quantity_delta <> 0", name="ck_stock_movements_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity_delta,
            "type": self.type,
            "reason": self.reason,
            "order_id": self.order_id,
            "return_id": self.return_id,
            "date": to_utc_z(self.occurred_at),
        }
