from __future__ import annotations

from ..extensions import db
from mercado.time_utils import to_utc_z


# Customer-facing status
STATUS_RECEIVED = "Recibido"
STATUS_PREPARING = "En preparación"
STATUS_READY_FOR_PICKUP = "Listo para recoger"
STATUS_ON_THE_WAY = "En camino"
STATUS_DELIVERED = "Entregado"
STATUS_CANCELLED = "Cancelado"
STATUS_RETURNED = "Devuelto"

ORDER_STATUSES = (
    STATUS_RECEIVED,
    STATUS_PREPARING,
    STATUS_READY_FOR_PICKUP,
    STATUS_ON_THE_WAY,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_RETURNED,
)

# Operational (warehouse / delivery) status
FULFILLMENT_NOT_PREPARED = "No preparado"
FULFILLMENT_PREPARING = "En preparación"
FULFILLMENT_READY = "Listo para despacho"
FULFILLMENT_READY_WITH_MISSING = "Listo con faltantes"
FULFILLMENT_EN_ROUTE = "En ruta"
FULFILLMENT_DELIVERED = "Entregado"
FULFILLMENT_CANCELLED = "Cancelado"

FULFILLMENT_STATUSES = (
    FULFILLMENT_NOT_PREPARED,
    FULFILLMENT_PREPARING,
    FULFILLMENT_READY,
    FULFILLMENT_READY_WITH_MISSING,
    FULFILLMENT_EN_ROUTE,
    FULFILLMENT_DELIVERED,
    FULFILLMENT_CANCELLED,
)

CHANNEL_ONLINE = "Online"
CHANNEL_POS = "POS"
CHANNELS = (CHANNEL_ONLINE, CHANNEL_POS)

PAYMENT_METHODS = ("cash", "card", "qr")


class Address(db.Model):
    __tablename__ = "addresses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    street = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    reference = db.Column(db.String(255), nullable=True)
    lat = db.Column(db.Float, nullable=True)
    lng = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def label(self) -> str:
        return f"{self.street}, {self.city}"

    def to_dict(self) -> dict:
        location = None
        if self.lat is not None and self.lng is not None:
            location = {"lat": self.lat, "lng": self.lng}
        return {
            "id": self.id,
            "user_id": self.user_id,
            "street": self.street,
            "city": self.city,
            "reference": self.reference,
            "location": location,
        }


class Order(db.Model):
    """
    A placed order (online checkout or synced POS sale).

    Money fields are the evidence of what was charged and never change after
    creation: total_cents == subtotal + delivery fee + service fee - discount.
    Only the status fields, assignments and timestamps move afterwards, and
    only through order_service transitions.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.Index("ix_orders_fulfillment_rider", "fulfillment_status", "rider_id"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False)
    channel = db.Column(db.String(16), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=STATUS_RECEIVED, index=True)
    fulfillment_status = db.Column(db.String(32), nullable=False, default=FULFILLMENT_NOT_PREPARED)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    service_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_code = db.Column(db.String(64), nullable=True)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=True)

    delivery_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=True)
    delivery_address_text = db.Column(db.String(512), nullable=True)
    delivery_notes = db.Column(db.String(512), nullable=True)

    dispatcher_id = db.Column(db.String(64), nullable=True, index=True)
    rider_id = db.Column(db.String(64), nullable=True)

    # Client-generated id of the POS sale this order came from
    source_sale_uid = db.Column(db.String(64), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    delivery_address = db.relationship("Address")
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy="selectin",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def discount(self) -> dict | None:
        if not self.discount_code and not self.discount_amount_cents:
            return None
        return {"code": self.discount_code, "amount_cents": self.discount_amount_cents}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "channel": self.channel,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "items": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "service_fee_cents": self.service_fee_cents,
            "discount": self.discount,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "delivery_address_id": self.delivery_address_id,
            "delivery_address": self.delivery_address_text,
            "delivery_notes": self.delivery_notes,
            "dispatcher_id": self.dispatcher_id,
            "rider_id": self.rider_id,
            "source_sale_uid": self.source_sale_uid,
            "created_at": to_utc_z(self.created_at),
            "sold_at": to_utc_z(self.sold_at),
            "assigned_at": to_utc_z(self.assigned_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "version_id": self.version_id,
        }


class OrderLine(db.Model):
    """Line snapshot at purchase time: price rules and unit cost as they were then."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)
    bundle_offers = db.Column(db.JSON, nullable=True)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Units the dispatcher could not find while picking
    missing_quantity = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_percent": float(self.discount_percent) if self.discount_percent is not None else None,
            "bundle_offers": list(self.bundle_offers or []),
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
            "missing_quantity": self.missing_quantity,
        }
