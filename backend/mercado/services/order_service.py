"""
Order aggregate and fulfillment state machine.

An order carries two status fields that move on separate tables:

    status (customer-facing)
        Recibido -> En preparación -> Listo para recoger -> En camino -> Entregado
        Cancelado / Devuelto as alternate terminals

    fulfillment_status (warehouse / delivery)
        No preparado -> En preparación -> Listo para despacho | Listo con faltantes
                     -> En ruta -> Entregado
        Cancelado as alternate terminal

Fulfillment transitions drive the customer status for the stages the
customer sees (ready, on the way, delivered, cancelled); the dispatcher
taking an order only moves the operational field.

TRANSACTION RULES:
- Every transition locks the order row, validates before touching anything,
  then writes status fields and ledger movements in a single commit.
- run_with_retry() rolls the session back on any failure, so a rejected or
  failed transition is a no-op and safe to retry.
- Money fields are written once at creation and never change.
"""
from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Address, Order, OrderLine, Product
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_SALE_ONLINE, MOVEMENT_SALE_POS
from ..models.orders import (
    CHANNEL_ONLINE,
    CHANNEL_POS,
    CHANNELS,
    FULFILLMENT_CANCELLED,
    FULFILLMENT_DELIVERED,
    FULFILLMENT_EN_ROUTE,
    FULFILLMENT_NOT_PREPARED,
    FULFILLMENT_PREPARING,
    FULFILLMENT_READY,
    FULFILLMENT_READY_WITH_MISSING,
    PAYMENT_METHODS,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_ON_THE_WAY,
    STATUS_PREPARING,
    STATUS_READY_FOR_PICKUP,
    STATUS_RECEIVED,
    STATUS_RETURNED,
)
from mercado.time_utils import parse_iso_datetime, utcnow
from .cart_service import Cart
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import record_movement
from .pricing_service import (
    BundleTier,
    CartLineItem,
    Discount,
    PricingPolicy,
    ProductSnapshot,
    calculate_cart_totals,
    calculate_line_item_total,
)
from .promotions_service import resolve_promo_code


logger = logging.getLogger(__name__)

POS_CUSTOMER_ID = "pos_user"


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFoundError(OrderError):
    """Referenced order or product does not exist; retrying will not help."""


class InvalidTransitionError(OrderError):
    """Transition not allowed from the order's current state."""


# =============================================================================
# TRANSITION TABLES
# =============================================================================

FULFILLMENT_TRANSITIONS = {
    FULFILLMENT_NOT_PREPARED: {FULFILLMENT_PREPARING, FULFILLMENT_CANCELLED},
    FULFILLMENT_PREPARING: {FULFILLMENT_READY, FULFILLMENT_READY_WITH_MISSING, FULFILLMENT_CANCELLED},
    FULFILLMENT_READY: {FULFILLMENT_EN_ROUTE, FULFILLMENT_CANCELLED},
    FULFILLMENT_READY_WITH_MISSING: {FULFILLMENT_EN_ROUTE, FULFILLMENT_CANCELLED},
    FULFILLMENT_EN_ROUTE: {FULFILLMENT_DELIVERED},
    FULFILLMENT_DELIVERED: set(),
    FULFILLMENT_CANCELLED: set(),
}

# Customer status implied by reaching a fulfillment stage
STATUS_FOR_FULFILLMENT = {
    FULFILLMENT_READY: STATUS_READY_FOR_PICKUP,
    FULFILLMENT_READY_WITH_MISSING: STATUS_READY_FOR_PICKUP,
    FULFILLMENT_EN_ROUTE: STATUS_ON_THE_WAY,
    FULFILLMENT_DELIVERED: STATUS_DELIVERED,
    FULFILLMENT_CANCELLED: STATUS_CANCELLED,
}

# Customer-status changes that may be made on their own
STATUS_TRANSITIONS = {
    STATUS_RECEIVED: {STATUS_PREPARING},
}

READY_FOR_RIDER = {FULFILLMENT_READY, FULFILLMENT_READY_WITH_MISSING}
CANCELLABLE = {
    FULFILLMENT_NOT_PREPARED,
    FULFILLMENT_PREPARING,
    FULFILLMENT_READY,
    FULFILLMENT_READY_WITH_MISSING,
}
TERMINAL_STATUSES = {STATUS_CANCELLED, STATUS_RETURNED}


def ensure_known_channel(channel: str) -> str:
    if channel not in CHANNELS:
        raise OrderError(f"channel must be one of: {', '.join(CHANNELS)}")
    return channel


def _check_fulfillment_transition(order: Order, target: str, message: str) -> None:
    if target not in FULFILLMENT_TRANSITIONS.get(order.fulfillment_status, set()) \
            or order.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            message,
            details={
                "order_id": order.id,
                "status": order.status,
                "fulfillment_status": order.fulfillment_status,
                "requested": target,
            },
        )


def _apply_fulfillment(order: Order, target: str) -> None:
    order.fulfillment_status = target
    if target in STATUS_FOR_FULFILLMENT:
        order.status = STATUS_FOR_FULFILLMENT[target]


def _pricing_policy(policy: PricingPolicy | None) -> PricingPolicy:
    if policy is not None:
        return policy
    return PricingPolicy.from_config(current_app.config)


def _load_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


# =============================================================================
# PAYLOAD -> ORDER
# =============================================================================

def _line_item_from_payload(raw: dict, index: int) -> CartLineItem:
    """
    Rebuild a priced line from a checkout snapshot. Price rules and cost come
    from the snapshot (what the customer saw); the catalog only fills gaps.
    """
    if not isinstance(raw, dict):
        raise OrderError(f"items[{index}] must be an object")

    product_id = raw.get("product_id")
    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise OrderError(f"items[{index}].quantity must be a positive integer")

    product = db.session.query(Product).filter_by(id=product_id).first() if product_id is not None else None
    if product is None:
        raise OrderNotFoundError(f"Product {product_id} not found", {"product_id": product_id})

    bundle_offers = raw.get("bundle_offers")
    if bundle_offers is None:
        bundle_offers = [b.to_dict() for b in product.bundle_offers]

    snapshot = ProductSnapshot.from_dict({
        "id": product.id,
        "sku": product.sku,
        "name": raw.get("product_name") or product.name,
        "price_cents": raw.get("unit_price_cents", product.price_cents),
        "cost_cents": product.cost_cents,
        "discount_percent": raw.get("discount_percent", product.discount_percent),
        "bundle_offers": [BundleTier.from_dict(b) for b in bundle_offers],
    })
    unit_cost = raw.get("unit_cost_cents")
    if unit_cost is None:
        unit_cost = snapshot.capture_unit_cost()

    item = CartLineItem(product=snapshot, quantity=quantity, unit_cost_cents=int(unit_cost))

    declared = raw.get("line_total_cents")
    if declared is not None and int(declared) != calculate_line_item_total(item):
        raise OrderError(
            f"items[{index}] line total does not match pricing",
            details={"declared": declared, "computed": calculate_line_item_total(item)},
        )
    return item


def _discount_from_payload(payload: dict, channel: str, items: list[CartLineItem], policy: PricingPolicy) -> Discount | None:
    raw = payload.get("discount")
    if not raw:
        return None
    if not isinstance(raw, dict):
        raise OrderError("discount must be an object")

    code = raw.get("code") or ""
    if channel == CHANNEL_ONLINE:
        # Online discounts only come from promo codes; the store re-resolves them
        promo = resolve_promo_code(code, policy.promo_codes)
        if promo is None:
            raise OrderError(f"Unknown promo code: {code}")
        subtotal = sum(calculate_line_item_total(i) for i in items)
        return Discount(code=promo.code, amount_cents=promo.amount_for(subtotal))

    amount = raw.get("amount_cents", 0)
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise OrderError("discount.amount_cents must be a non-negative integer")
    return Discount(code=code, amount_cents=amount)


def _build_order(payload: dict, channel: str, policy: PricingPolicy) -> tuple[Order, list[CartLineItem]]:
    raw_items = payload.get("items") or []
    if not isinstance(raw_items, list) or not raw_items:
        raise OrderError("Cannot create an order with no items")

    items = [_line_item_from_payload(raw, i) for i, raw in enumerate(raw_items)]
    discount = _discount_from_payload(payload, channel, items, policy)
    totals = calculate_cart_totals(items, discount=discount, channel=channel, policy=policy)

    for key, computed in (
        ("subtotal_cents", totals.subtotal_cents),
        ("total_cents", totals.total_cents),
    ):
        declared = payload.get(key)
        if declared is not None and int(declared) != computed:
            raise OrderError(
                "Order totals do not match pricing",
                details={"field": key, "declared": declared, "computed": computed},
            )

    order = Order(
        user_id=str(payload.get("user_id") or POS_CUSTOMER_ID),
        channel=channel,
        subtotal_cents=totals.subtotal_cents,
        delivery_fee_cents=totals.delivery_fee_cents,
        service_fee_cents=totals.service_fee_cents,
        discount_code=discount.code if discount and totals.discount_cents else None,
        discount_amount_cents=totals.discount_cents,
        total_cents=totals.total_cents,
        delivery_notes=payload.get("delivery_notes"),
    )
    for item in items:
        order.lines.append(OrderLine(
            product_id=item.product.id,
            product_name=item.product.name,
            quantity=item.quantity,
            unit_price_cents=item.product.price_cents,
            discount_percent=item.product.discount_percent,
            bundle_offers=[t.to_dict() for t in item.product.bundle_offers],
            unit_cost_cents=item.unit_cost_cents,
            line_total_cents=calculate_line_item_total(item),
            missing_quantity=0,
        ))
    return order, items


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(payload: dict, *, policy: PricingPolicy | None = None) -> Order:
    """
    Create one online order from a checkout snapshot.

    Requires items and a delivery address belonging to the user. The order
    starts in (Recibido, No preparado) and one negative `sale-online`
    movement is written per line, in the same commit.
    """
    if not isinstance(payload, dict):
        raise OrderError("Invalid order payload")

    channel = ensure_known_channel(payload.get("channel") or CHANNEL_ONLINE)
    if channel != CHANNEL_ONLINE:
        raise OrderError("POS sales are created through the batch sync")

    user_id = payload.get("user_id")
    if not user_id:
        raise OrderError("user_id is required")

    address_id = payload.get("address_id")
    if not address_id:
        raise OrderError("A delivery address is required")

    policy = _pricing_policy(policy)

    def _op():
        address = db.session.query(Address).filter_by(id=address_id).first()
        if address is None or address.user_id != str(user_id):
            raise OrderNotFoundError(f"Address {address_id} not found", {"address_id": address_id})

        order, _ = _build_order(payload, CHANNEL_ONLINE, policy)
        order.status = STATUS_RECEIVED
        order.fulfillment_status = FULFILLMENT_NOT_PREPARED
        order.delivery_address_id = address.id
        order.delivery_address_text = address.label()
        if not order.delivery_notes:
            order.delivery_notes = address.reference

        db.session.add(order)
        db.session.flush()

        for line in order.lines:
            record_movement(
                line.product_id,
                -line.quantity,
                MOVEMENT_SALE_ONLINE,
                f"Pedido #{order.id}",
                order_id=order.id,
            )

        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s placed by %s: %s cents", order.id, order.user_id, order.total_cents)
    return order


def place_order(
    cart: Cart,
    user_id: str,
    address_id: int | None,
    delivery_notes: str | None = None,
    *,
    policy: PricingPolicy | None = None,
) -> Order:
    """
    Online checkout. The cart is cleared only after the order and its
    ledger movements are committed; on any failure it is left as it was.
    """
    if cart.channel != CHANNEL_ONLINE:
        raise OrderError("Only online carts can be checked out here")
    if cart.is_empty():
        raise OrderError("Cart is empty")
    if not address_id:
        raise OrderError("A delivery address is required")

    payload = cart.snapshot()
    payload.update({
        "user_id": user_id,
        "address_id": address_id,
        "delivery_notes": delivery_notes,
    })
    order = create_order(payload, policy=policy or cart.policy)
    cart.clear()
    return order


def create_orders_batch(payloads: list[dict], *, policy: PricingPolicy | None = None) -> dict:
    """
    Store a batch of POS sales as delivered orders.

    - Each sale becomes an order in (Entregado, Entregado): the sale is
      physically complete at the register.
    - One negative `sale-pos` movement per line.
    - Sales whose sale_uid is already stored (or repeated inside the batch)
      are skipped, which makes resubmitting a batch after a lost
      acknowledgement harmless.
    - All or nothing: one invalid sale rejects the whole batch.

    Returns {"created": n, "skipped": [sale_uid, ...], "order_ids": [...]}
    """
    if not isinstance(payloads, list):
        raise OrderError("orders must be a list")

    policy = _pricing_policy(policy)

    def _op():
        uids = [p.get("sale_uid") for p in payloads if isinstance(p, dict) and p.get("sale_uid")]
        stored = set()
        if uids:
            stored = {
                uid for (uid,) in db.session.query(Order.source_sale_uid)
                .filter(Order.source_sale_uid.in_(uids))
                .all()
            }

        created: list[Order] = []
        skipped: list[str] = []
        seen: set[str] = set()

        for index, payload in enumerate(payloads):
            if not isinstance(payload, dict):
                raise OrderError(f"orders[{index}] must be an object")

            sale_uid = payload.get("sale_uid")
            if sale_uid and (sale_uid in stored or sale_uid in seen):
                skipped.append(sale_uid)
                continue

            payment_method = payload.get("payment_method")
            if payment_method not in PAYMENT_METHODS:
                raise OrderError(
                    f"orders[{index}].payment_method must be one of: {', '.join(PAYMENT_METHODS)}"
                )

            try:
                sold_at = parse_iso_datetime(payload.get("queued_at"))
            except (AttributeError, TypeError, ValueError):
                raise OrderError(f"orders[{index}].queued_at must be an ISO-8601 datetime")

            order, _ = _build_order(payload, CHANNEL_POS, policy)
            now = utcnow()
            order.status = STATUS_DELIVERED
            order.fulfillment_status = FULFILLMENT_DELIVERED
            order.payment_method = payment_method
            order.source_sale_uid = sale_uid
            order.sold_at = sold_at or now
            order.delivered_at = sold_at or now

            db.session.add(order)
            db.session.flush()

            for line in order.lines:
                record_movement(
                    line.product_id,
                    -line.quantity,
                    MOVEMENT_SALE_POS,
                    f"Venta POS #{order.id}",
                    order_id=order.id,
                    occurred_at=order.sold_at,
                )

            if sale_uid:
                seen.add(sale_uid)
            created.append(order)

        try:
            db.session.commit()
        except IntegrityError:
            # Another terminal stored one of these sale_uids concurrently
            raise OrderError("Batch contains a sale that was already stored")
        return created, skipped

    created, skipped = run_with_retry(_op)
    logger.info("POS batch stored: %d created, %d skipped", len(created), len(skipped))
    return {
        "created": len(created),
        "skipped": skipped,
        "order_ids": [o.id for o in created],
    }


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found", {"order_id": order_id})
    return order


def list_orders(user_id: str | None = None, page: int = 1, limit: int = 50) -> dict:
    q = db.session.query(Order)
    if user_id is not None:
        q = q.filter(Order.user_id == str(user_id))
    total = q.count()
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 200)
    orders = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {"orders": orders, "total": total}


def list_orders_for_pickup() -> list[Order]:
    """Ready orders no rider has taken yet."""
    return (
        db.session.query(Order)
        .filter(Order.fulfillment_status.in_(READY_FOR_RIDER), Order.rider_id.is_(None))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )


def list_rider_orders(rider_id: str) -> list[Order]:
    return (
        db.session.query(Order)
        .filter(Order.rider_id == rider_id, Order.status == STATUS_ON_THE_WAY)
        .order_by(Order.picked_up_at.asc(), Order.id.asc())
        .all()
    )


# =============================================================================
# FULFILLMENT TRANSITIONS
# =============================================================================

def assign_to_dispatcher(order_id: int, dispatcher_id: str) -> Order:
    """No preparado -> En preparación. No stock effect."""
    if not dispatcher_id:
        raise OrderError("dispatcher_id is required")

    def _op():
        order = _load_for_update(order_id)
        if order.fulfillment_status != FULFILLMENT_NOT_PREPARED:
            raise InvalidTransitionError(
                "Order is not waiting for preparation",
                details={"order_id": order.id, "fulfillment_status": order.fulfillment_status},
            )
        _check_fulfillment_transition(order, FULFILLMENT_PREPARING, "Order is not waiting for preparation")

        order.fulfillment_status = FULFILLMENT_PREPARING
        order.dispatcher_id = dispatcher_id
        order.assigned_at = utcnow()
        db.session.commit()
        return order

    return run_with_retry(_op)


def _normalize_missing(order: Order, missing) -> dict[int, int]:
    """
    `missing` is either an iterable of product ids (whole line missing) or a
    mapping product_id -> missing units.
    """
    lines = {line.product_id: line for line in order.lines}
    if not missing:
        return {}

    if isinstance(missing, dict):
        pairs = [(int(pid), qty) for pid, qty in missing.items()]
    else:
        pairs = [(int(pid), None) for pid in missing]

    result: dict[int, int] = {}
    for product_id, qty in pairs:
        line = lines.get(product_id)
        if line is None:
            raise OrderError(
                f"Product {product_id} is not part of order {order.id}",
                details={"product_id": product_id},
            )
        qty = line.quantity if qty is None else qty
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0 or qty > line.quantity:
            raise OrderError(
                f"Missing quantity for product {product_id} must be between 1 and {line.quantity}",
                details={"product_id": product_id, "missing": qty},
            )
        result[product_id] = qty
    return result


def complete_picking(order_id: int, missing=None) -> Order:
    """
    Dispatcher finished picking.

    All found -> Listo para despacho; anything missing -> Listo con faltantes.
    Both present the order to logistics as ready (status Listo para recoger).
    Each shortfall is written off with a negative `adjustment` movement.
    """
    def _op():
        order = _load_for_update(order_id)
        if order.fulfillment_status != FULFILLMENT_PREPARING:
            raise InvalidTransitionError(
                "Order is not being prepared",
                details={"order_id": order.id, "fulfillment_status": order.fulfillment_status},
            )
        shortfalls = _normalize_missing(order, missing)
        target = FULFILLMENT_READY_WITH_MISSING if shortfalls else FULFILLMENT_READY
        _check_fulfillment_transition(order, target, "Order is not being prepared")

        for line in order.lines:
            qty = shortfalls.get(line.product_id)
            if not qty:
                continue
            line.missing_quantity = qty
            record_movement(
                line.product_id,
                -qty,
                MOVEMENT_ADJUSTMENT,
                f"Faltante en picking pedido #{order.id}",
                order_id=order.id,
            )

        _apply_fulfillment(order, target)
        db.session.commit()
        return order

    return run_with_retry(_op)


def assign_to_rider(order_id: int, rider_id: str) -> Order:
    """Ready order handed to a rider: En ruta / En camino, pickup time recorded."""
    if not rider_id:
        raise OrderError("rider_id is required")

    def _op():
        order = _load_for_update(order_id)
        if order.fulfillment_status not in READY_FOR_RIDER or order.rider_id:
            raise InvalidTransitionError(
                "Order is not ready for pickup",
                details={
                    "order_id": order.id,
                    "fulfillment_status": order.fulfillment_status,
                    "rider_id": order.rider_id,
                },
            )
        _check_fulfillment_transition(order, FULFILLMENT_EN_ROUTE, "Order is not ready for pickup")

        order.rider_id = rider_id
        order.picked_up_at = utcnow()
        _apply_fulfillment(order, FULFILLMENT_EN_ROUTE)
        db.session.commit()
        return order

    return run_with_retry(_op)


def mark_delivered(order_id: int) -> Order:
    def _op():
        order = _load_for_update(order_id)
        _check_fulfillment_transition(order, FULFILLMENT_DELIVERED, "Order is not on its way")

        order.delivered_at = utcnow()
        _apply_fulfillment(order, FULFILLMENT_DELIVERED)
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, reason: str | None = None) -> Order:
    """
    Cancel an order that has not left the store. Units still reserved by
    the sale (ordered minus missing) go back to stock as positive adjustments.
    """
    def _op():
        order = _load_for_update(order_id)
        if order.fulfillment_status not in CANCELLABLE or order.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                "Order can no longer be cancelled",
                details={"order_id": order.id, "status": order.status,
                         "fulfillment_status": order.fulfillment_status},
            )

        note = f"Cancelación pedido #{order.id}"
        if reason:
            note = f"{note}: {reason}"
        for line in order.lines:
            qty = line.quantity - (line.missing_quantity or 0)
            if qty > 0:
                record_movement(line.product_id, qty, MOVEMENT_ADJUSTMENT, note, order_id=order.id)

        _apply_fulfillment(order, FULFILLMENT_CANCELLED)
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_fulfillment_status(
    order_id: int,
    status: str,
    *,
    dispatcher_id: str | None = None,
    rider_id: str | None = None,
) -> Order:
    """Table-driven entry point used by back-office tooling."""
    if status == FULFILLMENT_PREPARING:
        return assign_to_dispatcher(order_id, dispatcher_id)
    if status == FULFILLMENT_READY:
        return complete_picking(order_id, missing=None)
    if status == FULFILLMENT_READY_WITH_MISSING:
        raise OrderError("Report missing items through picking completion")
    if status == FULFILLMENT_EN_ROUTE:
        return assign_to_rider(order_id, rider_id)
    if status == FULFILLMENT_DELIVERED:
        return mark_delivered(order_id)
    if status == FULFILLMENT_CANCELLED:
        return cancel_order(order_id)
    raise OrderError(f"Unknown fulfillment status: {status}")


def update_order_status(order_id: int, status: str) -> Order:
    """
    Customer-status change that is not driven by fulfillment (e.g. marking a
    received order as being prepared). Cancelling goes through cancel_order;
    Devuelto is only reachable through return processing.
    """
    if status == STATUS_CANCELLED:
        return cancel_order(order_id)
    if status == STATUS_RETURNED:
        raise OrderError("Returns are recorded through return processing")

    def _op():
        order = _load_for_update(order_id)
        if status not in STATUS_TRANSITIONS.get(order.status, set()):
            raise InvalidTransitionError(
                f"Cannot change status from {order.status} to {status}",
                details={"order_id": order.id, "status": order.status, "requested": status},
            )
        order.status = status
        db.session.commit()
        return order

    return run_with_retry(_op)
