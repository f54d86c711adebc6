"""
Order aggregate tests: checkout, POS batch sync and the fulfillment state
machine with its ledger effects.
"""
import pytest

from mercado.extensions import db
from mercado.models import Order, Product, StockMovement
from mercado.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_SALE_ONLINE, MOVEMENT_SALE_POS
from mercado.models.orders import (
    CHANNEL_POS,
    FULFILLMENT_CANCELLED,
    FULFILLMENT_DELIVERED,
    FULFILLMENT_EN_ROUTE,
    FULFILLMENT_NOT_PREPARED,
    FULFILLMENT_PREPARING,
    FULFILLMENT_READY,
    FULFILLMENT_READY_WITH_MISSING,
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_ON_THE_WAY,
    STATUS_PREPARING,
    STATUS_READY_FOR_PICKUP,
    STATUS_RECEIVED,
)
from mercado.pos.sync_queue import build_pos_sale
from mercado.services import order_service
from mercado.services.cart_service import Cart
from mercado.services.catalog_service import product_snapshot
from mercado.services.order_service import InvalidTransitionError, OrderError, OrderNotFoundError
from mercado.services.promotions_service import DISCOUNT_FIXED


def _stock(product_id):
    return db.session.get(Product, product_id).stock


def _online_cart(policy, *lines):
    cart = Cart(policy=policy)
    for product, qty in lines:
        cart.add_item(product_snapshot(product), qty)
    return cart


def _pos_sale(policy, product, qty, payment_method="cash"):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(product_snapshot(product), qty)
    return build_pos_sale(cart, payment_method)


@pytest.fixture
def placed_order(milk, water, address, policy):
    cart = _online_cart(policy, (milk, 7), (water, 2))
    return order_service.place_order(cart, "u-1", address.id, policy=policy)


# =============================================================================
# CHECKOUT
# =============================================================================

def test_place_order_creates_order_and_ledger_entries(milk, water, address, policy):
    cart = _online_cart(policy, (milk, 7), (water, 2))
    cart.apply_promo_code("PROMO10")

    order = order_service.place_order(cart, "u-1", address.id, policy=policy)

    assert order.status == STATUS_RECEIVED
    assert order.fulfillment_status == FULFILLMENT_NOT_PREPARED
    assert order.subtotal_cents == 4500 + 1600
    assert order.delivery_fee_cents == 1000
    assert order.service_fee_cents == 122
    assert order.discount_code == "PROMO10"
    assert order.discount_amount_cents == 610
    assert order.total_cents == (
        order.subtotal_cents + order.delivery_fee_cents + order.service_fee_cents - order.discount_amount_cents
    )
    assert order.delivery_address_text == "Av. Arce 2631, La Paz"
    assert order.delivery_notes == "Edificio azul"

    milk_line = next(line for line in order.lines if line.product_id == milk.id)
    assert milk_line.line_total_cents == 4500
    assert milk_line.unit_cost_cents == 700

    movements = db.session.query(StockMovement).filter_by(order_id=order.id).all()
    assert sorted((m.type, m.quantity_delta) for m in movements) == [
        (MOVEMENT_SALE_ONLINE, -7),
        (MOVEMENT_SALE_ONLINE, -2),
    ]
    assert _stock(milk.id) == 93
    assert _stock(water.id) == 48
    assert cart.is_empty()


def test_place_order_requires_items_and_address(milk, address, policy):
    with pytest.raises(OrderError):
        order_service.place_order(Cart(policy=policy), "u-1", address.id, policy=policy)

    cart = _online_cart(policy, (milk, 1))
    with pytest.raises(OrderError):
        order_service.place_order(cart, "u-1", None, policy=policy)

    assert not cart.is_empty()
    assert db.session.query(Order).count() == 0


def test_place_order_rejects_someone_elses_address(milk, address, policy):
    cart = _online_cart(policy, (milk, 1))
    with pytest.raises(OrderNotFoundError):
        order_service.place_order(cart, "u-2", address.id, policy=policy)

    assert not cart.is_empty()
    assert _stock(milk.id) == 100


def test_cost_snapshot_survives_catalog_change(milk, address, policy):
    cart = _online_cart(policy, (milk, 2))
    product = db.session.get(Product, milk.id)
    product.cost_cents = 950
    db.session.commit()

    cart.add_item(product_snapshot(product), 1)
    order = order_service.place_order(cart, "u-1", address.id, policy=policy)

    assert order.lines[0].unit_cost_cents == 700


def test_create_order_rejects_totals_mismatch(milk, address, policy):
    payload = _online_cart(policy, (milk, 3)).snapshot()
    payload.update({"user_id": "u-1", "address_id": address.id, "total_cents": 1})

    with pytest.raises(OrderError) as exc:
        order_service.create_order(payload, policy=policy)

    assert exc.value.details["field"] == "total_cents"
    assert db.session.query(Order).count() == 0
    assert _stock(milk.id) == 100


def test_create_order_rejects_tampered_line_total(milk, address, policy):
    payload = _online_cart(policy, (milk, 7)).snapshot()
    payload["items"][0]["line_total_cents"] = 100
    payload.update({"user_id": "u-1", "address_id": address.id})

    with pytest.raises(OrderError):
        order_service.create_order(payload, policy=policy)


def test_create_order_rejects_unknown_promo_code(milk, address, policy):
    payload = _online_cart(policy, (milk, 1)).snapshot()
    payload.update({
        "user_id": "u-1",
        "address_id": address.id,
        "discount": {"code": "GRATIS", "amount_cents": 900},
        "total_cents": None,
    })

    with pytest.raises(OrderError):
        order_service.create_order(payload, policy=policy)


# =============================================================================
# POS BATCH
# =============================================================================

def test_batch_creates_delivered_pos_orders(milk, water, policy):
    sales = [_pos_sale(policy, milk, 7, "card"), _pos_sale(policy, water, 3, "qr")]

    result = order_service.create_orders_batch(sales, policy=policy)

    assert result["created"] == 2
    assert result["skipped"] == []
    orders = db.session.query(Order).order_by(Order.id).all()
    assert [o.id for o in orders] == result["order_ids"]
    for order in orders:
        assert order.channel == CHANNEL_POS
        assert order.status == STATUS_DELIVERED
        assert order.fulfillment_status == FULFILLMENT_DELIVERED
        assert order.delivery_fee_cents == 0
        assert order.service_fee_cents == 0
        assert order.user_id == "pos_user"
    assert orders[0].total_cents == 4500
    assert orders[0].payment_method == "card"

    movements = db.session.query(StockMovement).filter(StockMovement.order_id.isnot(None)).all()
    assert {m.type for m in movements} == {MOVEMENT_SALE_POS}
    assert _stock(milk.id) == 93
    assert _stock(water.id) == 47


def test_batch_is_idempotent_per_sale_uid(milk, policy):
    sale = _pos_sale(policy, milk, 2)

    first = order_service.create_orders_batch([sale], policy=policy)
    second = order_service.create_orders_batch([sale], policy=policy)

    assert first["created"] == 1
    assert second == {"created": 0, "skipped": [sale["sale_uid"]], "order_ids": []}
    assert db.session.query(Order).count() == 1
    assert _stock(milk.id) == 98


def test_duplicate_sale_inside_one_batch_is_stored_once(milk, policy):
    sale = _pos_sale(policy, milk, 1)
    result = order_service.create_orders_batch([sale, dict(sale)], policy=policy)

    assert result["created"] == 1
    assert result["skipped"] == [sale["sale_uid"]]


def test_batch_is_all_or_nothing(milk, water, policy):
    good = _pos_sale(policy, milk, 2)
    bad = _pos_sale(policy, water, 1)
    bad["payment_method"] = "cheque"

    with pytest.raises(OrderError):
        order_service.create_orders_batch([good, bad], policy=policy)

    assert db.session.query(Order).count() == 0
    assert _stock(milk.id) == 100


def test_batch_keeps_manual_discount(milk, policy):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(product_snapshot(milk), 6)
    cart.apply_manual_discount(DISCOUNT_FIXED, 500)
    sale = build_pos_sale(cart, "cash")

    result = order_service.create_orders_batch([sale], policy=policy)
    order = order_service.get_order(result["order_ids"][0])

    assert order.discount_code == "Monto Fijo"
    assert order.discount_amount_cents == 500
    assert order.total_cents == 3000


# =============================================================================
# FULFILLMENT
# =============================================================================

def test_full_fulfillment_flow(placed_order, milk):
    order_id = placed_order.id

    order = order_service.assign_to_dispatcher(order_id, "disp-1")
    assert order.fulfillment_status == FULFILLMENT_PREPARING
    assert order.status == STATUS_RECEIVED
    assert order.dispatcher_id == "disp-1"

    order = order_service.complete_picking(order_id, missing=None)
    assert order.fulfillment_status == FULFILLMENT_READY
    assert order.status == STATUS_READY_FOR_PICKUP
    assert [o.id for o in order_service.list_orders_for_pickup()] == [order_id]

    order = order_service.assign_to_rider(order_id, "rider-7")
    assert order.fulfillment_status == FULFILLMENT_EN_ROUTE
    assert order.status == STATUS_ON_THE_WAY
    assert order.picked_up_at is not None
    assert order_service.list_orders_for_pickup() == []
    assert [o.id for o in order_service.list_rider_orders("rider-7")] == [order_id]

    order = order_service.mark_delivered(order_id)
    assert order.fulfillment_status == FULFILLMENT_DELIVERED
    assert order.status == STATUS_DELIVERED
    assert order.delivered_at is not None
    assert _stock(milk.id) == 93


def test_picking_shortfall_writes_off_missing_units(placed_order, milk):
    order_service.assign_to_dispatcher(placed_order.id, "disp-1")

    order = order_service.complete_picking(placed_order.id, missing={milk.id: 2})

    assert order.fulfillment_status == FULFILLMENT_READY_WITH_MISSING
    assert order.status == STATUS_READY_FOR_PICKUP
    line = next(line for line in order.lines if line.product_id == milk.id)
    assert line.missing_quantity == 2
    shortfall = (
        db.session.query(StockMovement)
        .filter_by(order_id=order.id, type=MOVEMENT_ADJUSTMENT)
        .one()
    )
    assert shortfall.quantity_delta == -2
    assert _stock(milk.id) == 91

    # Rider can still take an order with missing items
    assert order_service.assign_to_rider(order.id, "rider-1").status == STATUS_ON_THE_WAY


def test_missing_quantity_cannot_exceed_ordered(placed_order, milk):
    order_service.assign_to_dispatcher(placed_order.id, "disp-1")
    with pytest.raises(OrderError):
        order_service.complete_picking(placed_order.id, missing={milk.id: 8})
    assert order_service.get_order(placed_order.id).fulfillment_status == FULFILLMENT_PREPARING


def test_rider_cannot_take_unprepared_order(placed_order):
    with pytest.raises(InvalidTransitionError):
        order_service.assign_to_rider(placed_order.id, "rider-1")

    order = order_service.get_order(placed_order.id)
    assert order.fulfillment_status == FULFILLMENT_NOT_PREPARED
    assert order.rider_id is None


def test_dispatcher_cannot_take_order_twice(placed_order):
    order_service.assign_to_dispatcher(placed_order.id, "disp-1")
    with pytest.raises(InvalidTransitionError):
        order_service.assign_to_dispatcher(placed_order.id, "disp-2")
    assert order_service.get_order(placed_order.id).dispatcher_id == "disp-1"


def test_cancel_restocks_units_not_already_written_off(placed_order, milk, water):
    order_service.assign_to_dispatcher(placed_order.id, "disp-1")
    order_service.complete_picking(placed_order.id, missing={milk.id: 2})

    order = order_service.cancel_order(placed_order.id, "Cliente no disponible")

    assert order.status == STATUS_CANCELLED
    assert order.fulfillment_status == FULFILLMENT_CANCELLED
    assert _stock(milk.id) == 100 - 7 - 2 + 5
    assert _stock(water.id) == 50


def test_cannot_cancel_order_on_the_way(placed_order):
    order_service.assign_to_dispatcher(placed_order.id, "disp-1")
    order_service.complete_picking(placed_order.id)
    order_service.assign_to_rider(placed_order.id, "rider-1")

    with pytest.raises(InvalidTransitionError):
        order_service.cancel_order(placed_order.id)


def test_fulfillment_status_pairs_stay_consistent(placed_order):
    """Every reachable (status, fulfillment) pair is one the state tables allow."""
    allowed = {
        (STATUS_RECEIVED, FULFILLMENT_NOT_PREPARED),
        (STATUS_RECEIVED, FULFILLMENT_PREPARING),
        (STATUS_PREPARING, FULFILLMENT_PREPARING),
        (STATUS_READY_FOR_PICKUP, FULFILLMENT_READY),
        (STATUS_ON_THE_WAY, FULFILLMENT_EN_ROUTE),
        (STATUS_DELIVERED, FULFILLMENT_DELIVERED),
    }
    steps = [
        lambda oid: order_service.update_fulfillment_status(oid, FULFILLMENT_PREPARING, dispatcher_id="d"),
        lambda oid: order_service.update_order_status(oid, STATUS_PREPARING),
        lambda oid: order_service.update_fulfillment_status(oid, FULFILLMENT_READY),
        lambda oid: order_service.update_fulfillment_status(oid, FULFILLMENT_EN_ROUTE, rider_id="r"),
        lambda oid: order_service.update_fulfillment_status(oid, FULFILLMENT_DELIVERED),
    ]
    for step in steps:
        order = step(placed_order.id)
        assert (order.status, order.fulfillment_status) in allowed


def test_update_order_status_rejects_illegal_jump(placed_order):
    with pytest.raises(InvalidTransitionError):
        order_service.update_order_status(placed_order.id, STATUS_DELIVERED)
    assert order_service.get_order(placed_order.id).status == STATUS_RECEIVED


def test_unknown_order(db_session):
    with pytest.raises(OrderNotFoundError):
        order_service.get_order(12345)
    with pytest.raises(OrderNotFoundError):
        order_service.mark_delivered(12345)


def test_list_orders_by_user(placed_order, milk, policy):
    order_service.create_orders_batch([_pos_sale(policy, milk, 1)], policy=policy)

    mine = order_service.list_orders(user_id="u-1")
    everyone = order_service.list_orders()

    assert mine["total"] == 1
    assert [o.id for o in mine["orders"]] == [placed_order.id]
    assert everyone["total"] == 2
