"""
Cart aggregate and discount policy tests.
"""
import pytest

from mercado.models.orders import CHANNEL_POS
from mercado.services.cart_service import Cart
from mercado.services.promotions_service import (
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    manual_discount,
    resolve_promo_code,
)
from mercado.validation import ValidationError


MILK = {
    "id": 1,
    "sku": "7750001000011",
    "name": "Leche entera 1L",
    "price_cents": 1000,
    "cost_cents": None,
    "bundle_offers": [{"quantity": 3, "price_cents": 2000}, {"quantity": 6, "price_cents": 3500}],
}
OIL = {"id": 2, "name": "Aceite vegetal 900ml", "price_cents": 2150, "cost_cents": 1600, "discount_percent": 5}


def test_add_item_merges_quantities(policy):
    cart = Cart(policy=policy)
    cart.add_item(MILK, 2)
    cart.add_item(MILK, 5)

    assert len(cart.items) == 1
    assert cart.get_item(1).quantity == 7
    assert cart.line_total_cents(1) == 4500
    assert cart.count() == 7


def test_add_item_rejects_non_positive_quantity(policy):
    cart = Cart(policy=policy)
    with pytest.raises(ValidationError):
        cart.add_item(MILK, 0)
    with pytest.raises(ValidationError):
        cart.add_item(MILK, -2)
    assert cart.is_empty()


def test_set_quantity_zero_removes_line(policy):
    cart = Cart(policy=policy)
    cart.add_item(MILK, 2)
    cart.add_item(OIL, 1)

    cart.set_quantity(1, 0)

    assert cart.get_item(1) is None
    assert [i.product_id for i in cart.items] == [2]


def test_remove_and_clear(policy):
    cart = Cart(policy=policy)
    cart.add_item(MILK, 2)
    cart.add_item(OIL, 1)
    cart.apply_promo_code("PROMO10")

    cart.remove_item(2)
    assert [i.product_id for i in cart.items] == [1]

    cart.clear()
    assert cart.is_empty()
    assert cart.discount is None


def test_unit_cost_captured_once(policy):
    """Re-adding a product after its catalog cost changed keeps the original cost."""
    cart = Cart(policy=policy)
    cart.add_item(MILK, 1)
    assert cart.get_item(1).unit_cost_cents == 700

    cart.add_item({**MILK, "cost_cents": 900}, 2)
    item = cart.get_item(1)
    assert item.quantity == 3
    assert item.unit_cost_cents == 700

    cart.set_quantity(1, 5)
    assert cart.get_item(1).unit_cost_cents == 700


def test_explicit_cost_is_used(policy):
    cart = Cart(policy=policy)
    cart.add_item(OIL, 1)
    assert cart.get_item(2).unit_cost_cents == 1600


def test_promo_code_is_ten_percent_of_subtotal(policy):
    cart = Cart(policy=policy)
    cart.add_item({"id": 9, "name": "Canasta", "price_cents": 20000}, 1)

    assert cart.apply_promo_code("promo10") is True
    totals = cart.totals()

    assert cart.discount.code == "PROMO10"
    assert totals.discount_cents == 2000
    assert totals.total_cents == 20000 + 1000 + 400 - 2000


def test_promo_discount_tracks_cart_changes(policy):
    cart = Cart(policy=policy)
    cart.add_item({"id": 9, "name": "Canasta", "price_cents": 20000}, 1)
    cart.apply_promo_code("PROMO10")

    cart.set_quantity(9, 2)

    assert cart.discount.amount_cents == 4000


def test_unknown_code_clears_discount_and_returns_false(policy):
    cart = Cart(policy=policy)
    cart.add_item(MILK, 3)
    cart.apply_promo_code("PROMO10")

    assert cart.apply_promo_code("NOPE") is False
    assert cart.discount is None
    assert cart.totals().discount_cents == 0


def test_only_one_discount_active(policy):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(MILK, 6)
    cart.apply_promo_code("PROMO10")

    cart.apply_manual_discount(DISCOUNT_FIXED, 500)

    assert cart.discount.code == "Monto Fijo"
    assert cart.totals().discount_cents == 500
    assert cart.totals().total_cents == 3000

    cart.clear_promo_code()
    assert cart.discount is None


def test_pos_cart_snapshot_has_no_fees(policy):
    cart = Cart(channel=CHANNEL_POS, policy=policy)
    cart.add_item(MILK, 7)
    cart.apply_manual_discount(DISCOUNT_PERCENTAGE, 10)

    snap = cart.snapshot()

    assert snap["channel"] == CHANNEL_POS
    assert snap["delivery_fee_cents"] == 0
    assert snap["service_fee_cents"] == 0
    assert snap["subtotal_cents"] == 4500
    assert snap["discount"] == {"code": "Descuento 10%", "amount_cents": 450}
    assert snap["total_cents"] == 4050
    assert snap["items"][0]["unit_cost_cents"] == 700
    assert snap["items"][0]["line_total_cents"] == 4500


def test_unknown_channel_rejected():
    with pytest.raises(ValidationError):
        Cart(channel="Telefono")


def test_resolve_promo_code_registry():
    assert resolve_promo_code("PROMO10", {"PROMO10": 10}).amount_for(20000) == 2000
    assert resolve_promo_code("VERANO5", {"PROMO10": 10}) is None
    assert resolve_promo_code("", {"PROMO10": 10}) is None


@pytest.mark.parametrize("kind,value", [
    (DISCOUNT_PERCENTAGE, 101),
    (DISCOUNT_PERCENTAGE, -1),
    (DISCOUNT_FIXED, "abc"),
    (DISCOUNT_FIXED, 10.5),
    ("bogo", 1),
])
def test_manual_discount_rejects_invalid_values(kind, value):
    with pytest.raises(ValidationError):
        manual_discount(kind, value)


def test_fixed_discount_capped_at_subtotal():
    assert manual_discount(DISCOUNT_FIXED, 5000).amount_for(3000) == 3000
    assert manual_discount(DISCOUNT_FIXED, 5000).amount_for(0) == 0


@pytest.mark.parametrize("quantity", ["2", 2.7, True, None])
def test_set_quantity_requires_integer(policy, quantity):
    cart = Cart(policy=policy)
    cart.add_item(MILK, 2)

    with pytest.raises(ValidationError):
        cart.set_quantity(1, quantity)

    assert cart.get_item(1).quantity == 2
