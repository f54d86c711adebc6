"""
Cart aggregate for one in-progress transaction (online cart or POS sale).

Owns its line items until checkout. Every mutation is synchronous and
in-memory; totals are derived from the items and the discount policy on
every read and never stored.

Guarantees:
- no line item with quantity <= 0 is ever held (setting 0 removes the line)
- a line's unit_cost_cents is captured once, when the product first enters
  the cart, and re-adding the product only bumps the quantity
- at most one discount is active; applying another replaces it
"""
from __future__ import annotations

import logging
from dataclasses import replace

from ..models.orders import CHANNEL_ONLINE, CHANNELS
from ..validation import ValidationError
from .pricing_service import (
    CartLineItem,
    CartTotals,
    Discount,
    PricingPolicy,
    ProductSnapshot,
    calculate_cart_totals,
    calculate_line_item_total,
)
from .promotions_service import DiscountPolicy, manual_discount, resolve_promo_code


logger = logging.getLogger(__name__)


class Cart:
    def __init__(self, channel: str = CHANNEL_ONLINE, policy: PricingPolicy | None = None):
        if channel not in CHANNELS:
            raise ValidationError(f"unknown channel: {channel}")
        self.channel = channel
        self.policy = policy or PricingPolicy()
        self._items: dict[int, CartLineItem] = {}
        self._discount_policy: DiscountPolicy | None = None

    # -------------------------------------------------------------------------
    # Line items
    # -------------------------------------------------------------------------

    @property
    def items(self) -> list[CartLineItem]:
        return list(self._items.values())

    def get_item(self, product_id: int) -> CartLineItem | None:
        return self._items.get(product_id)

    def is_empty(self) -> bool:
        return not self._items

    def add_item(self, product: ProductSnapshot | dict, quantity: int = 1) -> CartLineItem:
        if isinstance(product, dict):
            product = ProductSnapshot.from_dict(product)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer")

        existing = self._items.get(product.id)
        if existing is not None:
            item = replace(existing, quantity=existing.quantity + quantity)
        else:
            item = CartLineItem(
                product=product,
                quantity=quantity,
                unit_cost_cents=product.capture_unit_cost(),
            )
        self._items[product.id] = item
        return item

    def remove_item(self, product_id: int) -> None:
        self._items.pop(product_id, None)

    def set_quantity(self, product_id: int, quantity: int) -> CartLineItem | None:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("quantity must be an integer")
        if quantity <= 0:
            self.remove_item(product_id)
            return None
        existing = self._items.get(product_id)
        if existing is None:
            return None
        item = replace(existing, quantity=quantity)
        self._items[product_id] = item
        return item

    def clear(self) -> None:
        self._items.clear()
        self._discount_policy = None

    # -------------------------------------------------------------------------
    # Discounts
    # -------------------------------------------------------------------------

    def apply_promo_code(self, code: str) -> bool:
        """
        Activate a promo code. Returns False (and leaves no discount active)
        when the code is not recognized; callers show the rejection.
        """
        policy = resolve_promo_code(code, self.policy.promo_codes)
        if policy is None:
            logger.info("Rejected promo code %r", code)
            self._discount_policy = None
            return False
        self._discount_policy = policy
        return True

    def clear_promo_code(self) -> None:
        self._discount_policy = None

    def apply_manual_discount(self, kind: str, value) -> Discount | None:
        """POS operator discount; occupies the single discount slot."""
        self._discount_policy = manual_discount(kind, value)
        return self.discount

    @property
    def discount(self) -> Discount | None:
        if self._discount_policy is None:
            return None
        subtotal = self.subtotal_cents()
        return Discount(
            code=self._discount_policy.code,
            amount_cents=self._discount_policy.amount_for(subtotal),
        )

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    def line_total_cents(self, product_id: int) -> int:
        item = self._items.get(product_id)
        return calculate_line_item_total(item) if item else 0

    def subtotal_cents(self) -> int:
        return sum(calculate_line_item_total(item) for item in self._items.values())

    def count(self) -> int:
        return sum(item.quantity for item in self._items.values())

    def totals(self) -> CartTotals:
        return calculate_cart_totals(
            self._items.values(),
            discount=self.discount,
            channel=self.channel,
            policy=self.policy,
        )

    def snapshot(self) -> dict:
        """
        Plain-data checkout payload: line snapshots (with cost), totals and
        discount. Order creation and the POS queue both consume this shape.
        """
        totals = self.totals()
        discount = self.discount
        return {
            "channel": self.channel,
            "items": [
                {
                    "product_id": item.product.id,
                    "product_name": item.product.name,
                    "quantity": item.quantity,
                    "unit_price_cents": item.product.price_cents,
                    "discount_percent": (
                        float(item.product.discount_percent)
                        if item.product.discount_percent is not None else None
                    ),
                    "bundle_offers": [t.to_dict() for t in item.product.bundle_offers],
                    "unit_cost_cents": item.unit_cost_cents,
                    "line_total_cents": calculate_line_item_total(item),
                }
                for item in self._items.values()
            ],
            "subtotal_cents": totals.subtotal_cents,
            "delivery_fee_cents": totals.delivery_fee_cents,
            "service_fee_cents": totals.service_fee_cents,
            "discount": (
                {"code": discount.code, "amount_cents": totals.discount_cents}
                if discount is not None and totals.discount_cents > 0 else None
            ),
            "total_cents": totals.total_cents,
        }
