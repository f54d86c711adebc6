"""
Pricing engine: line totals under bundle tiers and percentage discounts,
and cart-level totals (subtotal, fees, discount, grand total).

Everything here is pure and synchronous. Amounts are integer cents; any
fractional intermediate is rounded to the nearest cent, half-up, where it
is produced.

BUNDLE POLICY:
Tiers are applied greedily, largest quantity first. Units not covered by a
whole bundle are priced at the effective single-unit price (after the
product's percentage discount), never at a smaller bundle's per-unit rate.
Bundle prices are absolute: the percentage discount does not stack on them.
Greedy largest-first is not always the cheapest split for every tier
configuration; it is the pricing rule the stores advertise, so keep it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..models.orders import CHANNEL_ONLINE, CHANNEL_POS


DEFAULT_DELIVERY_FEE_CENTS = 1000
DEFAULT_SERVICE_FEE_BPS = 200  # 2%
DEFAULT_COST_RATIO = Decimal("0.7")


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(value) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def percent_of(amount_cents: int, percent) -> int:
    """`percent`% of an amount, rounded half-up to the cent."""
    return round_half_up(Decimal(amount_cents) * _as_decimal(percent) / 100)


def default_unit_cost_cents(price_cents: int) -> int:
    """Cost basis assumed for products without an explicit cost (70% of price)."""
    return round_half_up(Decimal(price_cents) * DEFAULT_COST_RATIO)


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class BundleTier:
    quantity: int
    price_cents: int

    @classmethod
    def from_dict(cls, data: dict) -> "BundleTier":
        return cls(quantity=int(data["quantity"]), price_cents=int(data["price_cents"]))

    def to_dict(self) -> dict:
        return {"quantity": self.quantity, "price_cents": self.price_cents}


@dataclass(frozen=True)
class ProductSnapshot:
    """Immutable copy of the catalog fields that pricing and costing need."""
    id: int
    name: str
    price_cents: int
    cost_cents: int | None = None
    discount_percent: Decimal | None = None
    bundle_offers: tuple[BundleTier, ...] = ()
    sku: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProductSnapshot":
        tiers = tuple(
            t if isinstance(t, BundleTier) else BundleTier.from_dict(t)
            for t in (data.get("bundle_offers") or ())
        )
        return cls(
            id=int(data["id"]),
            name=data.get("name") or "",
            price_cents=int(data["price_cents"]),
            cost_cents=data.get("cost_cents"),
            discount_percent=_as_decimal(data.get("discount_percent")),
            bundle_offers=tiers,
            sku=data.get("sku"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "discount_percent": float(self.discount_percent) if self.discount_percent is not None else None,
            "bundle_offers": [t.to_dict() for t in self.bundle_offers],
        }

    def capture_unit_cost(self) -> int:
        if self.cost_cents is not None:
            return int(self.cost_cents)
        return default_unit_cost_cents(self.price_cents)


@dataclass(frozen=True)
class CartLineItem:
    """
    Product snapshot + quantity + cost captured when the item entered the cart.

    Frozen: quantity changes produce a new item via dataclasses.replace, which
    carries unit_cost_cents over untouched.
    """
    product: ProductSnapshot
    quantity: int
    unit_cost_cents: int

    @property
    def product_id(self) -> int:
        return self.product.id

    @property
    def line_total_cents(self) -> int:
        return calculate_line_item_total(self)

    def to_dict(self) -> dict:
        return {
            "product": self.product.to_dict(),
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLineItem":
        return cls(
            product=ProductSnapshot.from_dict(data["product"]),
            quantity=int(data["quantity"]),
            unit_cost_cents=int(data["unit_cost_cents"]),
        )


@dataclass(frozen=True)
class Discount:
    code: str
    amount_cents: int

    def to_dict(self) -> dict:
        return {"code": self.code, "amount_cents": self.amount_cents}


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int
    delivery_fee_cents: int
    service_fee_cents: int
    discount_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "service_fee_cents": self.service_fee_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


@dataclass(frozen=True)
class PricingPolicy:
    delivery_fee_cents: int = DEFAULT_DELIVERY_FEE_CENTS
    service_fee_bps: int = DEFAULT_SERVICE_FEE_BPS
    promo_codes: dict = field(default_factory=lambda: {"PROMO10": 10})

    @classmethod
    def from_config(cls, config) -> "PricingPolicy":
        return cls(
            delivery_fee_cents=int(config.get("DELIVERY_FEE_CENTS", DEFAULT_DELIVERY_FEE_CENTS)),
            service_fee_bps=int(config.get("SERVICE_FEE_BPS", DEFAULT_SERVICE_FEE_BPS)),
            promo_codes=dict(config.get("PROMO_CODES") or {}),
        )


# =============================================================================
# LINE PRICING
# =============================================================================

def effective_unit_price_cents(price_cents: int, discount_percent=None) -> int:
    """Single-unit price after the product's percentage discount (if any)."""
    pct = _as_decimal(discount_percent)
    if not pct:
        return int(price_cents)
    return round_half_up(Decimal(price_cents) * (100 - pct) / 100)


def _as_tiers(bundle_offers: Iterable) -> list[BundleTier]:
    tiers = []
    for t in bundle_offers or ():
        tier = t if isinstance(t, BundleTier) else BundleTier.from_dict(t)
        if tier.quantity > 0:
            tiers.append(tier)
    return tiers


def line_total_cents(
    quantity: int,
    unit_price_cents: int,
    discount_percent=None,
    bundle_offers: Iterable = (),
) -> int:
    """
    Payable total for `quantity` units.

    Example: price 1000, tiers {3: 2000, 6: 3500}
        7 -> 3500 (one 6-pack) + 1000 (remainder)      = 4500
        5 -> 2000 (one 3-pack) + 2 * 1000 (remainder)  = 4000
        2 -> 2 * 1000                                  = 2000
    """
    if quantity <= 0:
        return 0

    single_price = effective_unit_price_cents(unit_price_cents, discount_percent)
    tiers = _as_tiers(bundle_offers)
    if not tiers:
        return quantity * single_price

    remaining = quantity
    total = 0
    for tier in sorted(tiers, key=lambda t: t.quantity, reverse=True):
        count = remaining // tier.quantity
        if count:
            total += count * tier.price_cents
            remaining -= count * tier.quantity

    return total + remaining * single_price


def calculate_line_item_total(item: CartLineItem) -> int:
    product = item.product
    return line_total_cents(
        item.quantity,
        product.price_cents,
        product.discount_percent,
        product.bundle_offers,
    )


# =============================================================================
# CART TOTALS
# =============================================================================

def calculate_cart_totals(
    items: Iterable[CartLineItem],
    discount: Discount | None = None,
    channel: str = CHANNEL_ONLINE,
    policy: PricingPolicy | None = None,
) -> CartTotals:
    """
    subtotal  = sum of line totals
    delivery  = flat fee for a non-empty Online cart; 0 for POS
    service   = subtotal * SERVICE_FEE_BPS / 10000 for Online; 0 for POS
    total     = subtotal + delivery + service - discount, never below zero

    The reported discount is capped at subtotal + fees so the total identity
    holds exactly even when the total clamps at zero.
    """
    policy = policy or PricingPolicy()
    items = list(items)

    subtotal = sum(calculate_line_item_total(item) for item in items)

    if channel == CHANNEL_POS or not items:
        delivery_fee = 0
        service_fee = 0
    else:
        delivery_fee = policy.delivery_fee_cents
        service_fee = round_half_up(Decimal(subtotal) * policy.service_fee_bps / 10000)

    gross = subtotal + delivery_fee + service_fee
    discount_cents = 0
    if discount is not None:
        discount_cents = min(max(int(discount.amount_cents), 0), gross)

    return CartTotals(
        subtotal_cents=subtotal,
        delivery_fee_cents=delivery_fee,
        service_fee_cents=service_fee,
        discount_cents=discount_cents,
        total_cents=gross - discount_cents,
    )
