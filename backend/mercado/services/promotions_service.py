from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..validation import ValidationError
from .pricing_service import percent_of


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"


@dataclass(frozen=True)
class DiscountPolicy:
    """
    How a cart discount is computed. The amount is derived from the current
    subtotal on every read, so a cart edited after the code was applied never
    shows a stale discount.
    """
    code: str
    kind: str
    value: Decimal

    def amount_for(self, subtotal_cents: int) -> int:
        if subtotal_cents <= 0:
            return 0
        if self.kind == DISCOUNT_PERCENTAGE:
            return percent_of(subtotal_cents, self.value)
        return min(int(self.value), subtotal_cents)


def resolve_promo_code(code: str | None, promo_codes: dict) -> DiscountPolicy | None:
    """Map a promo code (case-insensitive) to its policy; None if unknown."""
    if not code:
        return None
    normalized = code.strip().upper()
    registry = {str(k).upper(): v for k, v in (promo_codes or {}).items()}
    if normalized not in registry:
        return None
    return DiscountPolicy(
        code=normalized,
        kind=DISCOUNT_PERCENTAGE,
        value=Decimal(str(registry[normalized])),
    )


def manual_discount(kind: str, value) -> DiscountPolicy:
    """
    Operator discount keyed in at the POS.

    percentage: `value`% of the subtotal, labelled "Descuento N%"
    fixed:      `value` cents, capped at the subtotal, labelled "Monto Fijo"
    """
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, TypeError, ValueError):
        raise ValidationError("discount value must be a number")

    if amount < 0:
        raise ValidationError("discount value must be >= 0")

    if kind == DISCOUNT_PERCENTAGE:
        if amount > 100:
            raise ValidationError("percentage discount cannot exceed 100")
        return DiscountPolicy(code=f"Descuento {amount.normalize():f}%", kind=kind, value=amount)

    if kind == DISCOUNT_FIXED:
        if amount != amount.to_integral_value():
            raise ValidationError("fixed discount must be whole cents")
        return DiscountPolicy(code="Monto Fijo", kind=kind, value=amount)

    raise ValidationError(f"unknown discount type: {kind}")
