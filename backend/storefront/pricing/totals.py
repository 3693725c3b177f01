from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from storefront.pricing.rules import ZERO, AppliedDiscounts

TWO_PLACES = Decimal("0.01")


def round2(value) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_cents(value) -> int:
    return int(round2(value) * 100)


def shipping_cost(subtotal: Decimal, threshold: Decimal, flat_fee: Decimal) -> Decimal:
    """Flat fee below the threshold, free at or above it."""
    return ZERO if subtotal >= threshold else Decimal(flat_fee)


@dataclass(frozen=True)
class OrderTotals:
    """
    Unrounded order amounts. Call rounded() (or as_dict()) only when the
    numbers are shown or persisted, never in between. Tax is the one exception:
    it is charged in whole cents, so the total is built on the rounded tax.
    """

    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        return (
            self.subtotal - self.discount_amount + self.shipping_amount + round2(self.tax_amount)
        )

    def rounded(self) -> Dict[str, Decimal]:
        return {
            "subtotal": round2(self.subtotal),
            "discount_amount": round2(self.discount_amount),
            "shipping_amount": round2(self.shipping_amount),
            "tax_amount": round2(self.tax_amount),
            "total_amount": round2(self.total_amount),
        }

    def as_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in self.rounded().items()}

    @property
    def total_cents(self) -> int:
        return to_cents(self.total_amount)


def compute_totals(
    subtotal: Decimal,
    discounts: AppliedDiscounts,
    tax_rate: Decimal,
    free_shipping_threshold: Decimal,
    flat_shipping_fee: Decimal,
    tax_on_discounted_subtotal: bool = False,
) -> OrderTotals:
    discount = min(discounts.amount, subtotal)
    shipping = shipping_cost(subtotal, free_shipping_threshold, flat_shipping_fee)
    if discounts.free_shipping:
        shipping = ZERO
    taxable = subtotal - discount if tax_on_discounted_subtotal else subtotal
    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount,
        shipping_amount=shipping,
        tax_amount=taxable * Decimal(tax_rate),
    )
