from storefront.pricing.rules import (
    AppliedDiscounts,
    ApplicableTo,
    CartLine,
    DiscountEvaluation,
    DiscountRule,
    DiscountRuleError,
    DiscountScope,
    DiscountType,
    UserContext,
    cart_subtotal,
    combine,
    evaluate,
)
from storefront.pricing.totals import OrderTotals, compute_totals, round2, shipping_cost

__all__ = [
    "AppliedDiscounts",
    "ApplicableTo",
    "CartLine",
    "DiscountEvaluation",
    "DiscountRule",
    "DiscountRuleError",
    "DiscountScope",
    "DiscountType",
    "OrderTotals",
    "UserContext",
    "cart_subtotal",
    "combine",
    "compute_totals",
    "evaluate",
    "round2",
    "shipping_cost",
]
