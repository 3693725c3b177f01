"""
Discount rule evaluation.

A discount code record is turned into an immutable ``DiscountRule`` and
evaluated against the cart lines and the shopper's context. Evaluation never
touches the database; usage counters and the user's history are passed in.

Amount-off policy
-----------------
  percentage    -> min(subtotal * value / 100, maximum_discount)
  fixed_amount  -> min(value, subtotal)
  free_shipping -> 0 against the subtotal, the shipping line is waived instead

When several codes are applied, they either all stack (every one must be
``stackable``) or the highest-priority code wins alone.
"""
import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import FrozenSet, Iterable, List, Optional, Sequence

ZERO = Decimal("0")

STACK_ORIGINAL = "original"
STACK_PROGRESSIVE = "progressive"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"


class ApplicableTo(str, enum.Enum):
    ALL = "all"
    PRODUCT = "product"
    VARIANT = "variant"
    CATEGORY = "category"
    USER = "user"


class DiscountRuleError(ValueError):
    pass


@dataclass(frozen=True)
class CartLine:
    product_id: str
    variant_id: str
    quantity: int
    unit_price: Decimal
    category_id: Optional[str] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise DiscountRuleError("Cart line quantity must be at least 1")
        if self.unit_price < 0:
            raise DiscountRuleError("Cart line unit price cannot be negative")

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class UserContext:
    user_id: Optional[str] = None
    redemptions: int = 0  # times this user already redeemed the code
    has_completed_order: bool = False


@dataclass(frozen=True)
class DiscountScope:
    kind: ApplicableTo = ApplicableTo.ALL
    ids: FrozenSet[str] = frozenset()

    @classmethod
    def build(cls, applicable_to, applicable_ids: Optional[Iterable] = None) -> "DiscountScope":
        kind = ApplicableTo(applicable_to or ApplicableTo.ALL)
        ids = frozenset(str(i) for i in (applicable_ids or []))
        if kind is ApplicableTo.ALL:
            ids = frozenset()
        return cls(kind=kind, ids=ids)

    def matches(self, lines: Sequence[CartLine], user: UserContext) -> bool:
        if self.kind is ApplicableTo.ALL:
            return True
        if self.kind is ApplicableTo.PRODUCT:
            return any(l.product_id in self.ids for l in lines)
        if self.kind is ApplicableTo.VARIANT:
            return any(l.variant_id in self.ids for l in lines)
        if self.kind is ApplicableTo.CATEGORY:
            return any(l.category_id is not None and l.category_id in self.ids for l in lines)
        if self.kind is ApplicableTo.USER:
            return user.user_id is not None and user.user_id in self.ids
        raise DiscountRuleError(f"Unhandled discount scope: {self.kind!r}")


@dataclass(frozen=True)
class DiscountRule:
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    id: Optional[int] = None
    minimum_purchase: Decimal = ZERO
    maximum_discount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_count: int = 0
    user_usage_limit: Optional[int] = None
    valid_until: Optional[datetime] = None
    scope: DiscountScope = field(default_factory=DiscountScope)
    stackable: bool = False
    is_active: bool = True
    priority: int = 0
    first_purchase_only: bool = False
    minimum_items: Optional[int] = None

    def __post_init__(self):
        if self.discount_value < 0:
            raise DiscountRuleError("Discount value cannot be negative")
        if self.discount_type is DiscountType.PERCENTAGE and self.discount_value > 100:
            raise DiscountRuleError("Percentage discount must be between 0 and 100")
        if not 0 <= self.priority <= 100:
            raise DiscountRuleError("Priority must be between 0 and 100")


@dataclass(frozen=True)
class DiscountEvaluation:
    eligible: bool
    amount_off: Decimal = ZERO
    reason: Optional[str] = None
    free_shipping: bool = False
    rule: Optional[DiscountRule] = None


@dataclass(frozen=True)
class AppliedDiscounts:
    applied: List[DiscountEvaluation] = field(default_factory=list)
    amount: Decimal = ZERO
    free_shipping: bool = False

    @property
    def codes(self) -> List[str]:
        return [e.rule.code for e in self.applied if e.rule is not None]


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # rows read back from SQLite come out naive
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def cart_subtotal(lines: Iterable[CartLine]) -> Decimal:
    return sum((l.total_price for l in lines), ZERO)


def amount_off(rule: DiscountRule, base: Decimal) -> Decimal:
    if base <= 0:
        return ZERO
    if rule.discount_type is DiscountType.PERCENTAGE:
        amount = base * rule.discount_value / 100
        if rule.maximum_discount is not None:
            amount = min(amount, rule.maximum_discount)
        return min(amount, base)
    if rule.discount_type is DiscountType.FIXED_AMOUNT:
        return min(rule.discount_value, base)
    if rule.discount_type is DiscountType.FREE_SHIPPING:
        return ZERO
    raise DiscountRuleError(f"Unhandled discount type: {rule.discount_type!r}")


def _reject(rule: DiscountRule, reason: str) -> DiscountEvaluation:
    return DiscountEvaluation(eligible=False, reason=reason, rule=rule)


def evaluate(
    rule: DiscountRule,
    lines: Sequence[CartLine],
    user: Optional[UserContext] = None,
    now: Optional[datetime] = None,
) -> DiscountEvaluation:
    user = user or UserContext()
    now = as_utc(now) or datetime.now(timezone.utc)
    subtotal = cart_subtotal(lines)

    if not rule.is_active:
        return _reject(rule, "Discount code is not active")
    if now < as_utc(rule.valid_from):
        return _reject(rule, "Discount code is not valid yet")
    if rule.valid_until is not None and now > as_utc(rule.valid_until):
        return _reject(rule, "Discount code has expired")
    if rule.usage_limit is not None and rule.usage_count >= rule.usage_limit:
        return _reject(rule, "Discount code usage limit reached")
    if rule.user_usage_limit is not None and user.redemptions >= rule.user_usage_limit:
        return _reject(rule, "You have already used this discount code")
    if rule.first_purchase_only and user.has_completed_order:
        return _reject(rule, "Discount code is only valid on your first order")
    if subtotal < rule.minimum_purchase:
        return _reject(rule, f"Minimum purchase of {rule.minimum_purchase:.2f} required")
    if rule.minimum_items and sum(l.quantity for l in lines) < rule.minimum_items:
        return _reject(rule, f"At least {rule.minimum_items} items required")
    if not rule.scope.matches(lines, user):
        return _reject(rule, "Discount code does not apply to items in your cart")

    return DiscountEvaluation(
        eligible=True,
        amount_off=amount_off(rule, subtotal),
        reason="Discount code applied",
        free_shipping=rule.discount_type is DiscountType.FREE_SHIPPING,
        rule=rule,
    )


def combine(
    evaluations: Iterable[DiscountEvaluation],
    subtotal: Decimal,
    stacking_base: str = STACK_ORIGINAL,
) -> AppliedDiscounts:
    eligible = [e for e in evaluations if e.eligible and e.rule is not None]
    if not eligible:
        return AppliedDiscounts()

    if len(eligible) > 1 and not all(e.rule.stackable for e in eligible):
        # max() keeps the first of equal priorities, i.e. the order codes were entered
        chosen = [max(eligible, key=lambda e: e.rule.priority)]
    else:
        chosen = eligible

    if stacking_base == STACK_PROGRESSIVE and len(chosen) > 1:
        remaining = subtotal
        progressive = []
        for e in sorted(chosen, key=lambda e: e.rule.priority, reverse=True):
            amt = amount_off(e.rule, remaining)
            remaining -= amt
            progressive.append(replace(e, amount_off=amt))
        chosen = progressive
    elif stacking_base not in (STACK_ORIGINAL, STACK_PROGRESSIVE):
        raise DiscountRuleError(f"Unknown stacking base: {stacking_base!r}")

    total = sum((e.amount_off for e in chosen), ZERO)
    return AppliedDiscounts(
        applied=chosen,
        amount=min(total, subtotal),
        free_shipping=any(e.free_shipping for e in chosen),
    )


def format_display(discount_type, discount_value, currency_symbol: str = "$") -> str:
    kind = DiscountType(discount_type)
    if kind is DiscountType.PERCENTAGE:
        return f"{Decimal(discount_value).normalize():f}% OFF"
    if kind is DiscountType.FIXED_AMOUNT:
        return f"{currency_symbol}{Decimal(discount_value):.2f} OFF"
    return "FREE SHIPPING"
