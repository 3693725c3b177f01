import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, distinct, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.db import SessionLocal
from storefront.models.discount_code import DiscountCode
from storefront.models.discount_usage import DiscountUsage
from storefront.models.order import Order, PaymentStatus
from storefront.pricing.rules import (
    AppliedDiscounts,
    ApplicableTo,
    CartLine,
    DiscountEvaluation,
    DiscountRuleError,
    DiscountType,
    UserContext,
    as_utc,
    cart_subtotal,
    combine,
    evaluate,
    format_display,
)
from storefront.pricing.totals import round2
from storefront.utils.log import get_logger

log = get_logger("discounts")

EDITABLE_FIELDS = (
    "code",
    "description",
    "discount_type",
    "discount_value",
    "minimum_purchase",
    "maximum_discount",
    "usage_limit",
    "user_usage_limit",
    "valid_from",
    "valid_until",
    "applicable_to",
    "applicable_ids",
    "stackable",
    "is_active",
    "priority",
    "first_purchase_only",
    "minimum_items",
    "auto_apply",
    "campaign_name",
    "discount_category",
)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class DiscountServiceException(Exception):
    pass


class DiscountNotFound(DiscountServiceException):
    pass


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


class DiscountService:
    def __init__(self, db: Session, stacking_base: Optional[str] = None):
        self.db = db
        self.stacking_base = stacking_base or settings.DISCOUNT_STACKING_BASE

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # --- lookups -----------------------------------------------------------

    def get(self, discount_id: int) -> DiscountCode:
        dc = self.db.query(DiscountCode).filter(DiscountCode.id == discount_id).first()
        if not dc:
            raise DiscountNotFound("Discount not found")
        return dc

    def get_by_code(self, code: str) -> Optional[DiscountCode]:
        return (
            self.db.query(DiscountCode)
            .filter(DiscountCode.code == normalize_code(code))
            .first()
        )

    def has_completed_order(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        return (
            self.db.query(Order.id)
            .filter(
                Order.user_id == user_id,
                Order.payment_status == PaymentStatus.COMPLETED.value,
            )
            .first()
            is not None
        )

    def user_context(self, user_id: Optional[str], discount_id: Optional[int] = None) -> UserContext:
        if not user_id:
            return UserContext()
        redemptions = 0
        if discount_id is not None:
            redemptions = (
                self.db.query(func.count(DiscountUsage.id))
                .filter(
                    DiscountUsage.discount_id == discount_id,
                    DiscountUsage.user_id == user_id,
                )
                .scalar()
                or 0
            )
        return UserContext(
            user_id=user_id,
            redemptions=redemptions,
            has_completed_order=self.has_completed_order(user_id),
        )

    # --- customer-facing ---------------------------------------------------

    def evaluate_code(
        self,
        code: str,
        lines: Sequence[CartLine],
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[DiscountCode], DiscountEvaluation]:
        dc = self.get_by_code(code)
        if not dc:
            return None, DiscountEvaluation(eligible=False, reason="Invalid discount code")
        result = evaluate(
            dc.to_rule(), lines, self.user_context(user_id, dc.id), now or self._now()
        )
        return dc, result

    def _describe(self, dc: DiscountCode, result: DiscountEvaluation) -> Dict:
        return {
            "isValid": result.eligible,
            "discountId": dc.id,
            "code": dc.code,
            "discountType": dc.discount_type,
            "discountValue": float(dc.discount_value),
            "maximumDiscount": (
                float(dc.maximum_discount) if dc.maximum_discount is not None else None
            ),
            "amountOff": float(round2(result.amount_off)),
            "freeShipping": result.free_shipping,
            "stackable": bool(dc.stackable),
            "message": result.reason,
            "display": format_display(dc.discount_type, dc.discount_value)
            if result.eligible
            else "",
        }

    def validate_code(
        self, code: str, lines: Sequence[CartLine], user_id: Optional[str] = None
    ) -> Dict:
        if not normalize_code(code):
            return {"isValid": False, "message": "Please enter a discount code"}
        dc, result = self.evaluate_code(code, lines, user_id)
        if not dc:
            log.info(f"Unknown discount code {normalize_code(code)!r}")
            return {"isValid": False, "message": result.reason}
        if not result.eligible:
            log.info(f"Discount {dc.code} rejected for user={user_id or 'GUEST'}: {result.reason}")
        return self._describe(dc, result)

    def resolve_codes(
        self,
        codes: Sequence[str],
        lines: Sequence[CartLine],
        user_id: Optional[str] = None,
    ) -> Tuple[AppliedDiscounts, List[Dict], List[Dict]]:
        """
        Evaluate every entered code and combine the eligible ones.

        Returns (applied, rejected, superseded). rejected lists {code, reason} for
        codes that cannot be used at all; superseded lists eligible codes that
        lost to a higher-priority, non-stackable one.
        """
        evaluations = []
        rejected = []
        superseded = []
        seen = set()
        for raw in codes:
            code = normalize_code(raw)
            if not code or code in seen:
                continue
            seen.add(code)
            dc, result = self.evaluate_code(code, lines, user_id)
            if result.eligible:
                evaluations.append(result)
            else:
                rejected.append({"code": code, "reason": result.reason})
        applied = combine(evaluations, cart_subtotal(lines), self.stacking_base)
        for e in evaluations:
            if e.rule.code not in applied.codes:
                superseded.append(
                    {"code": e.rule.code, "reason": "A higher-priority discount was applied instead"}
                )
        return applied, rejected, superseded

    def auto_apply(self, lines: Sequence[CartLine], user_id: Optional[str] = None) -> Optional[Dict]:
        candidates = (
            self.db.query(DiscountCode)
            .filter(DiscountCode.auto_apply == True, DiscountCode.is_active == True)
            .order_by(DiscountCode.priority.desc(), DiscountCode.id)
            .all()
        )
        now = self._now()
        for dc in candidates:
            result = evaluate(dc.to_rule(), lines, self.user_context(user_id, dc.id), now)
            if result.eligible:
                resp = self._describe(dc, result)
                resp["isAutoApply"] = True
                return resp
        return None

    def first_order_discount(self, user_id: Optional[str], lines: Sequence[CartLine]) -> Optional[Dict]:
        if not user_id or self.has_completed_order(user_id):
            return None
        dc = self.get_by_code(settings.FIRST_ORDER_DISCOUNT_CODE)
        if not dc or not dc.first_purchase_only:
            return None
        result = evaluate(dc.to_rule(), lines, self.user_context(user_id, dc.id), self._now())
        if not result.eligible:
            return None
        resp = self._describe(dc, result)
        resp["isFirstOrder"] = True
        return resp

    # --- redemption --------------------------------------------------------

    def claim(self, discount_id: int, user_id: Optional[str] = None) -> Optional[int]:
        """
        Take one use of the code. Returns the id of the pending usage row, or None
        when the code (or this shopper's share of it) is used up.

        Both limits are held at the data layer, on a session of its own. The global
        one is a conditional UPDATE: of two concurrent claims on the last remaining
        use, exactly one sees rowcount == 1. The per-user one is a unique
        (discount_id, user_id, slot) row with one slot per allowed use, so a second
        concurrent claim by the same shopper finds every slot taken.
        """
        with SessionLocal() as s:
            per_user = None
            if user_id:
                per_user = (
                    s.query(DiscountCode.user_usage_limit)
                    .filter(DiscountCode.id == discount_id)
                    .scalar()
                )
            usage_id = self._insert_claim_row(s, discount_id, user_id, per_user)
            if usage_id is None:
                log.info(f"claim(): user={user_id} has no uses left of discount_id={discount_id}")
                return None
            res = s.execute(
                update(DiscountCode)
                .where(
                    DiscountCode.id == discount_id,
                    DiscountCode.is_active == True,
                    or_(
                        DiscountCode.usage_limit.is_(None),
                        DiscountCode.usage_count < DiscountCode.usage_limit,
                    ),
                )
                .values(usage_count=DiscountCode.usage_count + 1)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                s.rollback()
                log.debug(f"claim(): discount_id={discount_id} usage limit reached")
                return None
            s.commit()
        log.debug(f"claim(): discount_id={discount_id} usage_id={usage_id}")
        return usage_id

    def _insert_claim_row(
        self, s: Session, discount_id: int, user_id: Optional[str], per_user: Optional[int]
    ) -> Optional[int]:
        slots = range(per_user) if user_id and per_user is not None else [None]
        for slot in slots:
            usage = DiscountUsage(discount_id=discount_id, user_id=user_id, slot=slot, pending=True)
            s.add(usage)
            try:
                s.flush()
            except IntegrityError:
                # slot already held by an earlier or concurrent redemption
                s.rollback()
                continue
            return usage.id
        return None

    def release(self, discount_id: int, usage_id: Optional[int] = None) -> bool:
        """Give back a claimed use; the pending usage row, if any, is dropped."""
        with SessionLocal() as s:
            if usage_id is not None:
                s.execute(
                    delete(DiscountUsage).where(
                        DiscountUsage.id == usage_id, DiscountUsage.pending == True
                    )
                )
            res = s.execute(
                update(DiscountCode)
                .where(DiscountCode.id == discount_id, DiscountCode.usage_count > 0)
                .values(usage_count=DiscountCode.usage_count - 1)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            released = res.rowcount == 1
        log.debug(f"release(): discount_id={discount_id} released={released}")
        return released

    def record_usage(
        self,
        discount_id: int,
        user_id: Optional[str],
        order_id: Optional[int],
        amount_saved: Decimal,
        order_total: Optional[Decimal] = None,
        usage_id: Optional[int] = None,
    ) -> DiscountUsage:
        """Finish the pending row taken by claim(), or add a new one."""
        usage = self.db.get(DiscountUsage, usage_id) if usage_id is not None else None
        if usage is None:
            usage = DiscountUsage(discount_id=discount_id, user_id=user_id)
            self.db.add(usage)
        usage.order_id = order_id
        usage.amount_saved = round2(amount_saved)
        usage.order_total = round2(order_total) if order_total is not None else None
        usage.pending = False
        usage.used_at = datetime.now(timezone.utc)
        self.db.flush()
        return usage

    # --- admin -------------------------------------------------------------

    def _apply_fields(self, dc: DiscountCode, data: Dict):
        for name in EDITABLE_FIELDS:
            if name in data:
                setattr(dc, name, data[name])
        dc.code = normalize_code(dc.code)
        if not dc.code:
            raise DiscountServiceException("Discount code is required")
        if dc.valid_from is None:
            dc.valid_from = self._now()
        if dc.applicable_to in (None, ApplicableTo.ALL.value):
            dc.applicable_to = ApplicableTo.ALL.value
            dc.applicable_ids = None
        elif not dc.applicable_ids:
            # a scoped discount without ids applies to everything
            dc.applicable_to = ApplicableTo.ALL.value
            dc.applicable_ids = None
        else:
            dc.applicable_ids = [str(i) for i in dc.applicable_ids]
        try:
            rule = dc.to_rule()
        except (DiscountRuleError, ValueError) as e:
            raise DiscountServiceException(str(e))
        if rule.valid_until is not None and as_utc(rule.valid_until) < as_utc(rule.valid_from):
            raise DiscountServiceException("valid_until must be after valid_from")
        if dc.maximum_discount is not None and rule.discount_type is not DiscountType.PERCENTAGE:
            dc.maximum_discount = None

    def check_code_availability(self, code: str, exclude_id: Optional[int] = None) -> bool:
        q = self.db.query(DiscountCode.id).filter(DiscountCode.code == normalize_code(code))
        if exclude_id is not None:
            q = q.filter(DiscountCode.id != exclude_id)
        return q.first() is None

    def create(self, data: Dict, created_by: Optional[str] = None) -> DiscountCode:
        if not self.check_code_availability(data.get("code", "")):
            raise DiscountServiceException("Discount code already exists")
        dc = DiscountCode(usage_count=0, created_by=created_by)
        self._apply_fields(dc, data)
        self.db.add(dc)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DiscountServiceException("Discount code already exists")
        self.db.refresh(dc)
        log.info(f"Created discount {dc.code} ({dc.discount_type} {dc.discount_value})")
        return dc

    def update(self, discount_id: int, data: Dict) -> DiscountCode:
        dc = self.get(discount_id)
        if "code" in data and not self.check_code_availability(data["code"], exclude_id=dc.id):
            raise DiscountServiceException("Discount code already exists")
        try:
            self._apply_fields(dc, data)
        except DiscountServiceException:
            self.db.rollback()
            raise
        self.db.commit()
        self.db.refresh(dc)
        return dc

    def delete(self, discount_id: int):
        dc = self.get(discount_id)
        self.db.delete(dc)
        self.db.commit()

    def toggle(self, discount_id: int) -> DiscountCode:
        dc = self.get(discount_id)
        dc.is_active = not dc.is_active
        self.db.commit()
        self.db.refresh(dc)
        return dc

    def list(
        self,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        campaign: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[DiscountCode]:
        q = self.db.query(DiscountCode)
        if is_active is not None:
            q = q.filter(DiscountCode.is_active == is_active)
        if category:
            q = q.filter(DiscountCode.discount_category == category)
        if campaign:
            q = q.filter(DiscountCode.campaign_name == campaign)
        if search:
            like = f"%{search}%"
            q = q.filter(DiscountCode.code.ilike(like) | DiscountCode.description.ilike(like))
        return q.order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc()).all()

    def statistics(self, discount_id: int) -> Dict:
        self.get(discount_id)
        uses, saved, users, avg_total, last_used = (
            self.db.query(
                func.count(DiscountUsage.id),
                func.coalesce(func.sum(DiscountUsage.amount_saved), 0),
                func.count(distinct(DiscountUsage.user_id)),
                func.avg(DiscountUsage.order_total),
                func.max(DiscountUsage.used_at),
            )
            .filter(DiscountUsage.discount_id == discount_id, DiscountUsage.pending == False)
            .one()
        )
        return {
            "totalUses": uses or 0,
            "totalSaved": float(round2(saved or 0)),
            "uniqueUsers": users or 0,
            "averageOrderValue": float(round2(avg_total or 0)),
            "lastUsed": last_used.isoformat() if last_used else None,
        }

    def dashboard_stats(self, now: Optional[datetime] = None) -> Dict:
        now = as_utc(now) or self._now()
        discounts = self.db.query(DiscountCode).all()
        active = [
            d
            for d in discounts
            if d.is_active
            and as_utc(d.valid_from) <= now
            and (d.valid_until is None or as_utc(d.valid_until) > now)
        ]
        expired = [d for d in discounts if d.valid_until is not None and as_utc(d.valid_until) < now]
        return {
            "total": len(discounts),
            "active": len(active),
            "expired": len(expired),
            "totalUsage": sum(d.usage_count or 0 for d in discounts),
        }

    def generate_code(self, prefix: str = "SAVE", length: int = 8) -> str:
        prefix = normalize_code(prefix)
        for _ in range(20):
            suffix = "".join(
                secrets.choice(CODE_ALPHABET) for _ in range(max(length - len(prefix), 4))
            )
            code = prefix + suffix
            if self.check_code_availability(code):
                return code
        raise DiscountServiceException("Could not generate a unique discount code")
