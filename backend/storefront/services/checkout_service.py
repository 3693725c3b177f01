from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from storefront.adapters.mock_payment import PaymentDeclined, PaymentTransientError
from storefront.config import settings
from storefront.models.cart import Cart
from storefront.models.checkout_attempt import CheckoutAttemptStatus
from storefront.models.order import OrderStatus, PaymentStatus
from storefront.pricing.rules import AppliedDiscounts, CartLine, cart_subtotal
from storefront.pricing.totals import OrderTotals, compute_totals, round2, to_cents
from storefront.repositories.checkout_attempt_repo import CheckoutAttemptRepository
from storefront.services.cart_service import CartService
from storefront.services.discount_service import DiscountService
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import InventoryConflict, OrderService
from storefront.services.tax_service import TaxService
from storefront.utils.log import get_logger

log = get_logger("checkout")

MAX_PAYMENT_RETRIES = 2

REQUIRED_CONTACT_FIELDS = ("email",)
REQUIRED_ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "address_line1",
    "city",
    "state",
    "postal_code",
    "country",
)


class CheckoutException(Exception):
    pass


class CheckoutValidationError(CheckoutException):
    """errors maps a field name to a message the form can show next to it."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("Please correct the highlighted fields")


class CheckoutInProgress(CheckoutException):
    pass


class PaymentError(CheckoutException):
    def __init__(self, message: str, payment_intent_id: Optional[str] = None):
        self.payment_intent_id = payment_intent_id
        super().__init__(message)


class OrderCreationError(CheckoutException):
    def __init__(self, payment_intent_id: Optional[str]):
        self.payment_intent_id = payment_intent_id
        super().__init__(
            "Your payment was received but we could not create your order. "
            f"Please contact support and quote payment reference {payment_intent_id}."
        )


@dataclass
class CheckoutQuote:
    totals: OrderTotals
    applied: AppliedDiscounts
    tax_rate: Decimal
    rejected: List[Dict] = field(default_factory=list)
    superseded: List[Dict] = field(default_factory=list)

    def as_dict(self) -> Dict:
        return {
            "totals": self.totals.as_dict(),
            "taxRate": float(self.tax_rate),
            "freeShipping": self.applied.free_shipping,
            "appliedDiscounts": [
                {
                    "discountId": e.rule.id,
                    "code": e.rule.code,
                    "amountOff": float(round2(e.amount_off)),
                    "freeShipping": e.free_shipping,
                }
                for e in self.applied.applied
            ],
            "rejectedCodes": self.rejected,
            "supersededCodes": self.superseded,
            "currency": settings.CURRENCY,
        }


def validate_checkout_fields(contact: Dict, shipping_address: Dict) -> Dict[str, str]:
    errors = {}
    contact = contact or {}
    shipping_address = shipping_address or {}
    for name in REQUIRED_CONTACT_FIELDS:
        if not str(contact.get(name) or "").strip():
            errors[f"contact.{name}"] = "This field is required"
    email = str(contact.get("email") or "")
    if email and "@" not in email:
        errors["contact.email"] = "Enter a valid email address"
    for name in REQUIRED_ADDRESS_FIELDS:
        if not str(shipping_address.get(name) or "").strip():
            errors[f"shipping_address.{name}"] = "This field is required"
    return errors


class CheckoutService:
    """
    Prices carts and runs the checkout: the card is charged first and the order
    row is only written once the processor reports success.
    """

    def __init__(self, db: Session, payment_client, email_client=None):
        self.db = db
        self.payment_client = payment_client
        self.carts = CartService(db)
        self.discounts = DiscountService(db)
        self.tax = TaxService(db)
        self.inventory = InventoryService(db)
        self.orders = OrderService(db, email_client=email_client)
        self.attempts = CheckoutAttemptRepository(db)

    def quote(
        self,
        lines: Sequence[CartLine],
        codes: Sequence[str] = (),
        country: Optional[str] = None,
        state: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> CheckoutQuote:
        applied, rejected, superseded = self.discounts.resolve_codes(codes, lines, user_id)
        rate = self.tax.resolve(country, state)
        totals = compute_totals(
            cart_subtotal(lines),
            applied,
            rate,
            settings.FREE_SHIPPING_THRESHOLD,
            settings.FLAT_SHIPPING_FEE,
            settings.TAX_ON_DISCOUNTED_SUBTOTAL,
        )
        return CheckoutQuote(
            totals=totals, applied=applied, tax_rate=rate, rejected=rejected, superseded=superseded
        )

    def _replay(self, attempt) -> Dict:
        """Answer a repeated idempotency key from what the first call recorded."""
        status = attempt.status
        if status == CheckoutAttemptStatus.ORDER_CREATED and attempt.response_body:
            log.info(f"Replaying checkout response for key={attempt.key!r}")
            return attempt.response_body
        if status == CheckoutAttemptStatus.PAYMENT_FAILED:
            raise PaymentError(attempt.last_error or "Payment failed", attempt.payment_intent_id)
        if status in (CheckoutAttemptStatus.RECONCILIATION_NEEDED, CheckoutAttemptStatus.RESOLVED):
            raise OrderCreationError(attempt.payment_intent_id)
        raise CheckoutInProgress("This checkout is already being processed")

    def _charge(self, amount_cents: int, key: str, payment_method: Dict, user_id: Optional[str]) -> str:
        """
        Create and confirm the payment intent. Returns its id once the processor
        reports success; any failure is raised as PaymentError carrying the intent
        id when one was created.
        """
        try:
            intent = self.payment_client.create_intent(
                amount_cents,
                settings.CURRENCY,
                metadata={"checkout_key": key, "user_id": user_id or "guest"},
            )
        except (PaymentDeclined, PaymentTransientError) as e:
            raise PaymentError(str(e)) from e
        intent_id = intent["payment_intent_id"]
        attempt = 0
        while True:
            try:
                result = self.payment_client.confirm(intent["client_secret"], payment_method)
                break
            except PaymentTransientError as e:
                attempt += 1
                if attempt > MAX_PAYMENT_RETRIES:
                    raise PaymentError(str(e), intent_id) from e
                log.warning(f"Transient payment error for {intent_id}, retry {attempt}")
            except PaymentDeclined as e:
                raise PaymentError(str(e), intent_id) from e
        if result.get("status") != "succeeded":
            raise PaymentError(
                f"Payment was not completed (status: {result.get('status')})", intent_id
            )
        return result.get("payment_intent_id") or intent_id

    def checkout(
        self,
        cart: Cart,
        contact: Dict,
        shipping_address: Dict,
        billing_address: Optional[Dict] = None,
        codes: Sequence[str] = (),
        payment_method: Optional[Dict] = None,
        user_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict:
        """
        Returns {"orderId", "orderNumber", "lookupCode", "paymentIntentId", "status", "totals", "discountCodes"}.

        Raises:
            CheckoutValidationError: bad contact / address, empty cart, code no longer redeemable.
            InventoryConflict: stock ran out (before payment, or after it, in which
                case the attempt is left for an operator).
            PaymentError: declined; no order exists.
            OrderCreationError: payment taken but the order could not be written.
            CheckoutInProgress: the same idempotency key is being processed.
        """
        if idempotency_key:
            existing = self.attempts.get(idempotency_key)
            if existing:
                return self._replay(existing)
        key = idempotency_key or uuid4().hex

        errors = validate_checkout_fields(contact, shipping_address)
        lines = self.carts.lines(cart)
        if not lines:
            errors["cart"] = "Your cart is empty"
        if errors:
            raise CheckoutValidationError(errors)

        items = [
            {"variant_id": int(l.variant_id), "quantity": l.quantity, "unit_price": l.unit_price}
            for l in lines
        ]
        issues = self.inventory.check_lines(items)
        if issues:
            raise InventoryConflict(issues)

        quote = self.quote(
            lines, codes, shipping_address.get("country"), shipping_address.get("state"), user_id
        )
        # a code that cannot be used fails the checkout; a superseded one just does not apply
        if quote.rejected:
            raise CheckoutValidationError(
                {"discount": "; ".join(f"{r['code']}: {r['reason']}" for r in quote.rejected)}
            )
        amount_cents = to_cents(quote.totals.total_amount)
        email = contact["email"].strip()

        attempt, created = self.attempts.begin(
            key,
            user_id=user_id,
            email=email,
            amount_cents=amount_cents,
            currency=settings.CURRENCY,
            data={"codes": quote.applied.codes},
        )
        if not created:
            return self._replay(attempt)

        claimed = {}
        for e in quote.applied.applied:
            usage_id = self.discounts.claim(e.rule.id, user_id)
            if usage_id is None:
                self._release(claimed)
                reason = f"Discount code {e.rule.code} usage limit reached"
                self.attempts.mark(key, CheckoutAttemptStatus.PAYMENT_FAILED, last_error=reason)
                raise CheckoutValidationError({"discount": reason})
            claimed[e.rule.id] = usage_id

        try:
            payment_intent_id = self._charge(amount_cents, key, payment_method or {}, user_id)
        except PaymentError as e:
            self._release(claimed)
            self.attempts.mark(
                key,
                CheckoutAttemptStatus.PAYMENT_FAILED,
                payment_intent_id=e.payment_intent_id,
                last_error=str(e)[:1024],
            )
            log.warning(f"Payment failed for checkout key={key!r}: {e}")
            raise

        # from here on money has moved; failures go to an operator, never a retry
        self.attempts.mark(
            key, CheckoutAttemptStatus.PAYMENT_CONFIRMED, payment_intent_id=payment_intent_id
        )
        rounded = quote.totals.rounded()
        order_data = {
            "items": items,
            "totals": rounded,
            "user_id": user_id,
            "guest_email": email,
            "shipping_address": {**shipping_address, "email": email, "phone": contact.get("phone")},
            "billing_address": billing_address or shipping_address,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_intent_id": payment_intent_id,
            "payment_method": "card",
            "currency": settings.CURRENCY,
            "discount_codes": quote.applied.codes,
        }
        try:
            created_order = self.orders.create_order(order_data)
        except InventoryConflict as e:
            self.db.rollback()
            self._release(claimed)
            self._needs_reconciliation(key, payment_intent_id, "Inventory conflict after payment", e.details)
            raise InventoryConflict(e.details, payment_intent_id=payment_intent_id)
        except Exception as e:
            self.db.rollback()
            self._needs_reconciliation(key, payment_intent_id, f"Order creation failed: {e}")
            log.exception(f"Order creation failed after payment {payment_intent_id}")
            raise OrderCreationError(payment_intent_id)

        order_id = created_order["orderId"]
        for e in quote.applied.applied:
            self.discounts.record_usage(
                e.rule.id,
                user_id,
                order_id,
                e.amount_off,
                rounded["total_amount"],
                usage_id=claimed.get(e.rule.id),
            )
        self.db.commit()

        status = OrderStatus.PENDING.value
        try:
            status = self.orders.update_status(
                order_id,
                OrderStatus.CONFIRMED.value,
                PaymentStatus.COMPLETED.value,
                payment_intent_id=payment_intent_id,
            )["status"]
        except Exception:
            self.db.rollback()
            log.exception(f"Order {created_order['orderNumber']} created but could not be confirmed")

        self.carts.clear(cart)
        response = {
            "orderId": order_id,
            "orderNumber": created_order["orderNumber"],
            "lookupCode": created_order["lookupCode"],
            "paymentIntentId": payment_intent_id,
            "status": status,
            "totals": quote.totals.as_dict(),
            "discountCodes": quote.applied.codes,
        }
        self.attempts.mark_completed(key, response)
        log.info(f"Checkout key={key!r} completed as order {created_order['orderNumber']}")
        return response

    def _release(self, claimed: Dict[int, int]):
        for discount_id, usage_id in claimed.items():
            self.discounts.release(discount_id, usage_id)

    def _needs_reconciliation(self, key: str, payment_intent_id: str, reason: str, details=None):
        fields = {"last_error": reason[:1024]}
        if details:
            fields["data"] = {"codes": self.attempts.get(key).data.get("codes", []), "details": details}
        self.attempts.mark(key, CheckoutAttemptStatus.RECONCILIATION_NEEDED, **fields)
        log.error(
            f"RECONCILIATION NEEDED: payment {payment_intent_id} captured for checkout "
            f"key={key!r} but no order was created ({reason})"
        )
