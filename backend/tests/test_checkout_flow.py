from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN, SHIPPING, set_stock, stock_of, variant_id
from storefront.adapters.mock_email import MockEmailAdapter
from storefront.adapters.mock_payment import MockPaymentAdapter
from storefront.api.deps import get_email_client, get_payment_client
from storefront.db import SessionLocal
from storefront.main import app
from storefront.models.checkout_attempt import CheckoutAttempt, CheckoutAttemptStatus
from storefront.models.discount_code import DiscountCode
from storefront.models.discount_usage import DiscountUsage
from storefront.models.order import Order
from storefront.services.discount_service import DiscountService
from storefront.services.order_service import OrderService


class StockThief(MockPaymentAdapter):
    """Another shopper buys the last units while the card is being confirmed."""

    def __init__(self, sku):
        super().__init__(delay_ms=0)
        self.sku = sku

    def confirm(self, client_secret, payment_method):
        set_stock(self.sku, 0)
        return super().confirm(client_secret, payment_method)


@pytest.fixture(autouse=True)
def restore_overrides():
    yield
    app.dependency_overrides.clear()


def body(email="ada@example.com", codes=(), payment_method=None, **shipping):
    return {
        "contact": {"email": email, "first_name": "Ada", "last_name": "Lovelace"},
        "shipping_address": {**SHIPPING, **shipping},
        "discount_codes": list(codes),
        "payment_method": payment_method or {"token": "tok_visa"},
    }


def shopper(*items):
    client = TestClient(app)
    for sku, qty in items:
        r = client.post("/api/cart/items", json={"variant_id": variant_id(sku), "qty": qty})
        assert r.status_code == 200, r.text
    return client


def attempt(key):
    s = SessionLocal()
    try:
        return s.query(CheckoutAttempt).filter(CheckoutAttempt.key == key).one()
    finally:
        s.close()


def count_orders(email):
    s = SessionLocal()
    try:
        return s.query(Order).filter(Order.guest_email == email).count()
    finally:
        s.close()


def test_quote_prices_the_cart():
    client = shopper(("HOOD-ZIP-M-GRY", 1), ("TEE-CLASSIC-M-BLK", 1))
    r = client.post("/api/checkout/quote", json={"country": "CA", "state": "ON"})
    assert r.status_code == 200
    totals = r.json()["totals"]
    assert totals == {
        "subtotal": 85.0,
        "discount_amount": 0.0,
        "shipping_amount": 0.0,
        "tax_amount": 11.05,
        "total_amount": 96.05,
    }


def test_quote_reports_rejected_codes():
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = client.post("/api/checkout/quote", json={"discount_codes": ["NOSUCH"]})
    assert r.json()["rejectedCodes"] == [{"code": "NOSUCH", "reason": "Invalid discount code"}]
    assert r.json()["totals"]["shipping_amount"] == 9.99


def test_guest_checkout_creates_confirmed_order():
    before = stock_of("HOOD-ZIP-M-GRY")
    client = shopper(("HOOD-ZIP-M-GRY", 1), ("TEE-CLASSIC-M-BLK", 1))
    r = client.post("/api/checkout", json=body("guest@example.com"), headers={"Idempotency-Key": "ok-1"})
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["orderNumber"].startswith("ORD-")
    assert len(out["lookupCode"]) == 6
    assert out["status"] == "confirmed"
    assert out["paymentIntentId"].startswith("pi_mock_")
    assert out["totals"]["total_amount"] == 96.05

    assert stock_of("HOOD-ZIP-M-GRY") == before - 1
    assert client.get("/api/cart").json()["items"] == []
    assert attempt("ok-1").status == CheckoutAttemptStatus.ORDER_CREATED

    sent = app.state.email_client.sent[-1]
    assert sent["to"] == "guest@example.com"
    assert sent["data"]["orderNumber"] == out["orderNumber"]

    tracked = client.get(f"/api/orders/track/{out['orderNumber']}", params={"lookupCode": out["lookupCode"]})
    assert tracked.status_code == 200
    assert tracked.json()["status"] == "confirmed"
    assert tracked.json()["payment_status"] == "completed"
    assert client.get(f"/api/orders/track/{out['orderNumber']}", params={"lookupCode": "WRONG1"}).status_code == 401


def test_repeated_idempotency_key_returns_same_order():
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    first = client.post("/api/checkout", json=body("idem@example.com"), headers={"Idempotency-Key": "idem-1"})
    assert first.status_code == 200
    second = client.post("/api/checkout", json=body("idem@example.com"), headers={"Idempotency-Key": "idem-1"})
    assert second.status_code == 200
    assert second.json()["orderId"] == first.json()["orderId"]
    assert count_orders("idem@example.com") == 1


def test_declined_card_creates_no_order_and_releases_discount():
    s = SessionLocal()
    try:
        did = DiscountService(s).create(
            {"code": "ONEUSE", "discount_type": "percentage", "discount_value": Decimal("10"), "usage_limit": 1}
        ).id
    finally:
        s.close()

    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = client.post(
        "/api/checkout",
        json=body("declined@example.com", codes=["oneuse"], payment_method={"force_decline": True}),
        headers={"Idempotency-Key": "decline-1"},
    )
    assert r.status_code == 402
    assert "declined" in r.json()["detail"]["message"]
    intent_id = r.json()["detail"]["paymentIntentId"]
    assert intent_id.startswith("pi_mock_")
    assert count_orders("declined@example.com") == 0
    assert attempt("decline-1").status == CheckoutAttemptStatus.PAYMENT_FAILED
    assert attempt("decline-1").payment_intent_id == intent_id

    s = SessionLocal()
    try:
        assert s.get(DiscountCode, did).usage_count == 0
    finally:
        s.close()
    # the cart is kept so the shopper can try another card
    assert len(client.get("/api/cart").json()["items"]) == 1


def test_discount_is_counted_once_per_successful_order():
    s = SessionLocal()
    try:
        did = DiscountService(s).create(
            {"code": "SINGLE", "discount_type": "fixed_amount", "discount_value": Decimal("5"), "usage_limit": 1}
        ).id
    finally:
        s.close()

    first = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = first.post("/api/checkout", json=body("first@example.com", codes=["SINGLE"]))
    assert r.status_code == 200, r.text
    assert r.json()["discountCodes"] == ["SINGLE"]
    assert r.json()["totals"]["discount_amount"] == 5.0

    second = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = second.post("/api/checkout", json=body("second@example.com", codes=["SINGLE"]))
    assert r.status_code == 422
    assert "usage limit reached" in r.json()["detail"]["errors"]["discount"]

    s = SessionLocal()
    try:
        assert s.get(DiscountCode, did).usage_count == 1
        usages = s.query(DiscountUsage).filter(DiscountUsage.discount_id == did).all()
        assert len(usages) == 1
        assert usages[0].amount_saved == Decimal("5.00")
    finally:
        s.close()


def test_invalid_contact_and_address_are_reported_together():
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    payload = body("not-an-email", city="", postal_code="")
    r = client.post("/api/checkout", json=payload)
    assert r.status_code == 422
    errors = r.json()["detail"]["errors"]
    assert set(errors) == {"contact.email", "shipping_address.city", "shipping_address.postal_code"}


def test_empty_cart_rejected():
    client = TestClient(app)
    r = client.post("/api/checkout", json=body())
    assert r.status_code == 422
    assert "cart" in r.json()["detail"]["errors"]


def test_out_of_stock_before_payment_charges_nothing():
    set_stock("HOOD-ZIP-XL-GRY", 2)
    client = shopper(("HOOD-ZIP-XL-GRY", 1))
    set_stock("HOOD-ZIP-XL-GRY", 0)
    r = client.post("/api/checkout", json=body("early@example.com"), headers={"Idempotency-Key": "early-1"})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["paymentIntentId"] is None
    assert detail["items"][0]["available"] == 0
    s = SessionLocal()
    try:
        assert s.query(CheckoutAttempt).filter(CheckoutAttempt.key == "early-1").first() is None
    finally:
        s.close()


def test_stock_gone_after_payment_needs_reconciliation():
    set_stock("HOOD-ZIP-XL-GRY", 2)
    client = shopper(("HOOD-ZIP-XL-GRY", 1))
    app.dependency_overrides[get_payment_client] = lambda: StockThief("HOOD-ZIP-XL-GRY")

    r = client.post("/api/checkout", json=body("late@example.com"), headers={"Idempotency-Key": "late-1"})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["paymentIntentId"].startswith("pi_mock_")
    assert detail["items"][0]["message"] == "Out of stock"
    assert count_orders("late@example.com") == 0

    rec = attempt("late-1")
    assert rec.status == CheckoutAttemptStatus.RECONCILIATION_NEEDED
    assert rec.payment_intent_id == detail["paymentIntentId"]

    pending = TestClient(app).get("/api/admin/reconciliation", headers=ADMIN).json()
    assert "late-1" in [a["key"] for a in pending]

    # retrying the same key must not charge again
    again = client.post("/api/checkout", json=body("late@example.com"), headers={"Idempotency-Key": "late-1"})
    assert again.status_code == 500
    assert detail["paymentIntentId"] in again.json()["detail"]["message"]


def test_order_write_failure_references_payment(monkeypatch):
    def boom(self, order_data):
        raise RuntimeError("database went away")

    monkeypatch.setattr(OrderService, "create_order", boom)
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = client.post("/api/checkout", json=body("boom@example.com"), headers={"Idempotency-Key": "boom-1"})
    assert r.status_code == 500
    detail = r.json()["detail"]
    assert detail["paymentIntentId"] in detail["message"]
    assert attempt("boom-1").status == CheckoutAttemptStatus.RECONCILIATION_NEEDED


def test_email_failure_does_not_fail_checkout():
    app.dependency_overrides[get_email_client] = lambda: MockEmailAdapter(fail=True)
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = client.post("/api/checkout", json=body("noemail@example.com"))
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"


def test_signed_in_user_order_is_tracked_by_user():
    client = TestClient(app)
    user = {"X-User-Id": "buyer-1"}
    client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-M-BLK"), "qty": 1}, headers=user)
    r = client.post("/api/checkout", json=body("buyer@example.com"), headers=user)
    assert r.status_code == 200
    out = r.json()
    assert out["lookupCode"] is None
    number = out["orderNumber"]
    assert client.get(f"/api/orders/track/{number}", headers=user).status_code == 200
    assert client.get(f"/api/orders/track/{number}", headers={"X-User-Id": "someone-else"}).status_code == 401
    assert app.state.email_client.sent[-1]["to"] == "buyer@example.com"


def test_gateway_that_stays_down_fails_with_the_intent_id():
    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    r = client.post(
        "/api/checkout",
        json=body("flaky@example.com", payment_method={"force_transient": True}),
        headers={"Idempotency-Key": "flaky-1"},
    )
    assert r.status_code == 402
    detail = r.json()["detail"]
    assert detail["paymentIntentId"].startswith("pi_mock_")
    assert count_orders("flaky@example.com") == 0
    rec = attempt("flaky-1")
    assert rec.status == CheckoutAttemptStatus.PAYMENT_FAILED
    assert rec.payment_intent_id == detail["paymentIntentId"]


def test_two_non_stackable_codes_apply_the_higher_priority_one():
    s = SessionLocal()
    try:
        svc = DiscountService(s)
        low = svc.create(
            {"code": "LOWP", "discount_type": "percentage", "discount_value": Decimal("10"), "priority": 10}
        ).id
        high = svc.create(
            {"code": "HIGHP", "discount_type": "percentage", "discount_value": Decimal("20"), "priority": 90}
        ).id
    finally:
        s.close()

    client = shopper(("TEE-CLASSIC-M-BLK", 1))
    quote = client.post(
        "/api/checkout/quote",
        json={"discount_codes": ["LOWP", "HIGHP"], "country": "CA", "state": "ON"},
    ).json()
    assert [d["code"] for d in quote["appliedDiscounts"]] == ["HIGHP"]
    assert quote["rejectedCodes"] == []
    assert [c["code"] for c in quote["supersededCodes"]] == ["LOWP"]

    r = client.post("/api/checkout", json=body("priority@example.com", codes=["LOWP", "HIGHP"]))
    assert r.status_code == 200, r.text
    assert r.json()["discountCodes"] == ["HIGHP"]
    assert r.json()["totals"] == quote["totals"]

    s = SessionLocal()
    try:
        assert s.get(DiscountCode, low).usage_count == 0
        assert s.get(DiscountCode, high).usage_count == 1
    finally:
        s.close()


def test_signed_in_user_cannot_reuse_a_once_per_user_code():
    s = SessionLocal()
    try:
        DiscountService(s).create(
            {"code": "JUSTONCE", "discount_type": "fixed_amount", "discount_value": Decimal("5"), "user_usage_limit": 1}
        )
    finally:
        s.close()

    client = TestClient(app)
    user = {"X-User-Id": "repeat-buyer"}
    for expected in (200, 422):
        r = client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-M-BLK"), "qty": 1}, headers=user)
        assert r.status_code == 200
        r = client.post("/api/checkout", json=body("repeat@example.com", codes=["JUSTONCE"]), headers=user)
        assert r.status_code == expected, r.text
