import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN, variant_id
from storefront.db import SessionLocal
from storefront.main import app
from storefront.models.discount_code import DiscountCode
from storefront.pricing.rules import CartLine
from storefront.services.discount_service import DiscountService, DiscountServiceException


def make_discount(**fields):
    data = {"code": "SAVE20", "discount_type": "percentage", "discount_value": Decimal("20")}
    data.update(fields)
    s = SessionLocal()
    try:
        return DiscountService(s).create(data).id
    finally:
        s.close()


def cart_lines(price="80.00", qty=1):
    return [CartLine(product_id="1", variant_id="1", quantity=qty, unit_price=Decimal(price), category_id="1")]


def test_code_lookup_is_case_insensitive(db):
    make_discount(code="  summer10 ", discount_value=Decimal("10"))
    res = DiscountService(db).validate_code("Summer10", cart_lines())
    assert res["isValid"] is True
    assert res["code"] == "SUMMER10"
    assert res["amountOff"] == 8.0
    assert res["display"] == "10% OFF"


def test_unknown_and_empty_codes(db):
    svc = DiscountService(db)
    assert svc.validate_code("", cart_lines()) == {"isValid": False, "message": "Please enter a discount code"}
    assert svc.validate_code("NOPE", cart_lines())["message"] == "Invalid discount code"


def test_duplicate_code_rejected():
    make_discount(code="ONCE")
    with pytest.raises(DiscountServiceException):
        make_discount(code="once")


def test_scoped_discount_without_ids_falls_back_to_all(db):
    did = make_discount(code="CATLESS", applicable_to="category", applicable_ids=[])
    dc = db.get(DiscountCode, did)
    assert dc.applicable_to == "all"
    assert dc.applicable_ids is None


def test_percentage_over_100_rejected():
    with pytest.raises(DiscountServiceException):
        make_discount(code="TOOMUCH", discount_value=Decimal("150"))


def test_concurrent_claims_on_last_use_yield_one_success():
    did = make_discount(code="LASTONE", usage_limit=1)
    barrier = threading.Barrier(2)
    results = []

    def redeem():
        s = SessionLocal()
        try:
            barrier.wait()
            results.append(DiscountService(s).claim(did))
        finally:
            s.close()

    threads = [threading.Thread(target=redeem) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r is not None for r in results) == [False, True]
    s = SessionLocal()
    try:
        assert s.get(DiscountCode, did).usage_count == 1
    finally:
        s.close()


def test_release_gives_the_use_back(db):
    did = make_discount(code="GIVEBACK", usage_limit=1)
    svc = DiscountService(db)
    assert svc.claim(did)
    assert not svc.claim(did)
    assert svc.release(did)
    assert svc.claim(did)


def test_same_user_racing_on_a_once_per_user_code_gets_one_claim(db):
    did = make_discount(code="ONCEEACH", user_usage_limit=1)
    barrier = threading.Barrier(2)
    results = []

    def redeem():
        s = SessionLocal()
        try:
            barrier.wait()
            results.append(DiscountService(s).claim(did, "racer"))
        finally:
            s.close()

    threads = [threading.Thread(target=redeem) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r is not None for r in results) == [False, True]
    # another shopper still has their own use
    assert DiscountService(db).claim(did, "someone-else") is not None
    s = SessionLocal()
    try:
        assert s.get(DiscountCode, did).usage_count == 2
    finally:
        s.close()


def test_released_claim_frees_the_users_slot(db):
    did = make_discount(code="SLOTBACK", user_usage_limit=1)
    svc = DiscountService(db)
    usage_id = svc.claim(did, "u-slot")
    assert usage_id is not None
    assert svc.claim(did, "u-slot") is None
    assert svc.release(did, usage_id)
    assert svc.claim(did, "u-slot") is not None


def test_completed_claim_counts_toward_user_limit_and_statistics(db):
    did = make_discount(code="FINISHED", user_usage_limit=2)
    svc = DiscountService(db)
    first = svc.claim(did, "u-done")
    svc.claim(did, "u-done")
    assert svc.claim(did, "u-done") is None

    svc.record_usage(did, "u-done", None, Decimal("8.00"), Decimal("72.00"), usage_id=first)
    db.commit()
    # the second claim is still in flight, so it is not reported as a use yet
    assert svc.statistics(did)["totalUses"] == 1
    assert svc.validate_code("FINISHED", cart_lines(), user_id="u-done")["isValid"] is False


def test_user_usage_limit_counts_recorded_usage(db):
    did = make_discount(code="PERUSER", user_usage_limit=1)
    svc = DiscountService(db)
    assert svc.validate_code("PERUSER", cart_lines(), user_id="u-1")["isValid"]
    svc.record_usage(did, "u-1", None, Decimal("16"), Decimal("76"))
    db.commit()
    res = svc.validate_code("PERUSER", cart_lines(), user_id="u-1")
    assert res["isValid"] is False
    assert res["message"] == "You have already used this discount code"
    assert svc.validate_code("PERUSER", cart_lines(), user_id="u-2")["isValid"]


def test_auto_apply_picks_highest_priority(db):
    make_discount(code="AUTO5", discount_value=Decimal("5"), auto_apply=True, priority=10)
    make_discount(code="AUTO15", discount_value=Decimal("15"), auto_apply=True, priority=60)
    make_discount(code="AUTOBIG", discount_value=Decimal("30"), auto_apply=True, priority=90, minimum_purchase=Decimal("500"))
    res = DiscountService(db).auto_apply(cart_lines())
    assert res["code"] == "AUTO15"
    assert res["isAutoApply"] is True


def test_first_order_discount_only_for_new_users(db):
    make_discount(code="WELCOME30", discount_value=Decimal("30"), first_purchase_only=True)
    svc = DiscountService(db)
    assert svc.first_order_discount(None, cart_lines()) is None
    res = svc.first_order_discount("new-user", cart_lines())
    assert res["code"] == "WELCOME30"
    assert res["isFirstOrder"] is True


def test_statistics_and_dashboard(db):
    did = make_discount(
        code="STATS",
        valid_from=datetime.now(timezone.utc) - timedelta(days=2),
    )
    make_discount(
        code="OLD",
        valid_from=datetime.now(timezone.utc) - timedelta(days=10),
        valid_until=datetime.now(timezone.utc) - timedelta(days=1),
    )
    svc = DiscountService(db)
    svc.record_usage(did, "a", None, Decimal("10.00"), Decimal("50.00"))
    svc.record_usage(did, "b", None, Decimal("20.00"), Decimal("100.00"))
    svc.record_usage(did, "a", None, Decimal("5.00"), Decimal("30.00"))
    db.commit()

    stats = svc.statistics(did)
    assert stats["totalUses"] == 3
    assert stats["totalSaved"] == 35.0
    assert stats["uniqueUsers"] == 2
    assert stats["averageOrderValue"] == 60.0
    assert stats["lastUsed"] is not None

    dash = svc.dashboard_stats()
    assert dash["expired"] >= 1
    assert dash["total"] >= dash["active"] + dash["expired"]


def test_generate_code_is_unused(db):
    code = DiscountService(db).generate_code("VIP", 10)
    assert code.startswith("VIP")
    assert len(code) == 10
    assert DiscountService(db).check_code_availability(code)


def test_validate_endpoint_uses_current_cart():
    make_discount(code="CARTTEN", discount_value=Decimal("10"))
    client = TestClient(app)
    r = client.post("/api/cart/items", json={"variant_id": variant_id("HOOD-ZIP-M-GRY"), "qty": 1})
    assert r.status_code == 200
    r = client.post("/api/discounts/validate", json={"code": "cartten"})
    assert r.status_code == 200
    body = r.json()
    assert body["isValid"] is True
    assert body["amountOff"] == 6.0


def test_first_order_endpoint_requires_user():
    client = TestClient(app)
    assert client.get("/api/discounts/first-order").status_code == 401
    r = client.get("/api/discounts/first-order", headers={"X-User-Id": "brand-new"})
    assert r.status_code == 200
    assert r.json()["discount"]["code"] == "WELCOME30"


def test_admin_discount_crud():
    client = TestClient(app)
    assert client.get("/api/admin/discounts").status_code == 401

    r = client.post(
        "/api/admin/discounts",
        json={"code": "admin5", "discount_type": "fixed_amount", "discount_value": 5, "usage_limit": 10},
        headers=ADMIN,
    )
    assert r.status_code == 201, r.text
    created = r.json()
    assert created["code"] == "ADMIN5"
    did = created["id"]

    r = client.post(
        "/api/admin/discounts",
        json={"code": "ADMIN5", "discount_type": "percentage", "discount_value": 5},
        headers=ADMIN,
    )
    assert r.status_code == 400

    r = client.patch(f"/api/admin/discounts/{did}", json={"discount_value": 7.5}, headers=ADMIN)
    assert r.status_code == 200
    assert Decimal(r.json()["discount_value"]) == Decimal("7.50")

    r = client.post(f"/api/admin/discounts/{did}/toggle", headers=ADMIN)
    assert r.json()["is_active"] is False

    listed = client.get("/api/admin/discounts", params={"is_active": False}, headers=ADMIN).json()
    assert "ADMIN5" in [d["code"] for d in listed]

    stats = client.get(f"/api/admin/discounts/{did}/statistics", headers=ADMIN).json()
    assert stats["totalUses"] == 0

    assert client.get("/api/admin/discounts/stats", headers=ADMIN).status_code == 200
    gen = client.get("/api/admin/discounts/generate-code", params={"prefix": "fall"}, headers=ADMIN)
    assert gen.json()["code"].startswith("FALL")

    assert client.delete(f"/api/admin/discounts/{did}", headers=ADMIN).status_code == 200
    assert client.get(f"/api/admin/discounts/{did}", headers=ADMIN).status_code == 404
