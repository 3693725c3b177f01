from fastapi.testclient import TestClient

from conftest import set_stock, variant_id
from storefront.main import app


def test_add_item_sets_cookie_and_snapshots_price():
    client = TestClient(app)
    res = client.post("/api/cart/items", json={"variant_id": variant_id("HOOD-ZIP-XL-GRY"), "qty": 1})
    assert res.status_code == 200
    body = res.json()
    assert body["cart_uuid"]
    assert client.cookies.get("cart_uuid") == body["cart_uuid"]
    assert body["cart"]["items"][0]["unit_price"] == 65.0


def test_adding_same_variant_merges_lines():
    client = TestClient(app)
    vid = variant_id("TEE-CLASSIC-M-BLK")
    client.post("/api/cart/items", json={"variant_id": vid, "qty": 1})
    client.post("/api/cart/items", json={"variant_id": vid, "qty": 2})
    cart = client.get("/api/cart").json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 3
    assert cart["subtotal"] == 75.0


def test_cannot_add_more_than_stock():
    client = TestClient(app)
    set_stock("HOOD-ZIP-XL-GRY", 2)
    res = client.post("/api/cart/items", json={"variant_id": variant_id("HOOD-ZIP-XL-GRY"), "qty": 3})
    assert res.status_code == 400
    assert "available" in res.json()["detail"]


def test_unknown_variant_and_bad_quantity():
    client = TestClient(app)
    assert client.post("/api/cart/items", json={"variant_id": 99999, "qty": 1}).status_code == 400
    assert client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-M-BLK"), "qty": 0}).status_code == 422


def test_update_and_remove_items():
    client = TestClient(app)
    body = client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-L-BLK"), "qty": 1}).json()
    item_id = body["item_id"]
    cart = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 4}).json()
    assert cart["items"][0]["quantity"] == 4
    cart = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 0}).json()
    assert cart["items"] == []
    assert client.delete(f"/api/cart/items/{item_id}").status_code == 404


def test_clear_cart():
    client = TestClient(app)
    client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-M-BLK"), "qty": 1})
    assert client.delete("/api/cart").status_code == 200
    assert client.get("/api/cart").json()["items"] == []


def test_user_cart_is_separate_from_guest_cart():
    client = TestClient(app)
    user = {"X-User-Id": "user-42"}
    client.post("/api/cart/items", json={"variant_id": variant_id("TEE-CLASSIC-M-BLK"), "qty": 1}, headers=user)
    cart = client.get("/api/cart", headers=user).json()
    assert cart["user_id"] == "user-42"
    assert cart["cart_uuid"] is None
    assert len(cart["items"]) == 1


def test_merge_guest_cart_into_user_cart():
    client = TestClient(app)
    tee = variant_id("TEE-CLASSIC-M-BLK")
    hoodie = variant_id("HOOD-ZIP-M-GRY")
    guest = client.post("/api/cart/items", json={"variant_id": tee, "qty": 2}).json()
    client.post("/api/cart/items", json={"variant_id": hoodie, "qty": 1})

    user = {"X-User-Id": "merge-user"}
    client.post("/api/cart/items", json={"variant_id": tee, "qty": 1}, headers=user)

    res = client.post("/api/cart/merge", json={"cart_uuid": guest["cart_uuid"]}, headers=user)
    assert res.status_code == 200
    items = {it["variant_id"]: it["quantity"] for it in res.json()["items"]}
    assert items == {tee: 3, hoodie: 1}
    assert client.post("/api/cart/merge", json={"cart_uuid": "x"}).status_code == 401
