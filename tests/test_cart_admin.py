import storage
from roles import Role

from conftest import make_product, make_shop, make_user


def test_cart_add_merge_remove(client, as_user):
    pot = make_product(make_shop(make_user("owner")))
    _, headers = as_user("buyer")
    client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 1}, headers=headers)
    res = client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 2}, headers=headers)
    assert res.json()["items"] == [{"product_id": pot["id"], "quantity": 3}]

    res = client.delete(f"/api/cart/items/{pot['id']}", headers=headers)
    assert res.json()["items"] == []
    assert client.post("/api/cart/items", json={"product_id": "nope", "quantity": 1}, headers=headers).status_code == 404


def test_checkout_creates_one_order_per_shop(client, as_user):
    pot = make_product(make_shop(make_user("owner-a"), "A"), "Pot", price=10.0, quantity=5)
    cup = make_product(make_shop(make_user("owner-b"), "B"), "Cup", price=2.5, quantity=5)
    _, headers = as_user("buyer")
    client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 2}, headers=headers)
    client.post("/api/cart/items", json={"product_id": cup["id"], "quantity": 4}, headers=headers)

    res = client.post("/api/orders", headers=headers)
    assert res.status_code == 201
    assert sorted(o["total"] for o in res.json()) == [10.0, 20.0]
    assert storage.get_product(pot["id"])["quantity"] == 3
    assert storage.get_product(cup["id"])["quantity"] == 1
    assert client.get("/api/cart", headers=headers).json()["items"] == []
    assert len(client.get("/api/orders/mine", headers=headers).json()) == 2


def test_checkout_is_all_or_nothing(client, as_user):
    pot = make_product(make_shop(make_user("owner-a"), "A"), "Pot", quantity=5)
    cup = make_product(make_shop(make_user("owner-b"), "B"), "Cup", quantity=1)
    _, headers = as_user("buyer")
    client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 2}, headers=headers)
    client.post("/api/cart/items", json={"product_id": cup["id"], "quantity": 3}, headers=headers)

    assert client.post("/api/orders", headers=headers).status_code == 409
    assert storage.get_product(pot["id"])["quantity"] == 5
    assert storage.get_product(cup["id"])["quantity"] == 1
    assert len(client.get("/api/cart", headers=headers).json()["items"]) == 2


def test_empty_cart_checkout(client, as_user):
    _, headers = as_user("buyer")
    assert client.post("/api/orders", headers=headers).status_code == 400


def test_order_status_flow(client, as_user):
    owner, owner_headers = as_user("owner")
    shop = make_shop(owner)
    pot = make_product(shop, quantity=2)
    _, buyer = as_user("buyer")
    client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 1}, headers=buyer)
    order = client.post("/api/orders", headers=buyer).json()[0]

    assert client.patch(f"/api/orders/{order['id']}/status", json={"status": "PAID"}, headers=buyer).status_code == 403
    for status in ("PAID", "SHIPPED", "COMPLETED"):
        res = client.patch(f"/api/orders/{order['id']}/status", json={"status": status}, headers=owner_headers)
        assert res.status_code == 200
        assert res.json()["status"] == status
    assert storage.get_shop(shop["id"])["transactions_count"] == 1
    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELLED"}, headers=owner_headers)
    assert res.status_code == 409
    assert len(client.get(f"/api/shops/{shop['id']}/orders", headers=owner_headers).json()) == 1


def test_buyer_cancel_restocks(client, as_user):
    pot = make_product(make_shop(make_user("owner")), quantity=2)
    _, buyer = as_user("buyer")
    client.post("/api/cart/items", json={"product_id": pot["id"], "quantity": 2}, headers=buyer)
    order = client.post("/api/orders", headers=buyer).json()[0]
    assert storage.get_product(pot["id"])["quantity"] == 0
    res = client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELLED"}, headers=buyer)
    assert res.json()["status"] == "CANCELLED"
    assert storage.get_product(pot["id"])["quantity"] == 2


# Admin console

def test_banned_names_crud(client, as_user):
    _, admin = as_user("boss", Role.ADMIN)
    _, user = as_user("alice")
    assert client.post("/api/banned-names", json={"name": "scam"}, headers=user).status_code == 403

    res = client.post("/api/banned-names", json={"name": "scam"}, headers=admin)
    assert res.status_code == 201
    assert client.post("/api/banned-names", json={"name": "SCAM"}, headers=admin).status_code == 409

    res = client.patch("/api/user/profile", json={"display_name": "Scammer"}, headers=user)
    assert res.status_code == 400

    banned_id = client.get("/api/banned-names", headers=admin).json()[0]["id"]
    assert client.delete(f"/api/banned-names/{banned_id}", headers=admin).status_code == 200
    assert client.delete(f"/api/banned-names/{banned_id}", headers=admin).status_code == 404


def test_settings(client, as_user):
    _, admin = as_user("boss", Role.ADMIN)
    _, user = as_user("alice")
    assert client.get("/api/settings").json()["site_name"] == "Marketplace"
    assert client.patch("/api/settings", json={"about_us": "Hi"}, headers=user).status_code == 403

    res = client.patch("/api/settings", json={"about_us": "We sell tea", "commission_rate": 5}, headers=admin)
    assert res.status_code == 200
    assert res.json()["commission_rate"] == 5
    assert client.get("/api/settings/public").json()["about_us"] == "We sell tea"

    assert client.patch("/api/settings", json={"commission_rate": 150}, headers=admin).status_code == 422
    assert client.patch("/api/settings", json={"colour": "red"}, headers=admin).status_code == 400


def test_product_limit_per_shop(client, as_user):
    _, admin = as_user("boss", Role.ADMIN)
    client.patch("/api/settings", json={"max_products_per_shop": 1}, headers=admin)
    owner, headers = as_user("owner")
    shop = make_shop(owner)
    body = {"shop_id": shop["id"], "name": "Pot", "price": 1}
    assert client.post("/api/products", json=body, headers=headers).status_code == 201
    assert client.post("/api/products", json=body, headers=headers).status_code == 400


def test_dashboard(client, as_user):
    _, admin = as_user("boss", Role.ADMIN)
    make_product(make_shop(make_user("owner")))
    res = client.get("/api/admin/dashboard", headers=admin)
    assert res.status_code == 200
    body = res.json()
    assert (body["users"], body["shops"], body["products"]) == (2, 1, 1)
    assert body["online_sessions"] == 1


def test_health_endpoints(client):
    assert client.get("/").json()["message"] == "Marketplace API running"
    assert client.get("/test").json()["database"] == "ok"
