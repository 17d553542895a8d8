import storage
from roles import Role

from conftest import make_product, make_shop, make_user


def test_shop_creation_adds_owner_membership(client, as_user):
    owner, headers = as_user("shopkeeper", Role.SHOP_OWNER)
    res = client.post("/api/shops", json={"name": "Tea House"}, headers=headers)
    assert res.status_code == 201
    shop = res.json()
    assert shop["status"] == "ACTIVE"
    assert shop["rating"] == 0
    staff = client.get(f"/api/shops/{shop['id']}/staff", headers=headers).json()
    assert [(s["username"], s["role_name"]) for s in staff] == [("shopkeeper", "SHOP_OWNER")]


def test_regular_users_cannot_open_shops(client, as_user):
    _, headers = as_user("alice")
    assert client.post("/api/shops", json={"name": "Nope"}, headers=headers).status_code == 403


def test_shop_limit_per_user(client, as_user):
    _, admin = as_user("boss", Role.ADMIN)
    client.patch("/api/settings", json={"max_shops_per_user": 1}, headers=admin)
    _, headers = as_user("shopkeeper", Role.SHOP_OWNER)
    assert client.post("/api/shops", json={"name": "One"}, headers=headers).status_code == 201
    assert client.post("/api/shops", json={"name": "Two"}, headers=headers).status_code == 400


def test_membership_grants_management_of_that_shop_only(client, as_user):
    shop_x = make_shop(make_user("owner-x"), "X")
    shop_y = make_shop(make_user("owner-y"), "Y")
    manager, headers = as_user("manager")
    storage.add_shop_staff(shop_x["id"], manager["id"], Role.SHOP_MAIN)

    assert client.patch(f"/api/shops/{shop_x['id']}", json={"description": "fresh"}, headers=headers).status_code == 200
    assert client.patch(f"/api/shops/{shop_y['id']}", json={"description": "fresh"}, headers=headers).status_code == 403


def test_global_shop_role_alone_is_not_enough(client, as_user):
    shop = make_shop(make_user("owner"))
    _, headers = as_user("other-shopkeeper", Role.SHOP_OWNER)
    assert client.patch(f"/api/shops/{shop['id']}", json={"description": "x"}, headers=headers).status_code == 403


def test_only_admins_change_shop_status(client, as_user):
    owner, headers = as_user("owner")
    shop = make_shop(owner)
    res = client.patch(f"/api/shops/{shop['id']}", json={"is_verified": True}, headers=headers)
    assert res.status_code == 403
    _, admin = as_user("boss", Role.ADMIN)
    res = client.patch(f"/api/shops/{shop['id']}/block", json={"reason": "fraud"}, headers=admin)
    assert res.json()["status"] == "BLOCKED"
    res = client.patch(f"/api/shops/{shop['id']}/unblock", headers=admin)
    assert res.json()["status"] == "ACTIVE"


def test_staff_management(client, as_user):
    owner, headers = as_user("owner")
    shop = make_shop(owner)
    helper = make_user("helper")

    res = client.post(f"/api/shops/{shop['id']}/staff", json={"username": "helper", "role": "SHOP_STAFF"}, headers=headers)
    assert res.status_code == 201
    res = client.post(f"/api/shops/{shop['id']}/staff", json={"username": "helper", "role": "SHOP_STAFF"}, headers=headers)
    assert res.status_code == 409

    res = client.patch(f"/api/shops/{shop['id']}/staff/{helper['id']}", json={"role": "SHOP_MAIN"}, headers=headers)
    assert res.json()["role_name"] == "SHOP_MAIN"

    res = client.post(f"/api/shops/{shop['id']}/staff", json={"username": "helper", "role": "SHOP_OWNER"}, headers=headers)
    assert res.status_code == 403
    assert client.delete(f"/api/shops/{shop['id']}/staff/{owner['id']}", headers=headers).status_code == 400
    assert client.delete(f"/api/shops/{shop['id']}/staff/{helper['id']}", headers=headers).status_code == 200
    assert storage.get_membership(shop["id"], helper["id"]) is None


def test_headadmin_manages_staff_of_any_shop(client, as_user):
    shop = make_shop(make_user("owner"))
    make_user("helper")
    _, head = as_user("head", Role.HEADADMIN)
    res = client.post(f"/api/shops/{shop['id']}/staff", json={"username": "helper", "role": "SHOP_MAIN"}, headers=head)
    assert res.status_code == 201


def test_products_crud(client, as_user):
    owner, headers = as_user("owner")
    shop = make_shop(owner)
    res = client.post("/api/products", json={"shop_id": shop["id"], "name": "Teapot", "price": 12.5, "quantity": 3}, headers=headers)
    assert res.status_code == 201
    product = res.json()

    res = client.patch(f"/api/products/{product['id']}", json={"price": 10}, headers=headers)
    assert res.json()["price"] == 10

    _, stranger = as_user("stranger")
    assert client.delete(f"/api/products/{product['id']}", headers=stranger).status_code == 403

    res = client.get("/api/products", params={"search": "TEA"})
    assert [p["name"] for p in res.json()] == ["Teapot"]
    assert client.delete(f"/api/products/{product['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_reviews_update_product_and_shop_ratings(client, as_user):
    shop = make_shop(make_user("owner"))
    teapot = make_product(shop, "Teapot")
    _, headers = as_user("critic")
    for rating in (5, 3, 4):
        res = client.post(f"/api/products/{teapot['id']}/reviews", json={"rating": rating}, headers=headers)
        assert res.status_code == 201
    assert client.get(f"/api/products/{teapot['id']}").json()["rating"] == 4
    assert client.get(f"/api/shops/{shop['id']}").json()["rating"] == 4

    reviews = client.get(f"/api/products/{teapot['id']}/reviews").json()
    assert [r["rating"] for r in reviews] == [5, 3, 4]
    assert reviews[0]["user_display_name"] == "Critic"


def test_shop_rating_spans_all_products(client, as_user):
    shop = make_shop(make_user("owner"))
    cup = make_product(shop, "Cup")
    pot = make_product(shop, "Pot")
    _, headers = as_user("critic")
    client.post(f"/api/products/{cup['id']}/reviews", json={"rating": 5}, headers=headers)
    client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 2}, headers=headers)
    client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 2}, headers=headers)
    # (5 + 2 + 2) / 3 = 3
    assert storage.get_shop(shop["id"])["rating"] == 3
    assert storage.get_product(pot["id"])["rating"] == 2


def test_half_ratings_round_up(client, as_user):
    shop = make_shop(make_user("owner"))
    pot = make_product(shop)
    _, headers = as_user("critic")
    client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 4}, headers=headers)
    client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 5}, headers=headers)
    assert storage.get_product(pot["id"])["rating"] == 5


def test_review_rating_out_of_range(client, as_user):
    pot = make_product(make_shop(make_user("owner")))
    _, headers = as_user("critic")
    assert client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 6}, headers=headers).status_code == 422


def test_deleting_shop_cascades(client, as_user):
    owner, headers = as_user("owner")
    shop = make_shop(owner)
    pot = make_product(shop)
    _, critic = as_user("critic")
    client.post(f"/api/products/{pot['id']}/reviews", json={"rating": 5}, headers=critic)
    client.post(f"/api/shops/{shop['id']}/chat", headers=critic)

    assert client.delete(f"/api/shops/{shop['id']}", headers=headers).status_code == 200
    assert storage.get_product(pot["id"]) is None
    assert storage.get_reviews_by_product(pot["id"]) == []
    assert storage.get_shop_memberships(shop["id"]) == []
    assert storage.get_shop_chats(shop["id"]) == []
    assert client.get(f"/api/shops/{shop['id']}").status_code == 404
