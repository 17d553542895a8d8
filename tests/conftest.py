import os

# Cheap hashing and no background sweep; must be set before config is imported.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["BLOCK_SWEEP_INTERVAL_SECONDS"] = "0"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("OWNER_USERNAME", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import storage
from roles import Role
from schemas import Product as ProductSchema, Shop as ShopSchema, User as UserSchema

PASSWORD = "secret123"


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient().marketplace_test
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def client(db):
    from main import app
    with TestClient(app) as c:
        yield c


def make_user(username, role=Role.USER, password=PASSWORD, **extra):
    return storage.create_user(UserSchema(
        username=username,
        password_hash=auth.hash_password(password),
        display_name=extra.pop("display_name", username.title()),
        role=role,
        **extra,
    ))


def make_shop(owner, name="Corner Shop"):
    return storage.create_shop(ShopSchema(owner_id=owner["id"], name=name))


def make_product(shop, name="Teapot", price=10.0, quantity=5):
    return storage.create_product(ProductSchema(shop_id=shop["id"], name=name, price=price, quantity=quantity))


def login(client, username, password=PASSWORD):
    res = client.post("/api/login", json={"username": username, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["access_token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def as_user(client):
    """Create a user with the given role and return auth headers for them."""
    def _as_user(username, role=Role.USER):
        user = make_user(username, role)
        return user, bearer(login(client, username))
    return _as_user
