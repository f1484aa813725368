import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.pop("DATABASE_URL", None)

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import accounts  # noqa: E402
import main  # noqa: E402
from database import create_document, ensure_indexes, to_object_id  # noqa: E402
from schemas import Product  # noqa: E402

PASSWORD = "Secret@123"


@pytest.fixture
def db(monkeypatch):
    database = mongomock.MongoClient().storefront
    ensure_indexes(database)
    monkeypatch.setattr(main, "db", database)
    return database


@pytest.fixture
def make_user(db):
    def _make(email="alice@example.com", name="Alice", role="user", password=PASSWORD, **profile):
        user = accounts.register_user(db, name=name, email=email, password=password, **profile)
        if role != "user":
            db["user"].update_one({"_id": user["_id"]}, {"$set": {"role": role}})
            user["role"] = role
        return user
    return _make


@pytest.fixture
def make_product(db):
    def _make(**overrides):
        fields = {
            "name": "Running Shoes",
            "description": "Lightweight running shoes.",
            "image": "https://img.example.com/shoes.jpg",
            "category": "Footwear",
            "price": 89.99,
        }
        fields.update(overrides)
        pid = create_document(db, "product", Product(**fields))
        return db["product"].find_one({"_id": to_object_id(pid)})
    return _make


@pytest.fixture
def client(db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def login_client(db, make_user):
    """A TestClient holding the session cookie of a freshly created user."""
    clients = []

    def _login(email="alice@example.com", name="Alice", role="user"):
        make_user(email=email, name=name, role=role)
        c = TestClient(main.app)
        resp = c.post("/api/login", json={"email": email, "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        clients.append(c)
        return c

    yield _login
    for c in clients:
        c.close()
