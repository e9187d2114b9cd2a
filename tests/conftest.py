from typing import Any, Dict, List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import get_identity_client
from config import Settings, get_settings
from database import get_db

ADMIN = {"id": "admin-1", "email": "Owner@Shop.test"}
CUSTOMER = {"id": "user-1", "email": "buyer@shop.test"}
OTHER_CUSTOMER = {"id": "user-2", "email": "other@shop.test"}


def make_token(sub: str) -> str:
    return f"tok-{sub}"


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class FakeIdentityClient:
    """Stands in for the identity service: known tokens map to users."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []

    def register(self, user: Dict[str, Any]) -> str:
        token = make_token(user["id"])
        self.users[token] = user
        return token

    def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        self.calls.append(token)
        return self.users.get(token)


@pytest.fixture
def db():
    return mongomock.MongoClient()["ms_store_test"]


@pytest.fixture
def identity():
    return FakeIdentityClient()


@pytest.fixture
def settings():
    return Settings(allowed_admin_email="owner@shop.test")


@pytest.fixture
def client(db, identity, settings):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_identity_client] = lambda: identity
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(identity):
    return bearer(identity.register(ADMIN))


@pytest.fixture
def customer_headers(identity):
    return bearer(identity.register(CUSTOMER))


@pytest.fixture
def other_headers(identity):
    return bearer(identity.register(OTHER_CUSTOMER))


@pytest.fixture
def add_product(db):
    def _add(name: str = "Widget", price: float = 100, stock: int = 10, **extra):
        doc = {"name": name, "price": price, "category": "", "image": "", "stock": stock, **extra}
        doc["_id"] = db["products"].insert_one(doc).inserted_id
        return doc
    return _add
