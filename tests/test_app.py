from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from bson import ObjectId
import pytest
from fastapi.testclient import TestClient

import database
import main
from config import Settings
from database import get_db, serialize_doc


def test_health_bypasses_database():
    def _boom():
        raise AssertionError("health must not connect")

    main.app.dependency_overrides[get_db] = _boom
    try:
        r = TestClient(main.app).get("/api/health")
    finally:
        main.app.dependency_overrides.clear()
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert datetime.fromisoformat(body["time"]).tzinfo is not None
    assert r.headers["content-type"].startswith("application/json")


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/api/unknown"),
        ("GET", "/api/products/abc"),
        ("GET", "/api/products/" + "a" * 24),
        ("PATCH", "/api/products"),
        ("POST", "/api/my-orders"),
        ("DELETE", "/api/orders/" + "a" * 24),
        ("GET", "/"),
    ],
)
def test_unmatched_routes_are_not_found(client, method, path):
    r = client.request(method, path)
    assert r.status_code == 404
    assert r.json() == {"error": "Not found"}


def test_routes_match_under_a_mount_prefix(client, add_product, customer_headers):
    add_product("Mug")
    r = client.get("/store/api/products")
    assert r.status_code == 200
    assert [p["name"] for p in r.json()] == ["Mug"]
    assert client.get("/store/api/health").json()["ok"] is True
    assert client.get("/store/api/my-orders", headers=customer_headers).status_code == 200
    assert client.get("/store/api/nothing").status_code == 404


def test_serialize_doc_renders_ids_and_timestamps():
    oid, item_id = ObjectId(), ObjectId()
    doc = {
        "_id": oid,
        "items": [{"id": item_id, "qty": 1}],
        "createdAt": datetime(2024, 5, 1, 12, 0, 0),
    }
    assert serialize_doc(doc) == {
        "_id": str(oid),
        "items": [{"id": str(item_id), "qty": 1}],
        "createdAt": datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc).isoformat(),
    }
    assert serialize_doc(None) is None


def test_seed_only_fills_an_empty_catalogue(db):
    assert main.seed_products_if_empty(db) == len(main.DEMO_PRODUCTS)
    assert main.seed_products_if_empty(db) == 0
    assert db["products"].count_documents({}) == len(main.DEMO_PRODUCTS)
    assert {p["image"] for p in db["products"].find()} == {""}


# ---------------------------------------------------------------------------
# Connection cache
# ---------------------------------------------------------------------------


@pytest.fixture
def fresh_cache():
    database.reset_db()
    yield
    database._client, database._db = None, None


def test_connection_is_memoized(fresh_cache):
    mongo = MagicMock()
    with patch("database.MongoClient", return_value=mongo) as factory, \
            patch("database.get_settings", return_value=Settings(mongodb_uri="mongodb://db:27017", mongodb_db="shop")):
        first = get_db()
        second = get_db()
    assert first is second
    factory.assert_called_once_with("mongodb://db:27017")
    mongo.admin.command.assert_called_once_with("ping")
    mongo.__getitem__.assert_called_once_with("shop")


def test_failed_connect_is_not_cached(fresh_cache):
    broken, healthy = MagicMock(), MagicMock()
    broken.admin.command.side_effect = RuntimeError("no route to host")
    with patch("database.MongoClient", side_effect=[broken, healthy]), \
            patch("database.get_settings", return_value=Settings()):
        with pytest.raises(RuntimeError):
            get_db()
        broken.close.assert_called_once()
        assert get_db() is healthy.__getitem__.return_value
