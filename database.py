"""
Database helpers

Holds the process-wide MongoDB handle and a few small document helpers used
by the route handlers. The handle is created lazily on the first request and
reused for the rest of the process lifetime; a failed connect is not cached.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings

logger = logging.getLogger(__name__)

PRODUCTS = "products"
ORDERS = "orders"

_lock = threading.Lock()
_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_db() -> Database:
    global _client, _db
    if _db is not None:
        return _db
    with _lock:
        if _db is None:
            settings = get_settings()
            client = MongoClient(settings.mongodb_uri)
            try:
                client.admin.command("ping")
            except Exception:
                client.close()
                logger.exception("MongoDB connection failed")
                raise
            _client, _db = client, client[settings.mongodb_db]
            logger.info("Connected to MongoDB", extra={"extra": {"database": settings.mongodb_db}})
    return _db


def reset_db() -> None:
    """Drop the cached handle (used on shutdown and by tests)."""
    global _client, _db
    with _lock:
        if _client is not None:
            _client.close()
        _client, _db = None, None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert ``data`` stamped with ``createdAt``; returns the stored document including ``_id``."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc["createdAt"] = now_utc()
    result = db[collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(db: Database, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Every matching document, newest ``_id`` first."""
    return list(db[collection].find(filter_dict or {}).sort("_id", DESCENDING))


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    return _to_jsonable(doc)
