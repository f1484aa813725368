"""
Database helpers

Connects to MongoDB using DATABASE_URL / DATABASE_NAME and exposes `db` plus a
few small helpers shared by the route handlers and the service modules.
Each Pydantic model in schemas.py maps to the collection named after the
lowercase class name.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

from errors import NotFound

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

db = None
if DATABASE_URL:
    # MongoClient connects lazily, so importing this module never blocks
    _client = MongoClient(DATABASE_URL, uuidRepresentation="standard")
    db = _client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL not set; database is not configured")


def ensure_indexes(database) -> None:
    """Unique keys the collections rely on. Safe to call on every start."""
    database["user"].create_index("email", unique=True)
    # password users store google_id as null, so only string ids are indexed
    database["user"].create_index(
        "google_id",
        unique=True,
        partialFilterExpression={"google_id": {"$type": "string"}},
    )
    database["cart"].create_index("user_id", unique=True)
    database["wishlist"].create_index("user_id", unique=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """MongoDB hands back naive datetimes that are already in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Union[str, ObjectId], what: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def serialize_doc(value: Any) -> Any:
    """Make a Mongo document JSON-friendly: _id -> id, ObjectId -> str, datetime -> ISO."""
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = str(v)
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(value, list):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value
