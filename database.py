"""
MongoDB access

Holds the shared client and a few helpers used by every collection.
Collection names are the lowercase entity names: "product", "order",
"user", "session", "counter".
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient

from config import DATABASE_URL, DATABASE_NAME
from errors import ValidationError

# MongoClient connects lazily, so importing this module never blocks on the server.
client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=False)
db = client[DATABASE_NAME]

def get_db():
    return db

def utcnow() -> datetime:
    # Mongo stores naive UTC; keep every timestamp naive so comparisons line up.
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)

def to_object_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID format")

def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d

def create_document(database, collection_name: str, data) -> str:
    """Insert a pydantic model or dict, stamping created_at/updated_at."""
    if hasattr(data, "model_dump"):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """Find documents, returned with a string ``id`` in place of ``_id``."""
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [to_str_id(doc) for doc in cursor]


def ensure_indexes(database):
    database["product"].create_index("slug", unique=True)
    database["product"].create_index("category")
    database["product"].create_index("brand")
    database["product"].create_index("price")
    database["product"].create_index("sizes.size")
    database["user"].create_index("email", unique=True)
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("status")
    database["session"].create_index("expires_at", expireAfterSeconds=0)
