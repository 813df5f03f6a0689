"""
MongoDB access

The store handle is opened once at process start (see main.lifespan) and
handed to routes through the `get_db` dependency.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from dotenv import load_dotenv
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import InternalError, ValidationError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "catalog")

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(url: Optional[str] = None, name: Optional[str] = None, client=None) -> Database:
    global _client, db
    _client = client if client is not None else MongoClient(url or DATABASE_URL)
    db = _client[name or DATABASE_NAME]
    ensure_indexes(db)
    logger.info("Connected to database %s", db.name)
    return db


def close() -> None:
    global _client, db
    if _client is not None:
        _client.close()
    _client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise InternalError("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["category"].create_index("name", unique=True)
    database["category"].create_index("slug", unique=True)
    database["product"].create_index("name", unique=True)
    database["product"].create_index("slug", unique=True)
    database["product"].create_index("category")
    database["coupon"].create_index("code", unique=True)
    database["product_variant"].create_index(
        [("product", ASCENDING), ("size", ASCENDING), ("color.name", ASCENDING)],
        unique=True,
    )


# Helpers

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise ValidationError("Invalid id")


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = {**data, "createdAt": now, "updatedAt": now}
    doc["_id"] = database[collection_name].insert_one(doc).inserted_id
    return doc


def update_document(database: Database, collection_name: str, doc_id: ObjectId, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    database[collection_name].update_one(
        {"_id": doc_id}, {"$set": {**changes, "updatedAt": utcnow()}}
    )
    return database[collection_name].find_one({"_id": doc_id})


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return sanitize(value)
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def sanitize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a stored document safe to send: `_id` becomes `id`, ObjectIds and
    datetimes become strings, and password hashes never leave the server."""
    if not doc:
        return doc
    d = {}
    for key, value in doc.items():
        if key == "password":
            continue
        if key == "_id":
            d["id"] = _clean(value)
        else:
            d[key] = _clean(value)
    return d
