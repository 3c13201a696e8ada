"""
MongoDB connection and document helpers.

The client is created once per process from DATABASE_URL / DATABASE_NAME.
Collections are named after the lowercase schema class (Bootcamp -> "bootcamp").
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database

from config import get_settings
from errors import ErrorResponse, not_found

logger = logging.getLogger(__name__)

_settings = get_settings()

client: Optional[MongoClient] = None
db: Optional[Database] = None

if _settings.database_url and _settings.database_name:
    client = MongoClient(_settings.database_url)
    db = client[_settings.database_name]


def get_db() -> Database:
    if db is None:
        raise ErrorResponse("Database not configured", 500)
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["bootcamp"].create_index([("name", ASCENDING)], unique=True)
    database["bootcamp"].create_index([("location.coordinates", GEOSPHERE)])
    database["review"].create_index([("bootcamp", ASCENDING), ("user", ASCENDING)], unique=True)
    logger.info("MongoDB indexes ensured on %s", database.name)


def utcnow() -> datetime:
    # naive UTC, the form pymongo hands back by default
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_obj_id(id_str: str) -> ObjectId:
    """Parse a hex id; malformed ids are reported as missing resources."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ErrorResponse("Resource not found", 404)


HIDDEN_FIELDS = ("password_hash", "resetPasswordToken", "resetPasswordExpire")


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {}
    for key, value in doc.items():
        if key in HIDDEN_FIELDS:
            continue
        if key == "_id":
            d["id"] = str(value)
        elif isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, dict):
            d[key] = sanitize(value)
        elif isinstance(value, list):
            d[key] = [sanitize(v) if isinstance(v, dict) else v for v in value]
        else:
            d[key] = value
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict:
    """Insert a document and return it with its generated _id."""
    doc = data.model_dump(exclude_none=True) if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("createdAt", utcnow())
    res = database[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def find_by_id(database: Database, collection_name: str, id_str: str, resource: str) -> Dict:
    doc = database[collection_name].find_one({"_id": to_obj_id(id_str)})
    if not doc:
        raise not_found(resource)
    return doc
