"""
Database helpers

Thin layer over pymongo. ``db`` is ``None`` until DATABASE_URL and
DATABASE_NAME are configured; collections are always resolved through
``collection()`` at call time so the handle can be swapped (tests do this).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

import config
from errors import DatabaseUnavailable, NotFound

logger = structlog.get_logger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def collection(name: str) -> Collection:
    if db is None:
        raise DatabaseUnavailable()
    return db[name]


def now() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"Resource not found with id of {value}")


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = dict(doc)
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp
    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    skip: int = 0,
) -> List[dict]:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes() -> None:
    if db is None:
        logger.warning("Database not configured, skipping index creation")
        return
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["product"].create_index([("created_at", DESCENDING)])
