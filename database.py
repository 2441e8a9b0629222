"""
Database helpers for the Brownie Shop API

A single MongoDB client is created from DATABASE_URL / DATABASE_NAME. When
either is missing `db` stays None and handlers answer 500.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    # Mongo hands back naive datetimes, so everything stored is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def get_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def create_document(collection_name: str, data) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = get_db()[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["coupon"].create_index("code", unique=True)
    # one redemption per registered user per coupon
    database["coupon_usage"].create_index(
        [("coupon_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise HTTPException(400, f"Invalid {label} format")
    return ObjectId(value)


def to_serializable(value: Any) -> Any:
    """Render a stored document for the wire.

    `_id` becomes `id`, ObjectIds become hex strings and snake_case keys
    become camelCase, recursively.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for key, item in value.items():
            name = "id" if key == "_id" else to_camel(key)
            out[name] = to_serializable(item)
        return out
    if isinstance(value, (list, tuple)):
        return [to_serializable(item) for item in value]
    return value
