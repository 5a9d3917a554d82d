"""
MongoDB connection and document helpers.

`db` is None when DATABASE_URL is not set; callers check for that.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import ValidationFailed

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

client = None
db = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: Union[str, ObjectId]) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise ValidationFailed(f"Invalid id: {value!r}")
    return ObjectId(value)


def to_public(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: dict = None, limit: int = None,
                  sort: List = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [to_public(d) for d in cursor]


def ensure_indexes(database):
    database["orders"].create_index([("transactionRef", ASCENDING)], unique=True, sparse=True)
    database["orders"].create_index([("userEmail", ASCENDING)])
    database["variants"].create_index([("productId", ASCENDING)])
    database["userprofile"].create_index([("email", ASCENDING)], unique=True)
    database["chat"].create_index([("path", ASCENDING), ("timestamp", ASCENDING)])
    database["paymentsessions"].create_index([("txRef", ASCENDING)], unique=True)
    database["favorite"].create_index([("userId", ASCENDING), ("productId", ASCENDING)], unique=True)
