"""
MongoDB access for the marketplace.

``db`` is the process-wide database handle. Collections are named after the
lowercased schema class (User -> "user", Product -> "product", Order -> "order").
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config

logger = logging.getLogger(__name__)


db = MongoClient(config.DATABASE_URL, tz_aware=True)[config.DATABASE_NAME]


def ensure_indexes():
    db["user"].create_index("email", unique=True)
    db["user"].create_index("role")
    db["user"].create_index("business_info.business_name")
    db["product"].create_index("seller")
    db["product"].create_index("category")
    db["product"].create_index("status")
    db["product"].create_index("slug", unique=True)
    db["product"].create_index([("average_rating", DESCENDING)])
    db["product"].create_index([("created_at", DESCENDING)])
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index([("buyer", ASCENDING), ("created_at", DESCENDING)])
    db["order"].create_index([("seller", ASCENDING), ("created_at", DESCENDING)])


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Union[str, ObjectId]) -> Optional[ObjectId]:
    """Coerce a route/body id to an ObjectId, or None when it is malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    stamp = now_utc()
    doc.setdefault("created_at", stamp)
    doc.setdefault("updated_at", stamp)
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def paginate(
    collection_name: str,
    filter_dict: dict,
    sort: List[Tuple[str, int]],
    page: int,
    limit: int,
    total_key: str,
    projection: Optional[dict] = None,
) -> Tuple[List[dict], Dict[str, Any]]:
    skip = (page - 1) * limit
    cursor = db[collection_name].find(filter_dict, projection).sort(sort).skip(skip).limit(limit)
    items = list(cursor)
    total = db[collection_name].count_documents(filter_dict)
    total_pages = math.ceil(total / limit) if limit else 0
    pagination = {
        "current_page": page,
        "total_pages": total_pages,
        total_key: total,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
    return items, pagination


def serialize_doc(doc):
    """Make a stored document JSON friendly: ``_id`` -> ``id``, ObjectId -> str, datetime -> ISO."""
    if doc is None:
        return doc
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    return doc


def naive(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC so stored and fresh timestamps compare."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
