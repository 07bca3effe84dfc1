"""
Vendor directory: read-only views joining sellers with their listings.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from auth import public_user
from catalog import attach_sellers
from database import db, oid, paginate
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

VENDOR_SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "rating": "rating.average",
    "name": "business_info.business_name",
}
PRODUCT_SORT_FIELDS = ("created_at", "price", "name", "average_rating")


def _like(term: str) -> dict:
    return {"$regex": re.escape(term.strip()), "$options": "i"}


def active_product_counts(seller_ids: List) -> Dict[str, int]:
    if not seller_ids:
        return {}
    rows = db["product"].aggregate([
        {"$match": {"seller": {"$in": seller_ids}, "status": "active"}},
        {"$group": {"_id": "$seller", "product_count": {"$sum": 1}}},
    ])
    return {str(row["_id"]): row["product_count"] for row in rows}


def with_product_counts(vendors: List[dict]) -> List[dict]:
    counts = active_product_counts([v["_id"] for v in vendors])
    return [{**public_user(v), "product_count": counts.get(str(v["_id"]), 0)} for v in vendors]


def load_vendor(seller_id: str) -> dict:
    sid = oid(seller_id)
    vendor = db["user"].find_one({"_id": sid, "role": "seller", "is_active": True}) if sid else None
    if not vendor:
        raise NotFound("Vendor not found")
    return vendor


def find_by_seller(seller_id: str, status: Optional[str] = "active") -> List[dict]:
    sid = oid(seller_id)
    if sid is None:
        raise NotFound("Seller not found")
    query: Dict[str, Any] = {"seller": sid}
    if status:
        query["status"] = status
    docs = list(db["product"].find(query).sort([("created_at", -1)]))
    return attach_sellers(docs)


def list_vendors(
    q: Optional[str] = None,
    category: Optional[str] = None,
    location: Optional[str] = None,
    min_rating: float = 0,
    verified_only: bool = False,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict]:
    query: Dict[str, Any] = {"role": "seller", "is_active": True}
    if verified_only:
        query["is_verified"] = True
    clauses = []
    if q:
        clauses.append({"$or": [
            {"business_info.business_name": _like(q)},
            {"business_info.business_description": _like(q)},
            {"first_name": _like(q)},
            {"last_name": _like(q)},
        ]})
    if location:
        clauses.append({"$or": [
            {"address.city": _like(location)},
            {"address.state": _like(location)},
        ]})
    if clauses:
        query["$and"] = clauses
    if min_rating > 0:
        query["rating.average"] = {"$gte": min_rating}
    if category:
        sellers = db["product"].distinct("seller", {"category": category, "status": "active"})
        query["_id"] = {"$in": sellers}

    field = VENDOR_SORT_FIELDS.get(sort_by, "created_at")
    direction = -1 if sort_order == "desc" else 1
    vendors, pagination = paginate("user", query, [(field, direction)], page, limit, "total_vendors")
    return with_product_counts(vendors), pagination


def vendor_profile(seller_id: str) -> dict:
    vendor = load_vendor(seller_id)
    products = list(
        db["product"].find({"seller": vendor["_id"], "status": "active"}).sort([("created_at", -1)]).limit(20)
    )
    rows = list(db["product"].aggregate([
        {"$match": {"seller": vendor["_id"], "status": "active"}},
        {"$group": {
            "_id": None,
            "total_products": {"$sum": 1},
            "average_price": {"$avg": "$price"},
            "total_stock": {"$sum": "$stock.quantity"},
            "categories": {"$addToSet": "$category"},
        }},
    ]))
    stats = {"total_products": 0, "average_price": 0, "total_stock": 0, "categories": []}
    if rows:
        stats.update({k: v for k, v in rows[0].items() if k != "_id" and v is not None})
        stats["categories"] = sorted(stats["categories"])
    return {"vendor": public_user(vendor), "products": attach_sellers(products), "stats": stats}


def vendor_products(
    seller_id: str,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: bool = True,
    page: int = 1,
    limit: int = 12,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Tuple[List[dict], dict, dict]:
    vendor = load_vendor(seller_id)
    query: Dict[str, Any] = {"seller": vendor["_id"], "status": "active"}
    if category:
        query["category"] = category
    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    if in_stock:
        query["stock.quantity"] = {"$gt": 0}
    field = sort_by if sort_by in PRODUCT_SORT_FIELDS else "created_at"
    direction = -1 if sort_order == "desc" else 1
    products, pagination = paginate("product", query, [(field, direction)], page, limit, "total_products")
    info = vendor.get("business_info") or {}
    summary = {
        "id": str(vendor["_id"]),
        "business_name": info.get("business_name"),
        "rating": vendor.get("rating"),
    }
    return attach_sellers(products), summary, pagination


def search_vendors(q: str, limit: int = 10) -> List[dict]:
    if not q or len(q.strip()) < 2:
        raise ValidationError("Search query must be at least 2 characters long")
    vendors = list(
        db["user"].find({"role": "seller", "is_active": True, "business_info.business_name": _like(q)}).limit(limit)
    )
    return with_product_counts(vendors)


def featured_vendors(limit: int = 6) -> List[dict]:
    vendors = list(
        db["user"]
        .find({"role": "seller", "is_active": True, "rating.average": {"$gte": 4.0}})
        .sort([("rating.average", -1), ("rating.count", -1)])
        .limit(limit)
    )
    return with_product_counts(vendors)


def own_profile(user: dict) -> dict:
    """The caller's profile; sellers also get listing statistics."""
    stats = None
    if user.get("role") == "seller":
        seller_id = oid(user["id"])
        rows = list(db["product"].aggregate([
            {"$match": {"seller": seller_id}},
            {"$group": {
                "_id": None,
                "total_products": {"$sum": 1},
                "total_stock": {"$sum": "$stock.quantity"},
                "total_views": {"$sum": "$views"},
                "average_price": {"$avg": "$price"},
            }},
        ]))
        stats = {"total_products": 0, "total_stock": 0, "total_views": 0, "average_price": 0}
        if rows:
            stats.update({k: v for k, v in rows[0].items() if k != "_id" and v is not None})
        stats["active_products"] = db["product"].count_documents({"seller": seller_id, "status": "active"})
    return {"user": user, "stats": stats}
