"""
Catalog: seller listings, reviews, stock and search.

Derived fields (slug, rating aggregate, stock-driven status) are recomputed by
``apply_product_derivations`` on every write instead of in storage hooks.
Writes to an existing listing go through ``write_product`` and only touch the
fields they change.
"""
import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from auth import ensure_not_product_owner, seller_summary
from database import db, naive, now_utc, oid, paginate, serialize_doc
from errors import NotFound, ValidationError, validate_model
from media import MediaHost, release_images
from schemas import Product, Review

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "rating_desc": [("average_rating", -1), ("total_reviews", -1)],
    "newest": [("created_at", -1), ("_id", -1)],
    "oldest": [("created_at", 1), ("_id", 1)],
    "name_asc": [("name", 1)],
}
STOCK_OPERATIONS = ("set", "add", "subtract")
SCALAR_FIELDS = ("name", "description", "category", "subcategory", "price", "unit", "status")
MERGED_FIELDS = ("details", "nutrition", "availability")


# ----------------------- Derivations -----------------------
def make_slug(name: str, product_id) -> str:
    base = re.sub(r"[^a-zA-Z0-9]", "-", name.lower())
    base = re.sub(r"-+", "-", base).strip("-")
    return f"{base}-{product_id}"


def rating_summary(reviews: Dict[str, dict]) -> Tuple[float, int]:
    ratings = [r["rating"] for r in (reviews or {}).values()]
    if not ratings:
        return 0, 0
    return sum(ratings) / len(ratings), len(ratings)


def derive_status(status: str, quantity: int) -> str:
    """Flip between active and out_of_stock only; inactive/discontinued stay put."""
    if quantity == 0 and status == "active":
        return "out_of_stock"
    if quantity > 0 and status == "out_of_stock":
        return "active"
    return status


def ensure_primary_image(images: List[dict]) -> List[dict]:
    if images and not any(img.get("is_primary") for img in images):
        images[0]["is_primary"] = True
    return images


DERIVED_PATHS = ("slug", "average_rating", "total_reviews", "status", "stock.quantity", "images")


def lookup(doc: dict, path: str):
    for part in path.split("."):
        if not isinstance(doc, dict) or part not in doc:
            return None
        doc = doc[part]
    return doc


def apply_product_derivations(doc: dict, name_changed: bool = False) -> dict:
    if name_changed or not doc.get("slug"):
        doc["slug"] = make_slug(doc["name"], doc["_id"])
    doc["average_rating"], doc["total_reviews"] = rating_summary(doc.get("reviews"))
    doc["stock"]["quantity"] = max(0, doc["stock"]["quantity"])
    doc["status"] = derive_status(doc.get("status", "active"), doc["stock"]["quantity"])
    ensure_primary_image(doc.get("images") or [])
    doc["updated_at"] = now_utc()
    return doc


def build_product(**fields) -> dict:
    return validate_model(Product, fields).model_dump()


def write_product(product_id: ObjectId, update: dict, name_changed: bool = False) -> dict:
    """Apply ``update`` atomically, then store whichever derived fields moved.

    Only the fields named in ``update`` are written, so a caller holding an
    older copy of the listing never overwrites reviews or view counts.
    """
    update = {op: dict(fields) for op, fields in update.items()}
    update.setdefault("$set", {})["updated_at"] = now_utc()
    doc = db["product"].find_one_and_update({"_id": product_id}, update, return_document=ReturnDocument.AFTER)
    if doc is None:
        raise NotFound("Product not found")
    before = {path: copy.deepcopy(lookup(doc, path)) for path in DERIVED_PATHS}
    apply_product_derivations(doc, name_changed)
    moved = {path: lookup(doc, path) for path in DERIVED_PATHS if lookup(doc, path) != before[path]}
    if moved:
        db["product"].update_one({"_id": product_id}, {"$set": moved})
    return doc


# ----------------------- Serialization -----------------------
def serialize_product(doc: dict, seller: Optional[dict] = None, with_reviewers: bool = False) -> dict:
    out = serialize_doc({k: v for k, v in doc.items() if k != "reviews"})
    reviews = sorted((doc.get("reviews") or {}).values(), key=lambda r: naive(r["created_at"]), reverse=True)
    if with_reviewers and reviews:
        ids = [r["user"] for r in reviews]
        users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}})}
        out["reviews"] = [
            {**serialize_doc(r), "user": _reviewer_summary(users.get(r["user"]), r["user"])}
            for r in reviews
        ]
    else:
        out["reviews"] = serialize_doc(reviews)
    images = doc.get("images") or []
    primary = next((img for img in images if img.get("is_primary")), images[0] if images else None)
    out["primary_image"] = primary
    if seller is not None:
        out["seller"] = seller_summary(seller)
    return out


def _reviewer_summary(user: Optional[dict], user_id: ObjectId) -> dict:
    if not user:
        return {"id": str(user_id)}
    return {
        "id": str(user["_id"]),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "profile_image": user.get("profile_image"),
    }


def attach_sellers(docs: List[dict]) -> List[dict]:
    seller_ids = list({d["seller"] for d in docs})
    sellers = {u["_id"]: u for u in db["user"].find({"_id": {"$in": seller_ids}})}
    return [serialize_product(d, sellers.get(d["seller"])) for d in docs]


# ----------------------- Operations -----------------------
def load_product(product_id: str) -> dict:
    pid = oid(product_id)
    doc = db["product"].find_one({"_id": pid}) if pid else None
    if not doc:
        raise NotFound("Product not found")
    return doc


def create_listing(seller: dict, fields: dict, images: List[dict]) -> dict:
    if not images:
        raise ValidationError("At least one product image is required", [{"field": "images", "message": "At least one product image is required"}])
    product_images = [{**img, "is_primary": i == 0} for i, img in enumerate(images)]
    doc = build_product(**fields, images=product_images, seller=ObjectId(seller["id"]))
    doc["_id"] = ObjectId()
    doc["created_at"] = now_utc()
    apply_product_derivations(doc, name_changed=True)
    db["product"].insert_one(doc)
    logger.info("Listing %s created by seller %s", doc["_id"], seller["id"])
    return doc


def stage_listing_update(product: dict, patch: dict, removed_image_ids: List[str], adding_images: bool = False) -> dict:
    """Validate an owner's edit against the current listing without writing anything.

    Returns the dotted fields to ``$set``, the image ids to release and whether
    the name changed. Run it before uploading new images so a rejected edit
    leaves nothing behind on the media host.
    """
    merged = copy.deepcopy(product)
    touched: List[str] = []
    for field in SCALAR_FIELDS:
        if patch.get(field) is not None:
            merged[field] = patch[field]
            touched.append(field)
    stock = patch.get("stock") or {}
    if stock.get("quantity") is not None:
        merged["stock"]["quantity"] = max(0, int(stock["quantity"]))
        touched.append("stock.quantity")
    if stock.get("unit"):
        merged["stock"]["unit"] = stock["unit"]
        touched.append("stock.unit")
    for field in MERGED_FIELDS:
        if patch.get(field):
            merged[field] = {**(merged.get(field) or {}), **patch[field]}
            touched.extend(f"{field}.{key}" for key in patch[field])
    if patch.get("tags") is not None:
        merged["tags"] = patch["tags"]
        touched.append("tags")

    removed = set(removed_image_ids or ())
    to_release = [img["public_id"] for img in product["images"] if img["public_id"] in removed]
    if len(to_release) == len(product["images"]) and not adding_images:
        raise ValidationError("Product must have at least one image", [{"field": "images", "message": "Product must have at least one image"}])

    # round-trip through the schema so enum/range rules hold after the merge
    candidate = {k: v for k, v in merged.items() if k not in ("_id", "created_at", "updated_at", "slug")}
    validated = build_product(**candidate)
    return {
        "set": {path: lookup(validated, path) for path in touched if lookup(validated, path) is not None},
        "release": to_release,
        "name_changed": patch.get("name") is not None and patch["name"] != product.get("name"),
    }


def update_listing(host: MediaHost, product: dict, staged: dict, new_images: List[dict]) -> Tuple[dict, List[str]]:
    """Write a staged edit. Returns the saved document and image ids the host failed to release."""
    failed = release_images(host, staged["release"])
    released = [pid for pid in staged["release"] if pid not in failed]
    if released:
        db["product"].update_one({"_id": product["_id"]}, {"$pull": {"images": {"public_id": {"$in": released}}}})
    update: Dict[str, Any] = {"$set": staged["set"]}
    if new_images:
        update["$push"] = {"images": {"$each": [{**img, "is_primary": False} for img in new_images]}}
    doc = write_product(product["_id"], update, staged["name_changed"])
    logger.info("Listing %s updated", product["_id"])
    return doc, failed


def delete_listing(host: MediaHost, product: dict) -> List[str]:
    """Release every image, then remove the listing. Not atomic: released images stay released."""
    failed = release_images(host, [img["public_id"] for img in product.get("images", [])])
    db["product"].delete_one({"_id": product["_id"]})
    if failed:
        logger.error("Listing %s deleted but %d image(s) were not released: %s", product["_id"], len(failed), failed)
    else:
        logger.info("Listing %s deleted", product["_id"])
    return failed


def add_review(product: dict, reviewer_id: str, rating: int, comment: Optional[str] = None) -> dict:
    ensure_not_product_owner(reviewer_id, product, action="review")
    review = Review(user=ObjectId(reviewer_id), rating=rating, comment=comment, created_at=now_utc())
    return write_product(product["_id"], {"$set": {f"reviews.{reviewer_id}": review.model_dump()}})


def adjust_stock(product: dict, amount: int, operation: str = "set") -> dict:
    """Change stock in place on the stored listing; subtraction floors at zero."""
    if operation not in STOCK_OPERATIONS:
        raise ValidationError("Operation must be set, add, or subtract")
    if operation == "add":
        update = {"$inc": {"stock.quantity": amount}}
    elif operation == "subtract":
        update = {"$inc": {"stock.quantity": -amount}}
    else:
        update = {"$set": {"stock.quantity": max(0, amount)}}
    return write_product(product["_id"], update)


def decrement_stock(product_id: ObjectId, amount: int) -> Optional[dict]:
    if db["product"].find_one({"_id": product_id}, {"_id": 1}) is None:
        logger.warning("Product %s vanished before stock could be committed", product_id)
        return None
    return adjust_stock({"_id": product_id}, amount, "subtract")


def get_by_id(product_id: str) -> dict:
    """Fetch a listing for display. Every successful fetch counts as a view."""
    pid = oid(product_id)
    doc = db["product"].find_one_and_update({"_id": pid}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER) if pid else None
    if not doc:
        raise NotFound("Product not found")
    seller = db["user"].find_one({"_id": doc["seller"]})
    return serialize_product(doc, seller, with_reviewers=True)


def build_search_filter(filters: Dict[str, Any]) -> dict:
    query: Dict[str, Any] = {"status": "active"}
    if filters.get("category"):
        query["category"] = filters["category"]
    if filters.get("seller"):
        seller_id = oid(filters["seller"])
        query["seller"] = seller_id if seller_id else filters["seller"]
    if filters.get("organic"):
        query["details.organic"] = True
    if filters.get("locally_grown"):
        query["details.locally_grown"] = True
    price: Dict[str, float] = {}
    if filters.get("min_price") is not None:
        price["$gte"] = filters["min_price"]
    if filters.get("max_price") is not None:
        price["$lte"] = filters["max_price"]
    if price:
        query["price"] = price
    term = (filters.get("search") or "").strip()
    if term:
        pattern = re.escape(term)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    return query


def search(filters: Dict[str, Any], page: int = 1, limit: int = 12, sort: str = "newest") -> Tuple[List[dict], dict]:
    query = build_search_filter(filters)
    docs, pagination = paginate("product", query, SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"]), page, limit, "total_products")
    return attach_sellers(docs), pagination


def list_categories() -> List[str]:
    return sorted(c for c in db["product"].distinct("category") if c)
