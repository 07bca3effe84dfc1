"""
Orders: creation against a listing, the seller-driven status lifecycle,
simulated payment and post-delivery rating.

Stock is committed when payment is recorded, not when the order is placed.
"""
import logging
import secrets
import string
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from auth import ensure_not_product_owner, ensure_order_buyer, ensure_order_party, ensure_order_seller, is_order_seller
from catalog import decrement_stock, load_product
from database import db, now_utc, oid, paginate, serialize_doc
from errors import AlreadyPaid, AlreadyRated, InsufficientStock, InvalidTransition, NotFound, ProductUnavailable
from schemas import Order

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("delivered", "cancelled")
DELIVERY_WINDOWS = {
    "pickup": timedelta(minutes=30),
    "delivery": timedelta(hours=2),
}
_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """``ORD-<epoch ms>-<9 random chars>``; uniqueness comes from the random part, not a count."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def apply_order_derivations(doc: dict) -> dict:
    doc["total_amount"] = doc["quantity"] * doc["unit_price"]
    doc["updated_at"] = now_utc()
    return doc


def save_order(order: dict, fields: dict, guard: Optional[dict] = None, conflict: Optional[Exception] = None) -> dict:
    """``$set`` only ``fields`` on the stored order, optionally only while ``guard`` still matches."""
    query = {"_id": order["_id"], **(guard or {})}
    saved = db["order"].find_one_and_update(
        query,
        {"$set": {**fields, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if saved is None:
        raise conflict or NotFound("Order not found")
    return saved


def load_order(order_id: str) -> dict:
    order_oid = oid(order_id)
    order = db["order"].find_one({"_id": order_oid}) if order_oid else None
    if not order:
        raise NotFound("Order not found")
    return order


# ----------------------- Serialization -----------------------
def _user_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    info = user.get("business_info") or {}
    out = {"id": str(user["_id"]), "first_name": user.get("first_name"), "last_name": user.get("last_name")}
    if info.get("business_name"):
        out["business_name"] = info["business_name"]
    return out


def _product_summary(product: Optional[dict]) -> Optional[dict]:
    if not product:
        return None
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "images": product.get("images", []),
        "price": product.get("price"),
        "category": product.get("category"),
        "unit": product.get("unit"),
    }


def populate_orders(orders: List[dict]) -> List[dict]:
    user_ids = {o["buyer"] for o in orders} | {o["seller"] for o in orders}
    product_ids = {o["product"] for o in orders}
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(user_ids)}})}
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": list(product_ids)}})}
    out = []
    for o in orders:
        doc = serialize_doc(o)
        doc["formatted_order_number"] = f"#{o['order_number']}"
        doc["buyer"] = _user_summary(users.get(o["buyer"])) or str(o["buyer"])
        doc["seller"] = _user_summary(users.get(o["seller"])) or str(o["seller"])
        doc["product"] = _product_summary(products.get(o["product"])) or str(o["product"])
        out.append(doc)
    return out


def populate_order(order: dict) -> dict:
    return populate_orders([order])[0]


# ----------------------- Operations -----------------------
def create_order(
    buyer: dict,
    product_id: str,
    quantity: int,
    payment_method: str,
    delivery_type: str = "pickup",
    delivery_address: Optional[dict] = None,
    notes: Optional[str] = None,
) -> dict:
    product = load_product(product_id)
    if product.get("status") != "active":
        raise ProductUnavailable()
    available = product["stock"]["quantity"]
    if available < quantity:
        raise InsufficientStock(f"Only {available} items available in stock")
    ensure_not_product_owner(buyer["id"], product)

    unit_price = product["price"]
    order = Order(
        order_number=generate_order_number(),
        buyer=ObjectId(buyer["id"]),
        seller=product["seller"],
        product=product["_id"],
        quantity=quantity,
        unit_price=unit_price,
        total_amount=unit_price * quantity,
        payment_method=payment_method,
        delivery_type=delivery_type,
        delivery_address=delivery_address if delivery_type == "delivery" else None,
        estimated_delivery_time=now_utc() + DELIVERY_WINDOWS[delivery_type],
        notes=notes,
    )
    doc = order.model_dump()
    doc["created_at"] = now_utc()
    apply_order_derivations(doc)
    result = db["order"].insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info("Order %s placed by %s for product %s x%d", doc["order_number"], buyer["id"], product_id, quantity)
    return doc


def list_orders(user: dict, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Tuple[List[dict], dict]:
    """Sellers see what they sold, buyers what they bought."""
    party = "seller" if user.get("role") == "seller" else "buyer"
    query: Dict[str, Any] = {party: ObjectId(user["id"])}
    if status:
        query["status"] = status
    orders, pagination = paginate("order", query, [("created_at", -1), ("_id", -1)], page, limit, "total_orders")
    return populate_orders(orders), pagination


def get_order(user: dict, order_id: str) -> dict:
    order = load_order(order_id)
    ensure_order_party(user, order)
    return order


def update_status(user: dict, order: dict, new_status: str, notes: Optional[str] = None) -> dict:
    ensure_order_seller(user, order)
    current = order.get("status")
    if current in TERMINAL_STATUSES and new_status != current:
        raise InvalidTransition(f"Order is already {current}")
    fields: Dict[str, Any] = {"status": new_status}
    if notes:
        fields["notes"] = notes
    if new_status == "delivered" and not order.get("actual_delivery_time"):
        fields["actual_delivery_time"] = now_utc()
    saved = save_order(order, fields, guard={"status": current}, conflict=InvalidTransition("Order status changed, please retry"))
    logger.info("Order %s moved to %s", saved["order_number"], new_status)
    return saved


def process_payment(user: dict, order: dict, payment_details: dict) -> dict:
    """Record a simulated payment and commit stock. A second payment raises AlreadyPaid."""
    ensure_order_buyer(user, order)
    if order.get("payment_status") == "completed":
        raise AlreadyPaid()

    merged = {**(order.get("payment_details") or {}), **{k: v for k, v in payment_details.items() if v is not None}}
    updates = {"payment_status": "completed", "payment_details": merged, "updated_at": now_utc()}
    if order.get("status") == "pending":
        updates["status"] = "confirmed"
    # conditional write so two racing payments cannot both commit stock
    paid = db["order"].find_one_and_update(
        {"_id": order["_id"], "payment_status": {"$ne": "completed"}},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if paid is None:
        raise AlreadyPaid()
    logger.info("Payment recorded for order %s", paid["order_number"])

    decrement_stock(paid["product"], paid["quantity"])
    return paid


def cancel_order(user: dict, order: dict, reason: Optional[str] = None) -> dict:
    ensure_order_party(user, order)
    if order.get("status") in TERMINAL_STATUSES:
        raise InvalidTransition("Order cannot be cancelled")
    saved = save_order(
        order,
        {"status": "cancelled", "notes": reason or "Order cancelled by user"},
        guard={"status": {"$nin": list(TERMINAL_STATUSES)}},
        conflict=InvalidTransition("Order cannot be cancelled"),
    )
    who = "seller" if is_order_seller(user, order) else "buyer"
    logger.info("Order %s cancelled by %s", saved["order_number"], who)
    return saved


def rate_order(user: dict, order: dict, value: int, comment: Optional[str] = None) -> dict:
    """Buyer rates a delivered order once; the rating feeds the seller's aggregate."""
    ensure_order_buyer(user, order, action="rate this order")
    if order.get("status") != "delivered":
        raise InvalidTransition("Only delivered orders can be rated")
    if order.get("rating"):
        raise AlreadyRated()
    rating = {"value": value, "comment": comment, "created_at": now_utc()}
    saved = save_order(order, {"rating": rating}, guard={"rating": None}, conflict=AlreadyRated())

    seller = db["user"].find_one({"_id": saved["seller"]})
    if seller:
        current = seller.get("rating") or {"average": 0, "count": 0}
        count = current.get("count", 0)
        average = (current.get("average", 0) * count + value) / (count + 1)
        db["user"].update_one(
            {"_id": seller["_id"]},
            {"$set": {"rating": {"average": average, "count": count + 1}, "updated_at": now_utc()}},
        )
    return saved
