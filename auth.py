"""
Identity and access: tokens, passwords and the request dependencies that load
and check the acting principal.

The principal is the serialized user document (``id`` as a string, no
password hash) returned by ``get_current_user``.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from werkzeug.security import check_password_hash, generate_password_hash

import config
from database import db, oid, serialize_doc
from errors import (
    AccountDeactivated,
    Forbidden,
    InvalidToken,
    NotFound,
    PrincipalNotFound,
    SelfOrder,
    SelfReview,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PRIVATE_USER_FIELDS = ("password_hash",)


# ----------------------- Passwords -----------------------
def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def password_problem(password: str) -> Optional[str]:
    if len(password) < 6:
        return "Password must be at least 6 characters long"
    if not PASSWORD_RULE.match(password):
        return "Password must contain at least one uppercase letter, one lowercase letter, and one number"
    return None


# ----------------------- Tokens -----------------------
def create_token(user: dict) -> str:
    exp = datetime.now(timezone.utc) + config.parse_duration(config.JWT_EXPIRE)
    payload = {
        "id": str(user.get("_id") or user.get("id")),
        "email": user["email"],
        "role": user["role"],
        "exp": exp,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Token expired")
    except jwt.InvalidTokenError:
        raise InvalidToken()


def public_user(user: dict) -> dict:
    doc = {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}
    return serialize_doc(doc)


def seller_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    info = user.get("business_info") or {}
    return {
        "id": str(user["_id"]),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "business_name": info.get("business_name"),
        "profile_image": user.get("profile_image"),
        "rating": user.get("rating"),
    }


# ----------------------- Dependencies -----------------------
def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return request.cookies.get("token")


def load_principal(token: str) -> dict:
    payload = decode_token(token)
    user_id = oid(payload.get("id") or "")
    if user_id is None:
        raise InvalidToken("Invalid token payload")
    user = db["user"].find_one({"_id": user_id})
    if not user:
        raise PrincipalNotFound()
    if not user.get("is_active", True):
        raise AccountDeactivated()
    return public_user(user)


async def get_current_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    token = extract_token(request, credentials)
    if not token:
        raise Unauthenticated()
    return load_principal(token)


async def get_optional_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[dict]:
    token = extract_token(request, credentials)
    if not token:
        return None
    try:
        return load_principal(token)
    except (InvalidToken, PrincipalNotFound, AccountDeactivated) as e:
        logger.debug("Ignoring token in optional auth: %s", e.detail)
        return None


def require_role(*roles: str):
    async def dependency(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise Forbidden(f"Access denied. Required role: {' or '.join(roles)}. Your role: {user.get('role')}")
        return user

    return dependency


require_seller = require_role("seller")


async def require_verified_account(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_verified"):
        raise Forbidden("Please verify your email address to access this feature")
    return user


OWNED_ENTITIES = {
    # entity -> (collection, owner field or None when the entity is the user itself)
    "product": ("product", "seller"),
    "user": ("user", None),
}


def check_ownership(entity: str, param: str = "id"):
    """Load ``entity`` by the ``param`` route parameter and make sure the principal owns it."""
    collection, owner_field = OWNED_ENTITIES[entity]

    async def dependency(request: Request, user: dict = Depends(get_current_user)) -> dict:
        doc_id = oid(request.path_params.get(param, ""))
        doc = db[collection].find_one({"_id": doc_id}) if doc_id else None
        if not doc:
            raise NotFound(f"{entity.capitalize()} not found")
        owner = doc.get(owner_field) if owner_field else doc["_id"]
        if str(owner) != user["id"]:
            raise Forbidden("Access denied. You can only access your own resources.")
        return doc

    return dependency


# ----------------------- Role capabilities -----------------------
def is_order_buyer(user: dict, order: dict) -> bool:
    return str(order.get("buyer")) == user["id"]


def is_order_seller(user: dict, order: dict) -> bool:
    return str(order.get("seller")) == user["id"]


def ensure_order_party(user: dict, order: dict):
    if not (is_order_buyer(user, order) or is_order_seller(user, order)):
        raise Forbidden()


def ensure_order_seller(user: dict, order: dict):
    if not is_order_seller(user, order):
        raise Forbidden("Only the seller can update order status")


def ensure_order_buyer(user: dict, order: dict, action: str = "process payment"):
    if not is_order_buyer(user, order):
        raise Forbidden(f"Only the buyer can {action}")


def ensure_not_product_owner(user_id: str, product: dict, action: str = "order"):
    if str(product.get("seller")) == str(user_id):
        raise SelfReview() if action == "review" else SelfOrder()
