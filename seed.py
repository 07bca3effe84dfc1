"""Demo data for local development."""
import logging

from auth import hash_password
from catalog import create_listing
from database import create_document, db
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "Password123"

DEMO_SELLERS = [
    {
        "first_name": "Marco",
        "last_name": "Rossi",
        "email": "marco@pizzaroma.com",
        "address": {"city": "Austin", "state": "TX"},
        "business_info": {
            "business_name": "Pizza Roma",
            "business_type": "restaurant",
            "business_description": "Wood-fired pizza with local ingredients.",
        },
        "rating": {"average": 4.6, "count": 38},
    },
    {
        "first_name": "Ava",
        "last_name": "Green",
        "email": "ava@sunnyacres.com",
        "address": {"city": "Portland", "state": "OR"},
        "business_info": {
            "business_name": "Sunny Acres Farm",
            "business_type": "farm",
            "business_description": "Family farm growing organic produce since 1982.",
        },
        "rating": {"average": 4.2, "count": 12},
    },
]

DEMO_BUYER = {"first_name": "Sam", "last_name": "Buyer", "email": "sam@freshmarket.com"}

# keyed by seller email
DEMO_PRODUCTS = {
    "marco@pizzaroma.com": [
        {
            "name": "Margherita Pizza",
            "description": "Tomato, fresh mozzarella and basil on a wood-fired crust.",
            "category": "bakery",
            "price": 18.99,
            "unit": "per_piece",
            "stock": {"quantity": 50, "unit": "pieces"},
            "tags": ["pizza", "vegetarian"],
            "image": "https://images.unsplash.com/photo-1574071318508-1cdbab80d002",
        },
        {
            "name": "Garlic Focaccia",
            "description": "Olive oil focaccia with roasted garlic and rosemary.",
            "category": "bakery",
            "price": 7.5,
            "unit": "per_piece",
            "stock": {"quantity": 20, "unit": "pieces"},
            "tags": ["bread"],
            "image": "https://images.unsplash.com/photo-1586444248902-2f64eddc13df",
        },
    ],
    "ava@sunnyacres.com": [
        {
            "name": "Heirloom Tomatoes",
            "description": "Mixed heirloom tomatoes picked this morning.",
            "category": "vegetables",
            "price": 4.25,
            "unit": "per_pound",
            "stock": {"quantity": 80, "unit": "pounds"},
            "details": {"organic": True, "seasonality": ["summer"]},
            "tags": ["organic", "tomato"],
            "image": "https://images.unsplash.com/photo-1592924357228-91a4daadcfea",
        },
        {
            "name": "Wildflower Honey",
            "description": "Raw wildflower honey from hives on the farm.",
            "category": "honey",
            "price": 12.0,
            "unit": "per_piece",
            "stock": {"quantity": 30, "unit": "pieces"},
            "tags": ["raw", "local"],
            "image": "https://images.unsplash.com/photo-1587049352846-4a222e784d38",
        },
    ],
}


def _create_user(data: dict, role: str) -> dict:
    user = UserSchema(**data, password_hash=hash_password(DEMO_PASSWORD), role=role, is_verified=True)
    user_id = create_document("user", user)
    return {"id": user_id, "email": data["email"], "role": role}


def seed_demo_data() -> dict:
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    emails = [s["email"] for s in DEMO_SELLERS] + [DEMO_BUYER["email"]]
    if db["user"].count_documents({"email": {"$in": emails}}) > 0:
        return {"seeded": False, "message": "Demo users already exist"}
    sellers = [_create_user(s, "seller") for s in DEMO_SELLERS]
    _create_user(DEMO_BUYER, "buyer")
    for seller in sellers:
        for item in DEMO_PRODUCTS[seller["email"]]:
            fields = {k: v for k, v in item.items() if k != "image"}
            slug = item["name"].lower().replace(" ", "-")
            create_listing(seller, fields, [{"url": item["image"], "public_id": f"demo/{slug}"}])
    logger.info("Seeded %d sellers and %d listings", len(sellers), db["product"].count_documents({}))
    return {
        "seeded": True,
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
    }
