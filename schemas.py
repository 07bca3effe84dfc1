"""
Database Schemas for the Local Food Marketplace

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

Role = Literal["buyer", "seller"]
BusinessType = Literal["farm", "bakery", "restaurant", "grocery", "artisan", "other"]

Category = Literal[
    "fruits", "vegetables", "dairy", "meat", "seafood", "bakery", "beverages",
    "spices", "grains", "nuts", "herbs", "honey", "preserves", "other",
]
PriceUnit = Literal["per_piece", "per_pound", "per_kg", "per_dozen", "per_liter", "per_gallon", "per_pack"]
StockUnit = Literal["pieces", "pounds", "kg", "dozens", "liters", "gallons", "packs"]
ProductStatus = Literal["active", "inactive", "out_of_stock", "discontinued"]
Season = Literal["spring", "summer", "fall", "winter", "year_round"]
DeliveryOption = Literal["pickup", "local_delivery", "shipping"]

OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
PaymentMethod = Literal["upi", "card", "wallet", "cod", "netbanking"]
DeliveryType = Literal["pickup", "delivery"]


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


# ----------------------- User -----------------------
class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "USA"


class BusinessInfo(BaseModel):
    business_name: Optional[str] = None
    business_type: Optional[BusinessType] = None
    business_description: Optional[str] = Field(None, max_length=500)
    business_license: Optional[str] = None
    tax_id: Optional[str] = None


class StoredImage(BaseModel):
    url: str
    public_id: str


class Rating(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = 0


class User(Document):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password_hash: str = Field(..., description="Salted password hash")
    role: Role = "buyer"
    phone: Optional[str] = None
    address: Address = Field(default_factory=Address)
    business_info: Optional[BusinessInfo] = None
    profile_image: Optional[StoredImage] = None
    is_active: bool = True
    is_verified: bool = False
    rating: Rating = Field(default_factory=Rating)
    last_login: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v):
        return v.lower()

    @model_validator(mode="after")
    def seller_needs_business(self):
        if self.role == "seller":
            info = self.business_info
            if info is None or not info.business_name or not info.business_type:
                raise ValueError("Business name and type are required for sellers")
        return self


# ----------------------- Product -----------------------
class Stock(BaseModel):
    quantity: int = Field(0, ge=0)
    unit: StockUnit


class ProductImage(BaseModel):
    url: str
    public_id: str
    is_primary: bool = False


class ProductDetails(BaseModel):
    origin: Optional[str] = None
    harvest_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    organic: bool = False
    locally_grown: bool = True
    seasonality: List[Season] = []


class Nutrition(BaseModel):
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    sugar: Optional[float] = None
    sodium: Optional[float] = None


class Availability(BaseModel):
    is_available: bool = True
    available_from: Optional[datetime] = None
    available_to: Optional[datetime] = None
    delivery_options: List[DeliveryOption] = []


class Review(Document):
    user: ObjectId
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    created_at: datetime


class Product(Document):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    category: Category
    subcategory: Optional[str] = None
    price: float = Field(..., ge=0)
    unit: PriceUnit
    stock: Stock
    images: List[ProductImage] = []
    seller: ObjectId
    status: ProductStatus = "active"
    details: ProductDetails = Field(default_factory=ProductDetails)
    nutrition: Nutrition = Field(default_factory=Nutrition)
    tags: List[str] = []
    # keyed by reviewer id, one review per user
    reviews: Dict[str, Review] = {}
    average_rating: float = Field(0, ge=0, le=5)
    total_reviews: int = 0
    availability: Availability = Field(default_factory=Availability)
    slug: Optional[str] = None
    views: int = 0

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        return [t.strip().lower() for t in v if t and t.strip()]


# ----------------------- Order -----------------------
class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_gateway: Optional[str] = None
    upi_id: Optional[str] = None
    card_last4: Optional[str] = None


class DeliveryAddress(BaseModel):
    street: Optional[str] = Field(None, min_length=5, max_length=200)
    city: Optional[str] = Field(None, min_length=2, max_length=50)
    state: Optional[str] = Field(None, min_length=2, max_length=50)
    pincode: Optional[str] = Field(None, pattern=r"^[1-9][0-9]{5}$")
    landmark: Optional[str] = None


class OrderRating(BaseModel):
    value: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    created_at: datetime


class Order(Document):
    order_number: str
    buyer: ObjectId
    seller: ObjectId
    product: ObjectId
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    currency: str = "INR"
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    delivery_address: Optional[DeliveryAddress] = None
    delivery_type: DeliveryType = "pickup"
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)
    rating: Optional[OrderRating] = None
