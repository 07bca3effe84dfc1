from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field

import catalog
import directory
from auth import check_ownership, get_current_user, get_optional_user, require_seller
from database import db
from errors import APIError, ValidationError
from forms import json_field
from media import MediaHost, get_media_host, release_images, upload_product_images
from schemas import Category, PriceUnit, ProductStatus, StockUnit

router = APIRouter(prefix="/api/products", tags=["products"])

SortKey = Literal["price_asc", "price_desc", "rating_desc", "newest", "oldest", "name_asc"]


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class StockBody(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: Literal["set", "add", "subtract"] = "set"


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: SortKey = "newest",
    search: Optional[str] = None,
    organic: bool = False,
    locally_grown: bool = False,
    seller: Optional[str] = None,
    user=Depends(get_optional_user),
):
    filters = {
        "category": category,
        "min_price": min_price,
        "max_price": max_price,
        "search": search,
        "organic": organic,
        "locally_grown": locally_grown,
        "seller": seller,
    }
    products, pagination = catalog.search(filters, page=page, limit=limit, sort=sort)
    return {"success": True, "data": {"products": products, "pagination": pagination}}


@router.get("/categories")
def get_categories():
    return {"success": True, "data": {"categories": catalog.list_categories()}}


@router.get("/seller/{seller_id}")
def get_seller_products(seller_id: str, status: Optional[ProductStatus] = "active"):
    return {"success": True, "data": {"products": directory.find_by_seller(seller_id, status)}}


@router.get("/{product_id}")
def get_product(product_id: str, user=Depends(get_optional_user)):
    return {"success": True, "data": {"product": catalog.get_by_id(product_id)}}


@router.post("", status_code=201)
async def create_product(
    name: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    price: float = Form(...),
    unit: str = Form(...),
    stock_quantity: int = Form(..., alias="stock.quantity"),
    stock_unit: str = Form(..., alias="stock.unit"),
    subcategory: Optional[str] = Form(None),
    details: Optional[str] = Form(None),
    nutrition: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    availability: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    user=Depends(require_seller),
    host: MediaHost = Depends(get_media_host),
):
    if not images or not any(f.filename for f in images):
        raise ValidationError("At least one product image is required", [{"field": "images", "message": "At least one product image is required"}])
    fields = {
        "name": name.strip(),
        "description": description.strip(),
        "category": category,
        "subcategory": subcategory,
        "price": price,
        "unit": unit,
        "stock": {"quantity": stock_quantity, "unit": stock_unit},
        "details": json_field(details, "details") or {},
        "nutrition": json_field(nutrition, "nutrition") or {},
        "tags": json_field(tags, "tags", expect=list) or [],
        "availability": json_field(availability, "availability") or {},
    }
    # reject bad fields before anything is pushed to the media host
    catalog.build_product(**fields, seller=ObjectId(user["id"]))
    uploaded = await upload_product_images(host, images)
    doc = catalog.create_listing(user, fields, uploaded)
    return {
        "success": True,
        "message": "Product created successfully",
        "data": {"product": catalog.serialize_product(doc, db["user"].find_one({"_id": doc["seller"]}))},
    }


@router.put("/{product_id}", dependencies=[Depends(require_seller)])
async def update_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    subcategory: Optional[str] = Form(None),
    price: Optional[float] = Form(None),
    unit: Optional[PriceUnit] = Form(None),
    status: Optional[ProductStatus] = Form(None),
    stock_quantity: Optional[int] = Form(None, alias="stock.quantity"),
    stock_unit: Optional[StockUnit] = Form(None, alias="stock.unit"),
    details: Optional[str] = Form(None),
    nutrition: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    availability: Optional[str] = Form(None),
    remove_images: Optional[str] = Form(None),
    new_images: Optional[List[UploadFile]] = File(None),
    product=Depends(check_ownership("product", "product_id")),
    host: MediaHost = Depends(get_media_host),
):
    patch = {
        "name": name.strip() if name else None,
        "description": description.strip() if description else None,
        "category": category,
        "subcategory": subcategory,
        "price": price,
        "unit": unit,
        "status": status,
        "stock": {"quantity": stock_quantity, "unit": stock_unit},
        "details": json_field(details, "details"),
        "nutrition": json_field(nutrition, "nutrition"),
        "tags": json_field(tags, "tags", expect=list),
        "availability": json_field(availability, "availability"),
    }
    removed = json_field(remove_images, "remove_images", expect=list) or []
    adding = bool(new_images) and any(f.filename for f in new_images)
    staged = catalog.stage_listing_update(product, patch, removed, adding_images=adding)
    uploaded = await upload_product_images(host, new_images or [])
    try:
        doc, unreleased = catalog.update_listing(host, product, staged, uploaded)
    except APIError:
        release_images(host, [img["public_id"] for img in uploaded])
        raise
    body = {
        "success": True,
        "message": "Product updated successfully",
        "data": {"product": catalog.serialize_product(doc, db["user"].find_one({"_id": doc["seller"]}))},
    }
    if unreleased:
        body["data"]["unreleased_images"] = unreleased
    return body


@router.delete("/{product_id}", dependencies=[Depends(require_seller)])
def delete_product(product=Depends(check_ownership("product", "product_id")), host: MediaHost = Depends(get_media_host)):
    unreleased = catalog.delete_listing(host, product)
    if unreleased:
        return {
            "success": True,
            "message": "Product deleted, but some images could not be removed from storage",
            "data": {"unreleased_images": unreleased},
        }
    return {"success": True, "message": "Product deleted successfully"}


@router.post("/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewBody, user=Depends(get_current_user)):
    product = catalog.load_product(product_id)
    doc = catalog.add_review(product, user["id"], body.rating, body.comment)
    return {
        "success": True,
        "message": "Review added successfully",
        "data": {"product": catalog.serialize_product(doc, with_reviewers=True)},
    }


@router.put("/{product_id}/stock", dependencies=[Depends(require_seller)])
def update_stock(body: StockBody, product=Depends(check_ownership("product", "product_id"))):
    doc = catalog.adjust_stock(product, body.quantity, body.operation)
    return {
        "success": True,
        "message": "Stock updated successfully",
        "data": {
            "product": {
                "id": str(doc["_id"]),
                "name": doc["name"],
                "stock": doc["stock"],
                "status": doc["status"],
            }
        },
    }
