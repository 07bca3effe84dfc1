from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

import directory
from auth import get_current_user, require_seller
from routers.auth import update_profile
from schemas import Category

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/vendors")
def list_vendors(
    search: Optional[str] = None,
    category: Optional[Category] = None,
    location: Optional[str] = None,
    min_rating: float = Query(0, ge=0, le=5),
    verified_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    sort_by: Literal["created_at", "createdAt", "rating", "name"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
):
    vendors, pagination = directory.list_vendors(
        q=search,
        category=category,
        location=location,
        min_rating=min_rating,
        verified_only=verified_only,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {"success": True, "data": {"vendors": vendors, "pagination": pagination}}


@router.get("/vendors/{vendor_id}")
def get_vendor(vendor_id: str):
    return {"success": True, "data": directory.vendor_profile(vendor_id)}


@router.get("/vendors/{vendor_id}/products")
def get_vendor_products(
    vendor_id: str,
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    in_stock: bool = True,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=50),
    sort_by: Literal["created_at", "price", "name", "average_rating"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
):
    products, vendor, pagination = directory.vendor_products(
        vendor_id,
        category=category,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {"success": True, "data": {"products": products, "vendor": vendor, "pagination": pagination}}


@router.get("/profile")
def get_own_profile(user=Depends(get_current_user)):
    return {"success": True, "data": directory.own_profile(user)}


# vendor-facing alias of PUT /api/auth/profile
router.add_api_route("/profile", update_profile, methods=["PUT"], dependencies=[Depends(require_seller)])


@router.get("/search/vendors")
def search_vendors(q: str = "", limit: int = Query(10, ge=1, le=50)):
    return {"success": True, "data": {"vendors": directory.search_vendors(q, limit)}}


@router.get("/featured/vendors")
def featured_vendors(limit: int = Query(6, ge=1, le=50)):
    return {"success": True, "data": {"vendors": directory.featured_vendors(limit)}}
