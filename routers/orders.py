from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field, field_validator, model_validator

import orders
from auth import get_current_user
from database import oid
from schemas import DeliveryAddress, DeliveryType, OrderStatus, PaymentMethod

router = APIRouter(prefix="/api/orders", tags=["orders"])


# ----------------------- Models -----------------------
class CreateOrderBody(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    payment_method: PaymentMethod
    delivery_type: DeliveryType = "pickup"
    delivery_address: Optional[DeliveryAddress] = None
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("product_id")
    @classmethod
    def valid_product_id(cls, v):
        if oid(v) is None:
            raise ValueError("Invalid product ID")
        return v

    @model_validator(mode="after")
    def delivery_needs_address(self):
        if self.delivery_type == "delivery" and self.delivery_address is None:
            raise ValueError("Delivery address is required for delivery orders")
        return self


class StatusBody(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=500)


class PaymentBody(BaseModel):
    transaction_id: str = Field(..., min_length=5, max_length=100)
    payment_gateway: Optional[str] = Field(None, max_length=50)
    upi_id: Optional[str] = Field(None, pattern=r"^[\w.-]+@[\w.-]+$")
    card_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")


class CancelBody(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RatingBody(BaseModel):
    value: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


# ----------------------- Routes -----------------------
@router.post("", status_code=201)
def create_order(body: CreateOrderBody, user=Depends(get_current_user)):
    order = orders.create_order(
        user,
        body.product_id,
        body.quantity,
        body.payment_method,
        delivery_type=body.delivery_type,
        delivery_address=body.delivery_address.model_dump() if body.delivery_address else None,
        notes=body.notes,
    )
    return {"success": True, "message": "Order created successfully", "data": {"order": orders.populate_order(order)}}


@router.get("")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
    user=Depends(get_current_user),
):
    items, pagination = orders.list_orders(user, status, page, limit)
    return {"success": True, "data": {"orders": items, "pagination": pagination}}


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = orders.get_order(user, order_id)
    return {"success": True, "data": {"order": orders.populate_order(order)}}


@router.put("/{order_id}/status")
def update_order_status(order_id: str, body: StatusBody, user=Depends(get_current_user)):
    order = orders.update_status(user, orders.load_order(order_id), body.status, body.notes)
    return {"success": True, "message": "Order status updated successfully", "data": {"order": orders.populate_order(order)}}


@router.post("/{order_id}/payment")
def process_payment(order_id: str, body: PaymentBody, user=Depends(get_current_user)):
    order = orders.process_payment(user, orders.load_order(order_id), body.model_dump())
    return {"success": True, "message": "Payment processed successfully", "data": {"order": orders.populate_order(order)}}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, body: Optional[CancelBody] = Body(None), user=Depends(get_current_user)):
    reason = body.reason if body else None
    order = orders.cancel_order(user, orders.load_order(order_id), reason)
    return {"success": True, "message": "Order cancelled successfully", "data": {"order": orders.populate_order(order)}}


@router.post("/{order_id}/rating")
def rate_order(order_id: str, body: RatingBody, user=Depends(get_current_user)):
    order = orders.rate_order(user, orders.load_order(order_id), body.value, body.comment)
    return {"success": True, "message": "Thank you for rating this order", "data": {"order": orders.populate_order(order)}}
