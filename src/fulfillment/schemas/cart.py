"""Cart API schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ..models.domain import Cart
from ..utils.serialization import to_jsonable


class CartLineRequest(BaseModel):
    item_id: str = Field(min_length=1)
    option_id: str | None = None
    quantity: int = Field(description="Added to the existing line; negative values decrement it.")


class CartUpdateRequest(BaseModel):
    customer_id: str = Field(min_length=1)
    items: List[CartLineRequest] = Field(default_factory=list)
    coupon_id: str | None = None


class CouponApplyRequest(BaseModel):
    coupon_id: str = Field(min_length=1)


class CartLineModel(BaseModel):
    item_id: str
    option_id: str | None = None
    quantity: int
    unit_price: float
    option_surcharge: float
    line_total: float
    name: str
    image: str | None = None


class CartResponse(BaseModel):
    cart_id: str
    customer_id: str
    restaurant_id: str | None = None
    lines: List[CartLineModel]
    subtotal: float
    delivery_fee: float
    coupon_discount: float
    final_amount: float
    total_item_count: int
    applied_coupon_id: str | None = None
    distance_km: float | None = None
    delivery_eta: str | None = None
    version: int
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_domain(cls, cart: Cart) -> "CartResponse":
        payload = to_jsonable(cart)
        payload["lines"] = [
            {**to_jsonable(line), "line_total": line.line_total} for line in cart.lines
        ]
        return cls(**payload)
