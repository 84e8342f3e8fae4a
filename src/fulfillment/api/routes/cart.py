"""Cart endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from ...errors import FulfillmentError
from ...schemas.cart import CartResponse, CartUpdateRequest, CouponApplyRequest
from ...services.cart import CartStore, LineChange
from ..dependencies import get_cart_store
from ..errors import to_http_exception

router = APIRouter(prefix="/cart", tags=["cart"])


@router.post("", response_model=CartResponse, status_code=status.HTTP_200_OK)
def add_or_update_cart(payload: CartUpdateRequest, store: CartStore = Depends(get_cart_store)) -> CartResponse:
    lines = [LineChange(item_id=item.item_id, option_id=item.option_id, quantity=item.quantity) for item in payload.items]
    try:
        cart = store.add_or_update_lines(payload.customer_id, lines, coupon_id=payload.coupon_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return CartResponse.from_domain(cart)


@router.get("", response_model=List[CartResponse], status_code=status.HTTP_200_OK)
def list_carts(store: CartStore = Depends(get_cart_store)) -> List[CartResponse]:
    try:
        carts = store.list_all()
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return [CartResponse.from_domain(cart) for cart in carts]


@router.get("/user/{customer_id}", response_model=CartResponse, status_code=status.HTTP_200_OK)
def get_cart(customer_id: str, store: CartStore = Depends(get_cart_store)) -> CartResponse:
    try:
        return CartResponse.from_domain(store.get(customer_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/user/{customer_id}", status_code=status.HTTP_200_OK)
def delete_customer_cart(customer_id: str, store: CartStore = Depends(get_cart_store)) -> dict:
    try:
        store.delete_by_customer(customer_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return {"message": "Cart deleted successfully", "customer_id": customer_id}


@router.delete("/user/{customer_id}/items/{item_id}", response_model=CartResponse, status_code=status.HTTP_200_OK)
def remove_cart_line(
    customer_id: str,
    item_id: str,
    option_id: str | None = None,
    store: CartStore = Depends(get_cart_store),
) -> CartResponse:
    try:
        return CartResponse.from_domain(store.remove_line(customer_id, item_id, option_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.post("/user/{customer_id}/coupon", response_model=CartResponse, status_code=status.HTTP_200_OK)
def apply_coupon(
    customer_id: str,
    payload: CouponApplyRequest,
    store: CartStore = Depends(get_cart_store),
) -> CartResponse:
    try:
        return CartResponse.from_domain(store.apply_coupon(customer_id, payload.coupon_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/user/{customer_id}/coupon", response_model=CartResponse, status_code=status.HTTP_200_OK)
def remove_coupon(customer_id: str, store: CartStore = Depends(get_cart_store)) -> CartResponse:
    try:
        return CartResponse.from_domain(store.remove_coupon(customer_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{cart_id}", status_code=status.HTTP_200_OK)
def delete_cart(cart_id: str, store: CartStore = Depends(get_cart_store)) -> dict:
    try:
        store.delete_by_id(cart_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return {"message": "Cart deleted successfully", "cart_id": cart_id}
