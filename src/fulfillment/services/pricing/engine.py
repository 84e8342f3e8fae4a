"""Cart pricing: subtotal, delivery fee, coupon discount and payable amount."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from ...errors import LocationMissing
from ...models.domain import CartLine, Coordinate, Coupon, Totals
from ..geospatial import distance_km, estimate_delivery_eta
from .coupons import discount_for
from .tariff import DEFAULT_TARIFF, TariffPolicy, delivery_fee


def compute_totals(
    lines: Sequence[CartLine],
    restaurant_location: Optional[Coordinate],
    customer_location: Optional[Coordinate],
    candidate_coupon: Optional[Coupon] = None,
    *,
    tariff: TariffPolicy = DEFAULT_TARIFF,
    now: Optional[datetime] = None,
) -> Totals:
    """Derive every cart total from its lines. Pure; the caller persists the result.

    A coupon that is inactive, expired or above the cart's subtotal threshold
    yields no discount and is dropped from ``applied_coupon_id``.
    """

    now = now or datetime.now(timezone.utc)
    subtotal = sum(line.line_total for line in lines)
    item_count = sum(line.quantity for line in lines)

    distance: Optional[float] = None
    if item_count > 0:
        if restaurant_location is None or customer_location is None:
            raise LocationMissing("Customer and restaurant locations are required to price a cart.")
        distance = distance_km(customer_location, restaurant_location)

    fee = delivery_fee(distance if distance is not None else 0.0, item_count, tariff)

    discount = discount_for(candidate_coupon, subtotal, now)
    applied_coupon_id = candidate_coupon.coupon_id if candidate_coupon is not None and discount is not None else None
    # keeps final_amount >= 0 for coupons above 100%
    discount = min(discount or 0, subtotal + fee)

    return Totals(
        subtotal=subtotal,
        delivery_fee=fee,
        coupon_discount=discount,
        final_amount=subtotal + fee - discount,
        total_item_count=item_count,
        applied_coupon_id=applied_coupon_id,
        distance_km=round(distance, 2) if distance is not None else None,
        delivery_eta=estimate_delivery_eta(distance) if distance is not None else None,
    )
