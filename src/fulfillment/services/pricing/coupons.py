"""Coupon eligibility and discount rules."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from ...models.domain import Coupon
from ...persistence.repositories import CouponDirectory

logger = logging.getLogger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_eligible(coupon: Coupon, subtotal: float, now: datetime) -> bool:
    if not coupon.is_active:
        return False
    if coupon.expires_at is not None and _as_utc(coupon.expires_at) <= _as_utc(now):
        return False
    return subtotal >= (coupon.min_cart_amount or 0)


def discount_for(coupon: Optional[Coupon], subtotal: float, now: datetime) -> Optional[float]:
    """Return the discount a coupon grants on ``subtotal``, or None when it does not apply.

    The percentage discount is floored to a whole currency unit and then capped
    at ``max_discount_amount`` when the coupon defines one.
    """

    if coupon is None or not is_eligible(coupon, subtotal, now):
        return None
    discount = math.floor(subtotal * coupon.discount_percentage / 100)
    if coupon.max_discount_amount is not None:
        discount = min(discount, coupon.max_discount_amount)
    return max(discount, 0)


class CouponLedger:
    """Read-only view over the coupon directory used at pricing time."""

    def __init__(self, directory: CouponDirectory) -> None:
        self.directory = directory

    def lookup(self, coupon_id: Optional[str]) -> Optional[Coupon]:
        if not coupon_id:
            return None
        coupon = self.directory.get(coupon_id)
        if coupon is None:
            logger.debug("Coupon %s no longer exists", coupon_id)
        return coupon
