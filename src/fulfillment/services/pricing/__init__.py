"""Cart pricing helpers."""

from .coupons import CouponLedger, discount_for, is_eligible
from .engine import compute_totals
from .tariff import DEFAULT_TARIFF, TariffPolicy, delivery_fee

__all__ = [
    "compute_totals",
    "delivery_fee",
    "discount_for",
    "is_eligible",
    "CouponLedger",
    "TariffPolicy",
    "DEFAULT_TARIFF",
]
