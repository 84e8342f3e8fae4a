"""Stepped distance tariff for delivery fees."""

from __future__ import annotations

import math
from dataclasses import dataclass

from ...config import Settings
from ...errors import InvalidInput


@dataclass(frozen=True, slots=True)
class TariffPolicy:
    base_fee: int = 20
    free_radius_km: float = 5.0
    per_km_fee: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "TariffPolicy":
        return cls(
            base_fee=settings.base_delivery_fee,
            free_radius_km=settings.free_delivery_radius_km,
            per_km_fee=settings.per_km_delivery_fee,
        )


DEFAULT_TARIFF = TariffPolicy()


def delivery_fee(distance: float, item_count: int, policy: TariffPolicy = DEFAULT_TARIFF) -> int:
    """Flat fee inside the free radius, plus a per-km step for every started km beyond it."""

    if item_count <= 0:
        return 0
    if math.isnan(distance):
        raise InvalidInput("Delivery distance is not a number.")
    if distance <= policy.free_radius_km:
        return policy.base_fee
    overage_km = math.ceil(distance - policy.free_radius_km)
    return policy.base_fee + policy.per_km_fee * overage_km
