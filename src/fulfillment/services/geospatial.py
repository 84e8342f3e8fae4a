"""Geospatial helper functions."""

from __future__ import annotations

import math

from ..errors import InvalidInput
from ..models.domain import Coordinate

EARTH_RADIUS_KM = 6371.0

# (upper bound km, label) pairs, checked in order.
DELIVERY_ETA_BANDS: tuple[tuple[float, str], ...] = (
    (2.0, "15 mins"),
    (5.0, "30 mins"),
    (10.0, "45 mins"),
    (20.0, "60 mins"),
)
DELIVERY_ETA_FALLBACK = "60+ mins"


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in kilometres.

    Symmetric and zero for identical points. NaN inputs produce NaN.
    """

    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def validate_coordinate(longitude: float, latitude: float) -> Coordinate:
    """Build a coordinate, rejecting values outside the WGS-84 ranges."""

    if not isinstance(longitude, (int, float)) or not isinstance(latitude, (int, float)):
        raise InvalidInput("Longitude and latitude must be numbers.")
    if not -180.0 <= longitude <= 180.0:
        raise InvalidInput("Longitude must be within [-180, 180].", longitude=longitude)
    if not -90.0 <= latitude <= 90.0:
        raise InvalidInput("Latitude must be within [-90, 90].", latitude=latitude)
    return Coordinate(longitude=float(longitude), latitude=float(latitude))


def estimate_delivery_eta(distance: float) -> str:
    """Map a restaurant-to-customer distance onto a coarse delivery time label."""

    for upper_km, label in DELIVERY_ETA_BANDS:
        if distance <= upper_km:
            return label
    return DELIVERY_ETA_FALLBACK
