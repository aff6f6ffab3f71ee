"""Straight-line distance and delivery time estimates."""

import math
from datetime import datetime, timedelta
from typing import Optional

EARTH_RADIUS_KM = 6371.0
BASE_DELIVERY_MINUTES = 30
MINUTES_PER_KM = 2


def haversine_km(
    lat1: float,
    lng1: float,
    lat2: float,
    lng2: float,
) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_delivery_minutes(distance_km: float) -> float:
    """Flat pickup allowance plus a per-kilometre travel allowance."""
    return BASE_DELIVERY_MINUTES + distance_km * MINUTES_PER_KM


def estimate_delivery_time(
    pickup: Optional[dict[str, float]],
    drop: Optional[dict[str, float]],
    now: datetime,
) -> Optional[datetime]:
    """
    Estimate when an order will be delivered.

    Args:
        pickup: Pickup coordinates as ``{"lat": ..., "lng": ...}``
        drop: Drop coordinates as ``{"lat": ..., "lng": ...}``
        now: Reference time for the estimate

    Returns:
        Estimated delivery time, or None when either pair is missing
    """
    if not pickup or not drop:
        return None

    distance = haversine_km(pickup["lat"], pickup["lng"], drop["lat"], drop["lng"])
    return now + timedelta(minutes=estimate_delivery_minutes(distance))
