from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from backend.app.fraud.types import Location, as_utc

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Location, b: Location) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    h = min(1.0, h)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_km(a: Optional[Location], b: Optional[Location]) -> Optional[float]:
    if a is None or b is None:
        return None
    return haversine_km(a, b)


def hours_between(a: datetime, b: datetime) -> float:
    return abs((as_utc(a) - as_utc(b)).total_seconds()) / 3600.0
