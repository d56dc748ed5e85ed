"""
Geofence
========

Great-circle distance on a spherical earth (haversine) and the inclusive
radius check used by check-ins. The check compares the distance rounded half up
to whole meters, the same value a rejection reports. The earth radius matches
the WGS-84 equatorial radius used by the mobile client, so both sides agree on
boundary cases.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from apps.pointcard.services.errors import ValidationError

EARTH_RADIUS_METERS = 6378137.0
DEFAULT_RADIUS_METERS = 50.0


@dataclass(frozen=True)
class GeofenceResult:
    distance: float
    radius: float

    @property
    def within(self) -> bool:
        return self.rounded_distance <= self.radius

    @property
    def rounded_distance(self) -> int:
        return int(math.floor(self.distance + 0.5))

    def to_dict(self) -> Dict[str, Any]:
        return {"distance": self.rounded_distance, "radius": self.radius, "within": self.within}


def validate_coordinate(latitude: Any, longitude: Any) -> Tuple[float, float]:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValidationError("latitude and longitude must be numbers")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError("latitude and longitude must be finite")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise ValidationError(
            "coordinate out of bounds", detail={"latitude": lat, "longitude": lon}
        )
    return lat, lon


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def destination_point(lat: float, lon: float, meters: float, bearing_degrees: float) -> Tuple[float, float]:
    """
    Point reached by travelling `meters` from (lat, lon) along a bearing.
    """
    delta = meters / EARTH_RADIUS_METERS
    theta = math.radians(bearing_degrees)
    phi1 = math.radians(lat)
    lmb1 = math.radians(lon)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lmb2 = lmb1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    return math.degrees(phi2), (math.degrees(lmb2) + 540.0) % 360.0 - 180.0


def check_geofence(
    latitude: float,
    longitude: float,
    center_latitude: float,
    center_longitude: float,
    radius: float,
    *,
    default_radius: float = DEFAULT_RADIUS_METERS,
) -> GeofenceResult:
    allowed = float(radius) if radius and radius > 0 else float(default_radius)
    return GeofenceResult(
        distance=distance_meters(latitude, longitude, center_latitude, center_longitude),
        radius=allowed,
    )
