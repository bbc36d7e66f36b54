"""Great-circle distance helpers for GPS-based stop detection.

All distances are haversine on a spherical Earth. Callers validate
coordinates before measuring; the distance functions themselves do not check.
"""

import math

EARTH_RADIUS_M = 6_371_000.0


class InvalidCoordinates(ValueError):
    """Raised for NaN, infinite, or out-of-range latitude/longitude."""


def validate_coordinates(lat: float, lon: float) -> None:
    """Reject coordinates that cannot describe a point on Earth."""
    for name, value, bound in (("latitude", lat, 90.0), ("longitude", lon, 180.0)):
        if value is None or not math.isfinite(value):
            raise InvalidCoordinates(f"{name} must be a finite number, got {value!r}")
        if abs(value) > bound:
            raise InvalidCoordinates(f"{name} {value} outside [-{bound:g}, {bound:g}]")


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two lat/lon points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (math.sin(dphi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) *
         math.sin(dlambda / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def offset_point(lat: float, lon: float, dlat: float, dlon: float) -> tuple[float, float]:
    """Shift a point by raw degree offsets, clamped to valid ranges."""
    new_lat = max(-90.0, min(90.0, lat + dlat))
    new_lon = ((lon + dlon + 180.0) % 360.0) - 180.0
    return new_lat, new_lon
