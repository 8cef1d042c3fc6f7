"""
geo.py — Geodesy helpers for emergency locations.

Provides:
    - Coordinate validation (NaN/inf, non-numeric, out of range)
    - Haversine distance between two (lat, lon) points
    - Bounding-box pre-filter + radius filtering for nearby-service lookups
    - Display helpers: coordinate strings, Google Maps links, distances

Distances are in **metres** unless a function name says otherwise.
Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where:
    φ  = latitude in radians
    λ  = longitude in radians
    R  = Earth's mean radius = 6,371,008.8 m (IUGG)
    c  = angular distance in radians
    d  = great-circle distance

One degree of longitude on the equator is therefore ≈ 111,195 m.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_008.8  # IUGG mean radius
EARTH_RADIUS_KM: float = EARTH_RADIUS_M / 1000.0

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A validated geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        validate_coordinates(self.latitude, self.longitude)

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)


def validate_coordinates(latitude: Any, longitude: Any) -> Tuple[float, float]:
    """
    Return ``(lat, lon)`` as floats or raise ``ValueError``.

    Rejects booleans, non-numeric values, NaN/±inf and values outside
    [-90, 90] / [-180, 180].
    """
    for label, value in (("Latitude", latitude), ("Longitude", longitude)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{label} must be a number, got {value!r}")
        if not math.isfinite(value):
            raise ValueError(f"{label} must be finite, got {value}")
    if not (-90.0 <= latitude <= 90.0):
        raise ValueError(f"Latitude must be in [-90, 90], got {latitude}")
    if not (-180.0 <= longitude <= 180.0):
        raise ValueError(f"Longitude must be in [-180, 180], got {longitude}")
    return float(latitude), float(longitude)


def is_valid_coordinates(latitude: Any, longitude: Any) -> bool:
    try:
        validate_coordinates(latitude, longitude)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance in metres.

    Examples
    --------
    >>> round(haversine_m(Coordinate(0, 0), Coordinate(0, 1)))
    111195
    >>> haversine_m(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    # Guard against rounding pushing a just above 1 for antipodal points
    a = min(1.0, max(0.0, a))

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def haversine_km(point1: Coordinate, point2: Coordinate) -> float:
    """Great-circle distance in kilometres, rounded to 4 decimal places."""
    return round(haversine_m(point1, point2) / 1000.0, 4)


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

def bounding_box(center: Coordinate, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Lat/lon box fully containing the circle (center, radius_m).

    Returns (min_lat, max_lat, min_lon, max_lon) in degrees.
    """
    angular = radius_m / EARTH_RADIUS_M

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    # Longitude delta shrinks toward the poles
    lat_rad = math.radians(center.latitude)
    if math.cos(lat_rad) > 1e-10:
        delta_lon = math.degrees(angular / math.cos(lat_rad))
    else:
        delta_lon = 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        max(center.longitude - delta_lon, -180.0),
        min(center.longitude + delta_lon, 180.0),
    )


def inside_bbox(
    lat: float, lon: float,
    min_lat: float, max_lat: float,
    min_lon: float, max_lon: float,
) -> bool:
    return min_lat <= lat <= max_lat and min_lon <= lon <= max_lon


def within_radius(
    center: Coordinate,
    items: Iterable[T],
    radius_m: float,
    *,
    position: Callable[[T], Coordinate],
    max_results: Optional[int] = None,
) -> List[Tuple[T, float]]:
    """
    Items within ``radius_m`` of ``center`` as ``(item, distance_m)``,
    nearest first.
    """
    if radius_m <= 0:
        raise ValueError(f"Radius must be positive, got {radius_m}")

    bbox = bounding_box(center, radius_m)
    matched: List[Tuple[T, float]] = []
    for item in items:
        point = position(item)
        if not inside_bbox(point.latitude, point.longitude, *bbox):
            continue
        dist = haversine_m(center, point)
        if dist <= radius_m:
            matched.append((item, dist))

    matched.sort(key=lambda pair: pair[1])
    if max_results is not None:
        matched = matched[:max_results]
    return matched


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_coordinates(latitude: float, longitude: float, precision: int = 6) -> str:
    """
    >>> format_coordinates(40.7128, -74.006, precision=4)
    '40.7128, -74.0060'
    """
    return f"{latitude:.{precision}f}, {longitude:.{precision}f}"


def maps_url(latitude: float, longitude: float, zoom: Optional[int] = None) -> str:
    """
    >>> maps_url(40.7128, -74.006)
    'https://maps.google.com/maps?q=40.7128,-74.006'
    """
    url = f"https://maps.google.com/maps?q={latitude},{longitude}"
    if zoom is not None:
        url += f"&z={zoom}"
    return url


def format_distance(metres: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(450.7)
    '451 m'
    >>> format_distance(3726.6)
    '3.7 km'
    """
    if metres < 1000.0:
        return f"{round(metres)} m"
    return f"{metres / 1000.0:.1f} km"
