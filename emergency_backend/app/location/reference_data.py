"""
Static reference data for offline location handling.

    REFERENCE_CITIES         — anchors for the offline reverse-geocode fallback
    SERVICE_TEMPLATES        — built-in nearby-service directory, positioned
                               relative to the caller
    US_JURISDICTION_BOXES    — rough US bounding boxes (continental, Hawaii,
                               Alaska) for the informational zone lookup
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ReferenceCity:
    name: str
    latitude: float
    longitude: float


REFERENCE_CITIES: Tuple[ReferenceCity, ...] = (
    ReferenceCity("New York, NY",    40.7128,  -74.0060),
    ReferenceCity("Los Angeles, CA", 34.0522, -118.2437),
    ReferenceCity("Chicago, IL",     41.8781,  -87.6298),
    ReferenceCity("Houston, TX",     29.7604,  -95.3698),
    ReferenceCity("Phoenix, AZ",     33.4484, -112.0740),
)


@dataclass(frozen=True)
class ServiceTemplate:
    name: str
    service_type: str          # hospital | fire_station | police_station | urgent_care
    lat_offset: float
    lon_offset: float
    address: str
    phone: str


SERVICE_TYPES = ("hospital", "fire_station", "police_station", "urgent_care")

SERVICE_TEMPLATES: Tuple[ServiceTemplate, ...] = (
    ServiceTemplate("General Hospital",  "hospital",        0.010,  0.010,
                    "123 Medical Center Dr", "(555) 123-4567"),
    ServiceTemplate("Fire Station 12",   "fire_station",   -0.008,  0.005,
                    "456 Fire House Rd",     "(555) 234-5678"),
    ServiceTemplate("Police Precinct 3", "police_station",  0.005, -0.010,
                    "789 Justice Blvd",      "(555) 345-6789"),
)


# (min_lat, max_lat, min_lon, max_lon)
US_JURISDICTION_BOXES: Tuple[Tuple[float, float, float, float], ...] = (
    (24.396308, 49.384358, -125.0,      -66.93457),    # continental
    (18.91619,  28.402123, -178.334698, -154.806773),  # Hawaii
    (51.209464, 71.406235, -179.148909, -129.979506),  # Alaska
)
