"""
enricher.py — Best-effort location enrichment.

Turns raw coordinates into something a human responder can use:

    • reverse_geocode   coordinates → address string
    • geocode_address   address → coordinates (provider only)
    • find_nearby       ranked list of nearby emergency services
    • emergency_zone    informational jurisdiction lookup

═══════════════════════════════════════════════════════════════════════════
REVERSE-GEOCODE RESOLUTION ORDER
═══════════════════════════════════════════════════════════════════════════

    1. Invalid coordinates          → None (not found)
    2. Redis cache hit              → cached address
    3. Geocoding provider           → formatted address
          (bounded by ``timeout``; failure/timeout falls through)
    4. Offline heuristic            → "Near <city>" within the fallback
                                      radius of a reference city,
                                      otherwise "lat, lon" to 4 decimals

Enrichment never raises to its caller: provider failures are
``EnrichmentFailure``s that are logged and absorbed here.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from emergency_backend.app.core.cache import RedisCache
from emergency_backend.app.core.errors import EnrichmentFailure
from emergency_backend.app.location.geo import (
    Coordinate,
    format_coordinates,
    haversine_m,
    is_valid_coordinates,
    within_radius,
)
from emergency_backend.app.location.reference_data import (
    REFERENCE_CITIES,
    SERVICE_TEMPLATES,
    SERVICE_TYPES,
    US_JURISDICTION_BOXES,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class EmergencyServiceLocation:
    name: str
    service_type: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    phone: Optional[str] = None
    distance_m: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.service_type,
            "coordinates": {"latitude": self.latitude, "longitude": self.longitude},
            "address": self.address,
            "phone": self.phone,
            "distance": round(self.distance_m, 1) if self.distance_m is not None else None,
        }


@dataclass(frozen=True)
class EmergencyZone:
    zone: str
    emergency_number: str
    jurisdiction: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "zone": self.zone,
            "emergencyNumber": self.emergency_number,
            "jurisdiction": self.jurisdiction,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Geocoding Providers
# ═══════════════════════════════════════════════════════════════════════════

class GeocodingProvider(ABC):
    """Remote geocoder. Implementations raise EnrichmentFailure on errors."""

    @abstractmethod
    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        ...

    async def forward(self, address: str) -> Optional[Coordinate]:
        return None

    async def close(self) -> None:
        return None


class GoogleGeocodingProvider(GeocodingProvider):
    """Google Geocoding API (``/maps/api/geocode/json``) over httpx."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://maps.googleapis.com/maps/api/geocode/json",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _query(self, params: Dict[str, str]) -> List[Dict[str, Any]]:
        client = await self._get_client()
        try:
            response = await client.get(self._base_url, params={**params, "key": self._api_key})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise EnrichmentFailure(f"Geocoding request failed: {e}") from e

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise EnrichmentFailure(
                f"Geocoding status {status}: {data.get('error_message', 'no detail')}"
            )
        return data.get("results") or []

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        results = await self._query({"latlng": f"{latitude},{longitude}"})
        return results[0].get("formatted_address") if results else None

    async def forward(self, address: str) -> Optional[Coordinate]:
        results = await self._query({"address": address})
        if not results:
            return None
        loc = results[0]["geometry"]["location"]
        return Coordinate(loc["lat"], loc["lng"])


# ═══════════════════════════════════════════════════════════════════════════
# Service Directory
# ═══════════════════════════════════════════════════════════════════════════

class ServiceDirectory(ABC):
    """Source of candidate emergency services around a point (unranked)."""

    @abstractmethod
    def candidates(self, center: Coordinate) -> List[EmergencyServiceLocation]:
        ...


class BuiltinServiceDirectory(ServiceDirectory):
    """Offline directory: fixed services placed at offsets from the caller."""

    def candidates(self, center: Coordinate) -> List[EmergencyServiceLocation]:
        services = []
        for t in SERVICE_TEMPLATES:
            lat = max(-90.0, min(90.0, center.latitude + t.lat_offset))
            lon = max(-180.0, min(180.0, center.longitude + t.lon_offset))
            services.append(EmergencyServiceLocation(
                name=t.name,
                service_type=t.service_type,
                latitude=lat,
                longitude=lon,
                address=t.address,
                phone=t.phone,
            ))
        return services


# ═══════════════════════════════════════════════════════════════════════════
# Enricher
# ═══════════════════════════════════════════════════════════════════════════

class LocationEnricher:
    """
    Parameters
    ----------
    geocoder : GeocodingProvider | None
        Remote geocoder; None means offline fallback only.
    cache : RedisCache | None
        Memoises provider results.
    timeout : float
        Seconds allowed per provider call.
    fallback_radius_m : float
        Reference-city radius for the offline "Near <city>" heuristic.
    directory : ServiceDirectory | None
        Nearby-service source (built-in offline directory by default).
    """

    def __init__(
        self,
        geocoder: Optional[GeocodingProvider] = None,
        *,
        cache: Optional[RedisCache] = None,
        timeout: float = 5.0,
        fallback_radius_m: float = 500.0,
        directory: Optional[ServiceDirectory] = None,
    ):
        self._geocoder = geocoder
        self._cache = cache
        self._timeout = timeout
        self._fallback_radius_m = fallback_radius_m
        self._directory = directory or BuiltinServiceDirectory()

    @property
    def has_provider(self) -> bool:
        return self._geocoder is not None

    # ── Reverse geocoding ──

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[str]:
        if not is_valid_coordinates(latitude, longitude):
            logger.debug("Reverse geocode skipped for invalid coordinates (%r, %r)", latitude, longitude)
            return None

        key = f"{latitude:.5f},{longitude:.5f}"
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached:
                return cached

        if self._geocoder is not None:
            try:
                address = await asyncio.wait_for(
                    self._geocoder.reverse(latitude, longitude),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Reverse geocode timed out after %.1fs; using fallback", self._timeout)
            except EnrichmentFailure as e:
                logger.warning("Reverse geocode failed: %s; using fallback", e)
            except Exception:
                logger.exception("Geocoding provider raised unexpectedly; using fallback")
            else:
                if address:
                    if self._cache is not None:
                        await self._cache.set(key, address)
                    return address

        return self.fallback_reverse_geocode(latitude, longitude)

    def fallback_reverse_geocode(self, latitude: float, longitude: float) -> str:
        """Offline heuristic: nearest reference city, else formatted coordinates."""
        here = Coordinate(latitude, longitude)
        for city in REFERENCE_CITIES:
            if haversine_m(here, Coordinate(city.latitude, city.longitude)) < self._fallback_radius_m:
                return f"Near {city.name}"
        return format_coordinates(latitude, longitude, precision=4)

    # ── Forward geocoding ──

    async def geocode_address(self, address: str) -> Optional[Coordinate]:
        if self._geocoder is None or not address.strip():
            return None
        try:
            return await asyncio.wait_for(self._geocoder.forward(address), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Forward geocode timed out after %.1fs", self._timeout)
        except EnrichmentFailure as e:
            logger.warning("Forward geocode failed: %s", e)
        return None

    # ── Nearby services ──

    async def find_nearby(
        self,
        center: Coordinate,
        service_type: Optional[str] = None,
        radius_m: float = 5_000.0,
    ) -> List[EmergencyServiceLocation]:
        """Services within ``radius_m``, nearest first, with ``distance_m`` set."""
        if service_type is not None and service_type not in SERVICE_TYPES:
            raise ValueError(
                f"Unknown service type '{service_type}'. Expected one of: {', '.join(SERVICE_TYPES)}"
            )
        candidates = [
            s for s in self._directory.candidates(center)
            if service_type is None or s.service_type == service_type
        ]
        ranked = within_radius(
            center, candidates, radius_m,
            position=lambda s: s.coordinate,
        )
        for service, dist in ranked:
            service.distance_m = dist
        return [service for service, _ in ranked]

    # ── Jurisdiction ──

    def emergency_zone(self, center: Coordinate) -> EmergencyZone:
        for min_lat, max_lat, min_lon, max_lon in US_JURISDICTION_BOXES:
            if min_lat <= center.latitude <= max_lat and min_lon <= center.longitude <= max_lon:
                return EmergencyZone("United States", "911", "Local Emergency Services")
        return EmergencyZone("International", "112", "International Emergency Services")

    async def close(self) -> None:
        if self._geocoder is not None:
            await self._geocoder.close()
        if self._cache is not None:
            await self._cache.close()
