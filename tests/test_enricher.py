"""
test_enricher.py — Reverse geocoding with fallback, nearby services and the
jurisdiction lookup.

Run with:
    pytest tests/test_enricher.py -v
"""

from __future__ import annotations

import httpx
import pytest

from emergency_backend.app.core.errors import EnrichmentFailure
from emergency_backend.app.location.enricher import (
    GeocodingProvider,
    GoogleGeocodingProvider,
    LocationEnricher,
)
from emergency_backend.app.location.geo import Coordinate
from tests.doubles import HangingGeocoder, StaticGeocoder

NYC = Coordinate(40.7128, -74.0060)


class FailingGeocoder(GeocodingProvider):
    def __init__(self, exc: Exception):
        self.exc = exc

    async def reverse(self, latitude, longitude):
        raise self.exc


class DictCache:
    """In-memory stand-in with the RedisCache coroutine interface."""

    def __init__(self):
        self.data = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        self.data[key] = value
        return True

    async def close(self):
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Reverse geocoding
# ═══════════════════════════════════════════════════════════════════════════

class TestReverseGeocode:

    async def test_provider_result_used(self):
        enricher = LocationEnricher(StaticGeocoder("1 Main St"))
        assert await enricher.reverse_geocode(10.0, 10.0) == "1 Main St"

    async def test_offline_fallback_near_reference_city(self):
        enricher = LocationEnricher()
        assert await enricher.reverse_geocode(40.7128, -74.0060) == "Near New York, NY"

    async def test_offline_fallback_coordinates(self):
        enricher = LocationEnricher()
        assert await enricher.reverse_geocode(10.0, 20.123456) == "10.0000, 20.1235"

    async def test_invalid_coordinates_give_none(self):
        geocoder = StaticGeocoder()
        enricher = LocationEnricher(geocoder)
        assert await enricher.reverse_geocode(123.0, 0.0) is None
        assert geocoder.calls == 0

    async def test_timeout_falls_back(self):
        enricher = LocationEnricher(HangingGeocoder(), timeout=0.05)
        assert await enricher.reverse_geocode(10.0, 20.0) == "10.0000, 20.0000"

    @pytest.mark.parametrize("exc", [EnrichmentFailure("quota"), RuntimeError("boom")])
    async def test_provider_error_falls_back(self, exc):
        enricher = LocationEnricher(FailingGeocoder(exc))
        assert await enricher.reverse_geocode(10.0, 20.0) == "10.0000, 20.0000"

    async def test_empty_provider_answer_falls_back(self):
        enricher = LocationEnricher(StaticGeocoder(None))
        assert await enricher.reverse_geocode(40.7128, -74.0060) == "Near New York, NY"

    async def test_provider_results_cached(self):
        geocoder = StaticGeocoder("1 Main St")
        cache = DictCache()
        enricher = LocationEnricher(geocoder, cache=cache)

        assert await enricher.reverse_geocode(10.0, 10.0) == "1 Main St"
        assert await enricher.reverse_geocode(10.0, 10.0) == "1 Main St"
        assert geocoder.calls == 1
        assert cache.data == {"10.00000,10.00000": "1 Main St"}

    async def test_fallback_not_cached(self):
        cache = DictCache()
        enricher = LocationEnricher(FailingGeocoder(EnrichmentFailure("x")), cache=cache)
        await enricher.reverse_geocode(10.0, 10.0)
        assert cache.data == {}

    async def test_close_releases_cache(self):
        cache = DictCache()
        await LocationEnricher(StaticGeocoder(), cache=cache).close()
        assert cache.closed


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Google provider over a mocked transport
# ═══════════════════════════════════════════════════════════════════════════

def _google(handler) -> GoogleGeocodingProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleGeocodingProvider("test-key", client=client)


class TestGoogleGeocoding:

    async def test_reverse_ok(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json={
                "status": "OK",
                "results": [{"formatted_address": "350 5th Ave, New York"}],
            })

        geocoder = _google(handler)
        assert await geocoder.reverse(40.7484, -73.9857) == "350 5th Ave, New York"
        assert seen["latlng"] == "40.7484,-73.9857"
        assert seen["key"] == "test-key"
        await geocoder.close()

    async def test_zero_results(self):
        geocoder = _google(lambda r: httpx.Response(200, json={"status": "ZERO_RESULTS"}))
        assert await geocoder.reverse(0.0, 0.0) is None

    async def test_denied_raises_enrichment_failure(self):
        geocoder = _google(lambda r: httpx.Response(200, json={
            "status": "REQUEST_DENIED", "error_message": "bad key",
        }))
        with pytest.raises(EnrichmentFailure, match="bad key"):
            await geocoder.reverse(0.0, 0.0)

    async def test_http_error_raises_enrichment_failure(self):
        geocoder = _google(lambda r: httpx.Response(503))
        with pytest.raises(EnrichmentFailure):
            await geocoder.reverse(0.0, 0.0)

    async def test_forward(self):
        geocoder = _google(lambda r: httpx.Response(200, json={
            "status": "OK",
            "results": [{"geometry": {"location": {"lat": 1.5, "lng": 2.5}}}],
        }))
        enricher = LocationEnricher(geocoder)
        assert await enricher.geocode_address("somewhere") == Coordinate(1.5, 2.5)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Nearby services & zone
# ═══════════════════════════════════════════════════════════════════════════

class TestNearbyServices:

    async def test_all_types_nearest_first(self):
        services = await LocationEnricher().find_nearby(NYC, radius_m=5_000)
        assert len(services) == 3
        distances = [s.distance_m for s in services]
        assert distances == sorted(distances)
        assert all(d < 2_000 for d in distances)

    async def test_type_filter(self):
        services = await LocationEnricher().find_nearby(NYC, "hospital", 5_000)
        assert [s.name for s in services] == ["General Hospital"]
        assert services[0].to_dict()["type"] == "hospital"

    async def test_small_radius_excludes_everything(self):
        assert await LocationEnricher().find_nearby(NYC, radius_m=100) == []

    async def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            await LocationEnricher().find_nearby(NYC, "bakery")


class TestEmergencyZone:

    def test_united_states(self):
        zone = LocationEnricher().emergency_zone(NYC)
        assert zone.emergency_number == "911"
        assert zone.zone == "United States"

    def test_international(self):
        zone = LocationEnricher().emergency_zone(Coordinate(51.5074, -0.1278))
        assert zone.emergency_number == "112"
