"""
test_geo.py — Geodesy helpers: validation, haversine, bounding box,
radius search and display formatting.

Run with:
    pytest tests/test_geo.py -v
"""

from __future__ import annotations

import math

import pytest

from emergency_backend.app.location.geo import (
    EARTH_RADIUS_M,
    Coordinate,
    bounding_box,
    format_coordinates,
    format_distance,
    haversine_km,
    haversine_m,
    inside_bbox,
    is_valid_coordinates,
    maps_url,
    validate_coordinates,
    within_radius,
)

NYC = Coordinate(40.7128, -74.0060)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestValidation:

    def test_valid_pair_returned_as_floats(self):
        assert validate_coordinates(10, -20) == (10.0, -20.0)

    @pytest.mark.parametrize("lat,lon", [
        (90.1, 0), (-90.1, 0), (0, 180.5), (0, -181),
    ])
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(ValueError):
            validate_coordinates(lat, lon)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "40.1", None, True])
    def test_non_numeric_or_non_finite_rejected(self, value):
        assert not is_valid_coordinates(value, 0.0)

    def test_boundaries_accepted(self):
        assert is_valid_coordinates(90, 180)
        assert is_valid_coordinates(-90, -180)

    def test_coordinate_validates_on_construction(self):
        with pytest.raises(ValueError):
            Coordinate(95.0, 0.0)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Haversine
# ═══════════════════════════════════════════════════════════════════════════

class TestHaversine:

    def test_one_degree_longitude_at_equator(self):
        d = haversine_m(Coordinate(0, 0), Coordinate(0, 1))
        assert d == pytest.approx(111_320, rel=0.01)

    def test_zero_distance(self):
        assert haversine_m(NYC, NYC) == 0.0

    def test_symmetric(self):
        la = Coordinate(34.0522, -118.2437)
        assert haversine_m(NYC, la) == pytest.approx(haversine_m(la, NYC))

    def test_nyc_to_la_roughly_3936_km(self):
        la = Coordinate(34.0522, -118.2437)
        assert haversine_km(NYC, la) == pytest.approx(3936, rel=0.01)

    def test_antipodal_points_half_circumference(self):
        d = haversine_m(Coordinate(0, 0), Coordinate(0, 180))
        assert d == pytest.approx(math.pi * EARTH_RADIUS_M)


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Bounding box & radius search
# ═══════════════════════════════════════════════════════════════════════════

class TestRadiusSearch:

    def test_bounding_box_contains_center(self):
        box = bounding_box(NYC, 1_000)
        assert inside_bbox(NYC.latitude, NYC.longitude, *box)

    def test_bounding_box_clamped_at_pole(self):
        min_lat, max_lat, min_lon, max_lon = bounding_box(Coordinate(89.99, 0), 50_000)
        assert max_lat == 90.0
        assert min_lon == -180.0 and max_lon == 180.0

    def test_within_radius_sorted_nearest_first(self):
        points = [
            Coordinate(40.7300, -74.0060),   # ~1.9 km
            Coordinate(40.7138, -74.0060),   # ~110 m
            Coordinate(40.8000, -74.0060),   # ~9.7 km
        ]
        hits = within_radius(NYC, points, 5_000, position=lambda p: p)
        assert [p for p, _ in hits] == [points[1], points[0]]
        assert hits[0][1] < hits[1][1]

    def test_max_results(self):
        points = [Coordinate(40.7128 + i * 0.001, -74.0060) for i in range(5)]
        hits = within_radius(NYC, points, 10_000, position=lambda p: p, max_results=2)
        assert len(hits) == 2

    def test_non_positive_radius_rejected(self):
        with pytest.raises(ValueError):
            within_radius(NYC, [], 0, position=lambda p: p)


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Display
# ═══════════════════════════════════════════════════════════════════════════

class TestDisplay:

    def test_maps_url(self):
        assert maps_url(40.7128, -74.006) == "https://maps.google.com/maps?q=40.7128,-74.006"

    def test_maps_url_with_zoom(self):
        assert maps_url(1.5, 2.5, zoom=15).endswith("&z=15")

    def test_format_coordinates(self):
        assert format_coordinates(40.7128, -74.006, precision=4) == "40.7128, -74.0060"

    def test_format_distance(self):
        assert format_distance(450.7) == "451 m"
        assert format_distance(3726.6) == "3.7 km"
