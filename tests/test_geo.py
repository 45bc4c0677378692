"""
Tests for the geodesy helpers
"""
import math
from datetime import timedelta

import pytest

from visit_trust.schemas.submission import GPSCoordinate
from visit_trust.services.geo import (
    haversine_distance, distance_between, bearing, travel_speed, is_within_radius, format_distance,
    EARTH_RADIUS_M
)

from conftest import NOW


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_distance(42.3314, -83.0458, 42.3314, -83.0458) == 0

    def test_one_degree_of_latitude(self):
        # 2 * pi * 6371km / 360
        assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)

    def test_is_symmetric(self):
        a = haversine_distance(42.3314, -83.0458, 41.8781, -87.6298)
        b = haversine_distance(41.8781, -87.6298, 42.3314, -83.0458)
        assert a == pytest.approx(b)

    def test_detroit_to_chicago(self):
        distance = haversine_distance(42.3314, -83.0458, 41.8781, -87.6298)
        assert 375000 < distance < 385000

    def test_antipodal_points_do_not_overflow(self):
        # sin/cos rounding puts the haversine term just above 1 for this pair
        distance = haversine_distance(
            -11.056008330198168, -90.24960879264873,
            11.056008330198168, 89.75039120735127
        )
        assert distance == pytest.approx(math.pi * EARTH_RADIUS_M)


class TestBearing:
    def test_due_north(self):
        a = GPSCoordinate(latitude=0, longitude=0)
        b = GPSCoordinate(latitude=1, longitude=0)
        assert bearing(a, b) == pytest.approx(0)

    def test_due_east(self):
        a = GPSCoordinate(latitude=0, longitude=0)
        b = GPSCoordinate(latitude=0, longitude=1)
        assert bearing(a, b) == pytest.approx(90)

    def test_range(self):
        a = GPSCoordinate(latitude=42.3314, longitude=-83.0458)
        b = GPSCoordinate(latitude=41.8781, longitude=-87.6298)
        assert 0 <= bearing(a, b) < 360


class TestTravelSpeed:
    def test_speed_in_meters_per_second(self):
        a = GPSCoordinate(latitude=0, longitude=0, timestamp=NOW)
        b = GPSCoordinate(latitude=1, longitude=0, timestamp=NOW + timedelta(hours=1))
        assert travel_speed(a, b) == pytest.approx(111195 / 3600, rel=1e-3)

    def test_order_of_fixes_does_not_matter(self):
        a = GPSCoordinate(latitude=0, longitude=0, timestamp=NOW)
        b = GPSCoordinate(latitude=1, longitude=0, timestamp=NOW + timedelta(hours=1))
        assert travel_speed(a, b) == pytest.approx(travel_speed(b, a))

    def test_missing_timestamp(self):
        a = GPSCoordinate(latitude=0, longitude=0)
        b = GPSCoordinate(latitude=1, longitude=0, timestamp=NOW)
        assert travel_speed(a, b) is None

    def test_zero_elapsed(self):
        a = GPSCoordinate(latitude=0, longitude=0, timestamp=NOW)
        b = GPSCoordinate(latitude=1, longitude=0, timestamp=NOW)
        assert travel_speed(a, b) is None


class TestRadiusAndFormatting:
    def test_within_radius(self):
        target = GPSCoordinate(latitude=42.3314, longitude=-83.0458)
        near = GPSCoordinate(latitude=42.3317, longitude=-83.0460)
        assert is_within_radius(near, target, 100)
        assert not is_within_radius(near, target, 10)

    @pytest.mark.parametrize("meters,expected", [
        (85.4, "85m"),
        (999, "999m"),
        (1234, "1.2km"),
        (25300, "25km"),
    ])
    def test_format_distance(self, meters, expected):
        assert format_distance(meters) == expected
