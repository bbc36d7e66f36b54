"""Tests for the haversine helpers."""

import math

import pytest

from buspass.core.geo import InvalidCoordinates, distance_m, offset_point, validate_coordinates


def test_same_point_is_zero():
    assert distance_m(12.9716, 77.5946, 12.9716, 77.5946) == 0.0


def test_one_degree_of_latitude():
    # 2 * pi * 6371 km / 360
    assert distance_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_194.93, abs=0.1)


def test_symmetric():
    a = distance_m(12.9716, 77.5946, 12.9800, 77.6000)
    b = distance_m(12.9800, 77.6000, 12.9716, 77.5946)
    assert a == pytest.approx(b)


def test_longitude_shrinks_with_latitude():
    at_equator = distance_m(0.0, 0.0, 0.0, 1.0)
    at_sixty = distance_m(60.0, 0.0, 60.0, 1.0)
    assert at_sixty == pytest.approx(at_equator / 2, rel=1e-3)


def test_antimeridian_is_short():
    assert distance_m(0.0, 179.9995, 0.0, -179.9995) < 200


@pytest.mark.parametrize("lat, lon", [
    (math.nan, 0.0),
    (0.0, math.inf),
    (90.5, 0.0),
    (0.0, -180.5),
])
def test_invalid_coordinates_rejected(lat, lon):
    with pytest.raises(InvalidCoordinates):
        validate_coordinates(lat, lon)


def test_valid_coordinates_pass():
    validate_coordinates(-90.0, 180.0)
    validate_coordinates(12.9716, 77.5946)


def test_offset_point_moves_past_departure_radius():
    lat, lon = offset_point(12.9716, 77.5946, 0.001, 0.001)
    assert distance_m(12.9716, 77.5946, lat, lon) > 80


def test_offset_point_clamps_and_wraps():
    lat, lon = offset_point(89.9995, 179.9995, 0.001, 0.001)
    assert lat == 90.0
    assert -180.0 <= lon < -179.99
