"""Tests for the geospatial helpers."""
import pytest

from gatewatch.utils.geo import (
    centroid, cluster_key, find_nearest, geo_bounds, haversine_distance, image_bounds, pixel_distance,
)


def test_one_degree_of_longitude_on_the_equator():
    assert haversine_distance(0, 0, 0, 1) == pytest.approx(111_195, rel=1e-3)


def test_identical_points_are_zero_apart():
    assert haversine_distance(52.52, 13.405, 52.52, 13.405) == 0


def test_haversine_is_symmetric():
    a = haversine_distance(51.5007, -0.1246, 48.8584, 2.2945)
    b = haversine_distance(48.8584, 2.2945, 51.5007, -0.1246)
    assert a == pytest.approx(b)
    assert a == pytest.approx(340_000, rel=0.01)


def test_pixel_distance():
    assert pixel_distance(0, 0, 3, 4) == 5


def test_centroid_of_nothing_is_none():
    assert centroid([]) is None
    assert centroid([(1.0, 2.0), (3.0, 4.0)]) == (2.0, 3.0)


def test_cluster_key_rounds_to_four_decimals():
    assert cluster_key(40.712345, -74.006012) == (40.7123, -74.006)
    assert cluster_key(40.71231, -74.00601) == cluster_key(40.71234, -74.00604)


def test_geo_bounds_pads_a_single_point():
    (south, west), (north, east) = geo_bounds([(10.0, 20.0)])
    assert north - south == pytest.approx(0.001)
    assert east - west == pytest.approx(0.001)
    assert geo_bounds([]) is None


def test_geo_bounds_keeps_wide_spreads():
    assert geo_bounds([(0.0, 0.0), (1.0, 2.0)]) == ((0.0, 0.0), (1.0, 2.0))


def test_image_bounds_clamps_to_image():
    (min_y, min_x), (max_y, max_x) = image_bounds([(10.0, 10.0)], image_size=(100.0, 100.0))
    assert min_x == 0.0 and min_y == 0.0
    assert max_x == 35.0 and max_y == 35.0


def test_find_nearest_skips_items_without_position():
    gates = [
        {"name": "far", "pos": (0.0, 1.0)},
        {"name": "none", "pos": None},
        {"name": "near", "pos": (0.0, 0.001)},
    ]
    nearest, distance = find_nearest((0.0, 0.0), gates, lambda g: g["pos"])
    assert nearest["name"] == "near"
    assert distance == pytest.approx(111.2, rel=1e-2)
    assert find_nearest((0.0, 0.0), [], lambda g: g) is None


def test_find_nearest_on_a_floor_plan():
    points = [(0.0, 30.0), (40.0, 0.0)]
    nearest, distance = find_nearest((0.0, 0.0), points, lambda p: p, distance=pixel_distance)
    assert nearest == (0.0, 30.0)
    assert distance == 30
