from __future__ import annotations

import math
import time

import pytest

from gems_api.core.errors import MalformedInput
from gems_api.models.dto import Coordinates
from gems_api.utils import geohash
from gems_api.utils.haversine import EARTH_RADIUS_KM, calculate_distance


def destination(center: Coordinates, distance_km: float, bearing_deg: float) -> Coordinates:
    """Point reached by travelling distance_km from center along bearing_deg."""
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing_deg)
    phi1 = math.radians(center.lat)
    lam1 = math.radians(center.lng)
    phi2 = math.asin(math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lam2 = lam1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lng = (math.degrees(lam2) + 540.0) % 360.0 - 180.0
    return Coordinates(lat=max(-90.0, min(90.0, math.degrees(phi2))), lng=lng)


def test_encode_known_values():
    assert geohash.encode(42.6, -5.6, 5) == "ezs42"
    assert geohash.encode(57.64911, 10.40744, 11) == "u4pruydqqvj"
    assert geohash.encode(0.0, 0.0, 3) == "s00"


def test_encode_is_deterministic():
    assert geohash.encode(-8.5069, 115.2625, 9) == geohash.encode(-8.5069, 115.2625, 9)


def test_encode_boundaries_resolve_to_upper_half():
    assert geohash.encode(90.0, 180.0, 1) == "z"
    assert geohash.encode(-90.0, -180.0, 1) == "0"
    assert geohash.encode(90.0, 180.0, 12) == "z" * 12


@pytest.mark.parametrize("precision", [0, 13, -1])
def test_encode_rejects_bad_precision(precision):
    with pytest.raises(MalformedInput):
        geohash.encode(10.0, 10.0, precision)


@pytest.mark.parametrize("lat,lng", [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (float("nan"), 0.0)])
def test_encode_rejects_out_of_range_coordinates(lat, lng):
    with pytest.raises(MalformedInput):
        geohash.encode(lat, lng, 6)


@pytest.mark.parametrize("lat,lng", [
    (-8.5069, 115.2625),
    (51.5007, -0.1246),
    (-33.8568, 151.2153),
    (0.0, 0.0),
    (89.9999, 179.9999),
    (-89.9999, -179.9999),
])
@pytest.mark.parametrize("precision", [1, 5, 9, 12])
def test_decoded_bounds_contain_encoded_point(lat, lng, precision):
    bounds = geohash.decode_bounds(geohash.encode(lat, lng, precision))
    assert bounds.min_lat <= bounds.max_lat
    assert bounds.min_lng <= bounds.max_lng
    assert bounds.contains(lat, lng)


def test_longer_hashes_nest_inside_their_prefix():
    full = geohash.encode(-8.5069, 115.2625, 12)
    for length in range(1, 12):
        outer = geohash.decode_bounds(full[:length])
        inner = geohash.decode_bounds(full[:length + 1])
        assert outer.min_lat <= inner.min_lat and inner.max_lat <= outer.max_lat
        assert outer.min_lng <= inner.min_lng and inner.max_lng <= outer.max_lng


def test_decode_skips_characters_outside_alphabet():
    assert geohash.decode_bounds("ez!s4a2") == geohash.decode_bounds("ezs42")
    assert geohash.clean("ez!s4a2") == "ezs42"


def test_decode_returns_cell_center():
    center = geohash.decode("ezs42")
    assert center.lat == pytest.approx(42.605, abs=0.03)
    assert center.lng == pytest.approx(-5.603, abs=0.03)


def test_neighbors_of_interior_cell():
    cells = geohash.neighbors("ezs42")
    assert cells[0] == "ezs42"
    assert len(cells) == 9
    assert len(set(cells)) == 9
    assert all(len(c) == 5 for c in cells)
    # well-known adjacent cells
    assert "ezs48" in cells  # north
    assert "ezs43" in cells  # east


def test_neighbors_skip_beyond_pole():
    top = geohash.encode(89.99, 0.0, 2)
    cells = geohash.neighbors(top)
    assert len(cells) == 6
    assert all(geohash.decode_bounds(c).max_lat <= 90.0 for c in cells)


def test_neighbors_wrap_across_antimeridian():
    east_edge = geohash.encode(0.0, 179.99, 3)
    cells = geohash.neighbors(east_edge)
    assert len(cells) == 9
    assert any(geohash.decode(c).lng < 0 for c in cells)


def test_neighbors_rejects_garbage():
    with pytest.raises(MalformedInput):
        geohash.neighbors("!!!")


def test_precision_for_radius_is_coarser_for_larger_radius():
    radii = [0.00001, 0.001, 0.01, 0.1, 1, 5, 20, 100, 1000, 10000]
    precisions = [geohash.precision_for_radius(r) for r in radii]
    assert precisions == sorted(precisions, reverse=True)
    assert geohash.precision_for_radius(5) == 5
    assert geohash.precision_for_radius(1) == 6
    assert geohash.precision_for_radius(20000) == 1


def test_precision_for_radius_rejects_negative():
    with pytest.raises(MalformedInput):
        geohash.precision_for_radius(-1)


def test_queries_for_radius_bali_includes_nearby_cell():
    center = Coordinates(lat=-8.5069, lng=115.2625)
    queries = geohash.queries_for_radius(center, 5)
    target = geohash.encode(-8.51, 115.26, 5)
    assert target in [q.start for q in queries]
    assert any(q.matches(target) for q in queries)
    for q in queries:
        assert q.end == q.start + "~"


def test_queries_for_small_radius_use_neighborhood():
    center = Coordinates(lat=-8.5069, lng=115.2625)
    queries = geohash.queries_for_radius(center, 0.3)
    assert len(queries) == 9
    assert queries[0].start == geohash.encode(center.lat, center.lng, geohash.precision_for_radius(0.3))
    assert [q.start for q in queries] == geohash.neighbors(queries[0].start)


@pytest.mark.parametrize("radius_km", [0.00001, 0.001, 0.004])
def test_tiny_radius_at_pole_is_bounded_and_fast(radius_km):
    pole = Coordinates(lat=90.0, lng=0.0)
    started = time.perf_counter()
    queries = geohash.queries_for_radius(pole, radius_km)
    assert time.perf_counter() - started < 0.5
    assert 0 < len(queries) <= geohash.MAX_COVER_CELLS
    for bearing in range(0, 360, 15):
        point = destination(pole, radius_km * 0.999, bearing)
        cell = geohash.encode(point.lat, point.lng, 12)
        assert any(q.matches(cell) for q in queries), (point, radius_km)


@pytest.mark.parametrize("center", [
    Coordinates(lat=-8.5069, lng=115.2625),
    Coordinates(lat=60.1699, lng=24.9384),
    Coordinates(lat=0.0, lng=179.995),
    Coordinates(lat=0.0, lng=-179.995),
    Coordinates(lat=89.99, lng=45.0),
    Coordinates(lat=-89.95, lng=-120.0),
    Coordinates(lat=44.9999, lng=-0.0001),
])
@pytest.mark.parametrize("radius_km", [0.05, 1, 5, 20, 150, 2000])
def test_queries_cover_every_point_within_radius(center, radius_km):
    queries = geohash.queries_for_radius(center, radius_km)
    assert len(queries) <= geohash.MAX_COVER_CELLS
    for fraction in (0.0, 0.5, 0.999):
        for bearing in range(0, 360, 30):
            point = destination(center, radius_km * fraction, bearing)
            if calculate_distance(center, point) > radius_km:
                continue
            cell = geohash.encode(point.lat, point.lng, 12)
            assert any(q.matches(cell) for q in queries), (point, radius_km)
