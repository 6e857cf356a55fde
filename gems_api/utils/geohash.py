# Geohash codec and radius query planner.
# Pure functions; safe to call from any worker without coordination.

import math
from typing import Dict, List, Optional, Tuple

from gems_api.core.errors import MalformedInput
from gems_api.models.dto import Coordinates, GeohashBounds, RangeQuery
from gems_api.utils.haversine import EARTH_RADIUS_KM

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
_BASE32_MAP: Dict[str, int] = {c: i for i, c in enumerate(BASE32)}
_BITS = (16, 8, 4, 2, 1)

MIN_PRECISION = 1
MAX_PRECISION = 12

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180.0

# (largest radius in km, precision). Roughly the cell edge at the equator;
# queries_for_radius widens the cover whenever a cell turns out smaller.
_RADIUS_PRECISION_TABLE: Tuple[Tuple[float, int], ...] = (
    (0.00004, 12),
    (0.00015, 11),
    (0.0012, 10),
    (0.005, 9),
    (0.04, 8),
    (0.15, 7),
    (1.2, 6),
    (5.0, 5),
    (40.0, 4),
    (160.0, 3),
    (1250.0, 2),
)

# Upper bound on range queries issued for one search before coarsening.
MAX_COVER_CELLS = 32


def _check_precision(precision: int) -> None:
    if not isinstance(precision, int) or isinstance(precision, bool):
        raise MalformedInput(f"precision must be an integer, got {precision!r}")
    if precision < MIN_PRECISION or precision > MAX_PRECISION:
        raise MalformedInput(f"precision must be between {MIN_PRECISION} and {MAX_PRECISION}, got {precision}")


def _check_coordinate(lat: float, lng: float) -> None:
    if math.isnan(lat) or math.isnan(lng):
        raise MalformedInput("coordinates must not be NaN")
    if not -90.0 <= lat <= 90.0:
        raise MalformedInput(f"latitude out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise MalformedInput(f"longitude out of range: {lng}")


def encode(lat: float, lng: float, precision: int = 9) -> str:
    """
    Encode a coordinate into a geohash of the given length.

    Bits alternate longitude/latitude, longitude first. A value equal to the
    midpoint goes to the upper half, so +90 and +180 resolve deterministically.

    Raises:
        MalformedInput: precision outside 1..12, or an out-of-range/NaN coordinate.
    """
    _check_precision(precision)
    _check_coordinate(lat, lng)

    lat_interval = [-90.0, 90.0]
    lng_interval = [-180.0, 180.0]
    geohash = []
    even = True
    bit = 0
    ch = 0

    while len(geohash) < precision:
        if even:
            mid = (lng_interval[0] + lng_interval[1]) / 2
            if lng >= mid:
                ch |= _BITS[bit]
                lng_interval[0] = mid
            else:
                lng_interval[1] = mid
        else:
            mid = (lat_interval[0] + lat_interval[1]) / 2
            if lat >= mid:
                ch |= _BITS[bit]
                lat_interval[0] = mid
            else:
                lat_interval[1] = mid

        even = not even
        if bit < 4:
            bit += 1
        else:
            geohash.append(BASE32[ch])
            bit = 0
            ch = 0

    return "".join(geohash)


def decode_bounds(geohash: str) -> GeohashBounds:
    """
    Decode a geohash into the rectangle it covers.

    Decoding is lenient: characters outside the base-32 alphabet are skipped,
    so partially corrupt input still yields the bounds of its valid characters.
    """
    lat_interval = [-90.0, 90.0]
    lng_interval = [-180.0, 180.0]
    even = True

    for c in geohash:
        cd = _BASE32_MAP.get(c)
        if cd is None:
            continue
        for mask in _BITS:
            if even:
                mid = (lng_interval[0] + lng_interval[1]) / 2
                if cd & mask:
                    lng_interval[0] = mid
                else:
                    lng_interval[1] = mid
            else:
                mid = (lat_interval[0] + lat_interval[1]) / 2
                if cd & mask:
                    lat_interval[0] = mid
                else:
                    lat_interval[1] = mid
            even = not even

    return GeohashBounds(
        min_lat=lat_interval[0],
        max_lat=lat_interval[1],
        min_lng=lng_interval[0],
        max_lng=lng_interval[1],
    )


def decode(geohash: str) -> Coordinates:
    """Centre point of the geohash cell."""
    return decode_bounds(geohash).center


def clean(geohash: str) -> str:
    """Drop characters that are not part of the geohash alphabet."""
    return "".join(c for c in geohash if c in _BASE32_MAP)


def _wrap_lng(lng: float) -> float:
    if lng >= 180.0:
        return lng - 360.0
    if lng < -180.0:
        return lng + 360.0
    return lng


def neighbors(geohash: str) -> List[str]:
    """
    The cell itself plus its (up to) 8 compass neighbours at the same precision.

    Offsets past a pole are skipped; offsets past the antimeridian wrap around.
    The result is deduplicated and starts with the centre cell.

    Raises:
        MalformedInput: the hash contains no valid geohash character.
    """
    cleaned = clean(geohash)
    if not cleaned:
        raise MalformedInput(f"not a geohash: {geohash!r}")
    precision = len(cleaned)
    bounds = decode_bounds(cleaned)
    center = bounds.center

    result = [cleaned]
    for dlat in (1, 0, -1):
        for dlng in (0, 1, -1):
            if dlat == 0 and dlng == 0:
                continue
            lat = center.lat + dlat * bounds.lat_span
            if not -90.0 <= lat <= 90.0:
                continue
            lng = _wrap_lng(center.lng + dlng * bounds.lng_span)
            cell = encode(lat, lng, precision)
            if cell not in result:
                result.append(cell)
    return result


def precision_for_radius(radius_km: float) -> int:
    """
    Pick a geohash precision whose cells are about the size of the search radius.

    Coarser precision for larger radii. This is an approximation; callers
    must still filter candidates by exact distance.
    """
    if math.isnan(radius_km) or radius_km < 0:
        raise MalformedInput(f"radius must be a non-negative number, got {radius_km}")
    for max_radius, precision in _RADIUS_PRECISION_TABLE:
        if radius_km <= max_radius:
            return precision
    return MIN_PRECISION


def _cell_spans(precision: int) -> Tuple[float, float]:
    """Cell (lat, lng) size in degrees at the given precision."""
    bits = precision * 5
    lat_bits = bits // 2
    lng_bits = bits - lat_bits
    return 180.0 / (2 ** lat_bits), 360.0 / (2 ** lng_bits)


def _search_box(center: Coordinates, radius_km: float) -> Tuple[float, float, Optional[float]]:
    """
    Latitude band and longitude half-width (degrees) enclosing the search circle.

    The half-width is None when the circle reaches a pole or spans every
    longitude, in which case the whole band has to be covered.
    """
    delta = radius_km / EARTH_RADIUS_KM
    lat_lo = center.lat - math.degrees(delta)
    lat_hi = center.lat + math.degrees(delta)
    if lat_lo <= -90.0 or lat_hi >= 90.0:
        return max(lat_lo, -90.0), min(lat_hi, 90.0), None

    ratio = math.sin(delta) / math.cos(math.radians(center.lat))
    if ratio >= 1.0:
        return lat_lo, lat_hi, None
    dlng = math.degrees(math.asin(ratio))
    if dlng >= 180.0:
        return lat_lo, lat_hi, None
    return lat_lo, lat_hi, dlng


def _neighborhood_covers(center: Coordinates, radius_km: float, precision: int) -> bool:
    """True when the 3x3 block around the centre cell contains the whole circle."""
    lat_lo, lat_hi, dlng = _search_box(center, radius_km)
    if dlng is None:
        return False
    lat_span, lng_span = _cell_spans(precision)
    # Cell rows are at least lat_span tall and columns lng_span wide everywhere,
    # so the circle stays inside the block if it moves less than one cell.
    return (center.lat - lat_lo) <= lat_span and (lat_hi - center.lat) <= lat_span and dlng <= lng_span


def _box_cover(center: Coordinates, radius_km: float, precision: int) -> Optional[List[str]]:
    """All cells at `precision` intersecting the search box, or None if too many."""
    lat_lo, lat_hi, dlng = _search_box(center, radius_km)
    lat_span, lng_span = _cell_spans(precision)
    n_rows = round(180.0 / lat_span)
    n_cols = round(360.0 / lng_span)

    row_lo = max(0, min(n_rows - 1, int(math.floor((lat_lo + 90.0) / lat_span))))
    row_hi = max(0, min(n_rows - 1, int(math.floor((lat_hi + 90.0) / lat_span))))

    if dlng is None:
        col_lo, col_hi = 0, n_cols - 1
    else:
        col_lo = int(math.floor((center.lng - dlng + 180.0) / lng_span))
        col_hi = int(math.floor((center.lng + dlng + 180.0) / lng_span))
    n_selected = min(n_cols, col_hi - col_lo + 1)

    # Count before materialising: at fine precisions a full band is 2**30 columns.
    if (row_hi - row_lo + 1) * n_selected > MAX_COVER_CELLS:
        return None

    if n_selected == n_cols:
        cols = list(range(n_cols))
    else:
        cols = sorted({c % n_cols for c in range(col_lo, col_hi + 1)})

    cells = []
    for row in range(row_lo, row_hi + 1):
        lat = -90.0 + (row + 0.5) * lat_span
        for col in cols:
            lng = -180.0 + (col + 0.5) * lng_span
            cells.append(encode(lat, lng, precision))
    return cells


def queries_for_radius(center: Coordinates, radius_km: float) -> List[RangeQuery]:
    """
    Build prefix range queries whose union contains every point within
    `radius_km` of `center`.

    The normal case is the centre cell plus its neighbours at
    precision_for_radius(radius_km). When those cells are smaller than the
    radius (near the poles, or radii just above a table threshold) the cover
    is widened to every cell touching the circle's bounding box, coarsening
    the precision until the cover is small enough. Over-inclusion is expected;
    the ranker applies the exact distance filter afterwards.
    """
    precision = precision_for_radius(radius_km)

    if _neighborhood_covers(center, radius_km, precision):
        cells = neighbors(encode(center.lat, center.lng, precision))
        return [RangeQuery.for_prefix(cell) for cell in cells]

    while precision >= MIN_PRECISION:
        cells = _box_cover(center, radius_km, precision)
        if cells is not None:
            return [RangeQuery.for_prefix(cell) for cell in cells]
        precision -= 1

    # Nothing short of the whole index covers this circle.
    return [RangeQuery.for_prefix("")]
