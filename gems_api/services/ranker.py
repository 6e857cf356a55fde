# Proximity ranking: exact distance, stable ordering, display formatting
# and page slicing for distance-sorted result lists.

import math
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from gems_api.core.errors import MalformedInput
from gems_api.models.dto import Coordinates, DistanceAnnotated, Pagination
from gems_api.utils.haversine import calculate_distance

T = TypeVar("T")


def _coordinates_of(item) -> Coordinates:
    if isinstance(item, Coordinates):
        return item
    coords = getattr(item, "coordinates", None)
    if isinstance(coords, Coordinates):
        return coords
    raise MalformedInput(f"cannot locate coordinates on {type(item).__name__}")


def rank(
    candidates: Iterable[T],
    center: Coordinates,
    key: Optional[Callable[[T], Coordinates]] = None,
) -> List[DistanceAnnotated[T]]:
    """
    Annotate each candidate with its distance from `center` and sort ascending.

    Ties keep their input order. Candidates that are already annotated are
    unwrapped first, so ranking a ranked list is a no-op.

    Args:
        candidates: Items to rank (already narrowed by the geohash filter).
        center: The user's location.
        key: Extracts coordinates from a candidate. Defaults to the item
            itself if it is a Coordinates, else its `coordinates` attribute.
    """
    get_coordinates = key or _coordinates_of
    annotated = []
    for candidate in candidates:
        item = candidate.item if isinstance(candidate, DistanceAnnotated) else candidate
        distance = calculate_distance(center, get_coordinates(item))
        annotated.append(DistanceAnnotated(item=item, distance=distance))
    # Stable: equal distances keep input order.
    return sorted(annotated, key=lambda entry: entry.distance)


def within_radius(ranked: Sequence[DistanceAnnotated[T]], radius_km: float) -> List[DistanceAnnotated[T]]:
    return [entry for entry in ranked if entry.distance <= radius_km]


def format_distance(km: float) -> str:
    """'500 m' below one kilometre, '5.2 km' otherwise."""
    if math.isnan(km) or km < 0:
        raise MalformedInput(f"distance must be a non-negative number, got {km}")
    if km < 1:
        # half-up, not banker's rounding
        return f"{math.floor(km * 1000 + 0.5)} m"
    return f"{km:.1f} km"


def paginate(items: Sequence[T], page: int, page_size: int) -> Tuple[List[T], Pagination]:
    """Slice one 1-based page out of an already ordered sequence."""
    if page < 1 or page_size < 1:
        raise MalformedInput("page and page_size must be positive")
    start = (page - 1) * page_size
    window = list(items[start:start + page_size])
    return window, Pagination(
        page=page,
        page_size=page_size,
        total_count=len(items),
        has_more=len(items) > start + page_size,
    )
