# =======================================================================================
# gatewatch/utils/geo.py - Geospatial Helpers
# =======================================================================================
import math
from typing import Callable, Iterable, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

EARTH_RADIUS_METERS = 6371000.0

# ~100 meters in degrees, and 50 pixels for floor-plan maps
MIN_GEO_BOUNDS_SIZE = 0.001
MIN_IMAGE_BOUNDS_SIZE = 50.0

# 4 decimal places is roughly 11 meters
CLUSTER_PRECISION = 4

Point = Tuple[float, float]
Bounds = Tuple[Point, Point]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two coordinates.
    Returns distance in meters.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = math.sin(delta_lat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def pixel_distance(x1: float, y1: float, x2: float, y2: float) -> float:
    """Euclidean distance between two floor-plan points."""
    return math.hypot(x2 - x1, y2 - y1)


def has_coordinates(lat: Optional[float], lon: Optional[float]) -> bool:
    return lat is not None and lon is not None


def _expand(low: float, high: float, min_size: float) -> Tuple[float, float]:
    if high - low < min_size:
        center = (low + high) / 2
        return center - min_size / 2, center + min_size / 2
    return low, high


def geo_bounds(points: Sequence[Point], min_size: float = MIN_GEO_BOUNDS_SIZE) -> Optional[Bounds]:
    """
    Bounding box ((south, west), (north, east)) for (lat, lon) points.

    Clustered points get a box of at least ``min_size`` degrees on its longer side
    so a map never zooms in on a single gate.
    """
    if not points:
        return None

    lats = [p[0] for p in points]
    lons = [p[1] for p in points]
    south, north = min(lats), max(lats)
    west, east = min(lons), max(lons)

    if max(north - south, east - west) < min_size:
        center_lat = (south + north) / 2
        center_lon = (west + east) / 2
        padding = min_size / 2
        return (
            (center_lat - padding, center_lon - padding),
            (center_lat + padding, center_lon + padding),
        )

    return (south, west), (north, east)


def image_bounds(
    points: Sequence[Point],
    min_size: float = MIN_IMAGE_BOUNDS_SIZE,
    image_size: Optional[Tuple[float, float]] = None,
) -> Optional[Bounds]:
    """
    Bounding box ((min_y, min_x), (max_y, max_x)) for (x, y) pixel points,
    optionally clamped to an image of (width, height).
    """
    if not points:
        return None

    min_x, max_x = _expand(min(p[0] for p in points), max(p[0] for p in points), min_size)
    min_y, max_y = _expand(min(p[1] for p in points), max(p[1] for p in points), min_size)

    if image_size:
        width, height = image_size
        min_x, max_x = max(0.0, min_x), min(width, max_x)
        min_y, max_y = max(0.0, min_y), min(height, max_y)

    return (min_y, min_x), (max_y, max_x)


def centroid(points: Sequence[Point]) -> Optional[Point]:
    """Arithmetic mean of the points, or None when empty."""
    if not points:
        return None
    n = len(points)
    return sum(p[0] for p in points) / n, sum(p[1] for p in points) / n


def find_nearest(
    target: Point,
    candidates: Iterable[T],
    position: Callable[[T], Optional[Point]],
    distance: Callable[[float, float, float, float], float] = haversine_distance,
) -> Optional[Tuple[T, float]]:
    """
    Nearest candidate to ``target``.

    ``position`` maps a candidate to its point (or None to skip it); ``distance``
    defaults to haversine meters, pass ``pixel_distance`` for floor plans.
    """
    nearest: Optional[T] = None
    min_distance = math.inf

    for candidate in candidates:
        point = position(candidate)
        if point is None:
            continue
        d = distance(target[0], target[1], point[0], point[1])
        if d < min_distance:
            min_distance = d
            nearest = candidate

    if nearest is None:
        return None
    return nearest, min_distance


def cluster_key(lat: float, lon: float, precision: int = CLUSTER_PRECISION) -> Tuple[float, float]:
    """Grid cell used to group GPS readings into physical locations."""
    return round(lat, precision), round(lon, precision)
