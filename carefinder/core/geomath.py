import math
from typing import Any, Callable, Iterable, List, NamedTuple, Tuple

from carefinder.core.errors import InvalidInput
from carefinder.core.models import Coordinates

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE = 111.0


class Ranked(NamedTuple):
    item: Any
    distance_km: float


def haversine_distance_km(p1: Coordinates, p2: Coordinates) -> float:
    """Great-circle distance in kilometres. Non-finite input yields NaN."""
    lat1 = math.radians(p1.latitude)
    lat2 = math.radians(p2.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(p2.longitude - p1.longitude)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def filter_by_distance(
    origin: Coordinates,
    candidates: Iterable[Any],
    max_distance_km: float,
    key: Callable[[Any], Coordinates] = lambda c: c.coordinates,
) -> List[Ranked]:
    """Candidates within ``max_distance_km`` of origin, nearest first.

    sorted() is stable, so equal distances keep their input order.
    """
    ranked = []
    for candidate in candidates:
        distance = haversine_distance_km(origin, key(candidate))
        if distance <= max_distance_km:
            ranked.append(Ranked(candidate, distance))
    return sorted(ranked, key=lambda r: r.distance_km)


def bounding_box(center: Coordinates, radius_km: float) -> Tuple[float, float, float, float]:
    """(south, west, north, east) box around center, the order Overpass expects."""
    delta = radius_km / KM_PER_DEGREE
    return (
        max(center.latitude - delta, -90.0),
        max(center.longitude - delta, -180.0),
        min(center.latitude + delta, 90.0),
        min(center.longitude + delta, 180.0),
    )


def validate_coordinates(latitude, longitude) -> Coordinates:
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        raise InvalidInput("Invalid coordinates: latitude and longitude must be numbers")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise InvalidInput("Invalid coordinates: latitude and longitude must be numbers")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidInput("Invalid coordinates: latitude and longitude must be finite")
    if not -90 <= lat <= 90:
        raise InvalidInput("Invalid latitude: must be between -90 and 90")
    if not -180 <= lon <= 180:
        raise InvalidInput("Invalid longitude: must be between -180 and 180")
    return Coordinates(latitude=lat, longitude=lon)
