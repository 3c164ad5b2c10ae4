import math

from geo_engine.distance import EARTH_RADIUS_METERS, haversine_distance_meters
from geo_engine.models import Position

_KM_PER_DEGREE = math.pi * EARTH_RADIUS_METERS / 180 / 1000


def is_point_inside_radius(center: Position, point: Position, radius_meters: float) -> bool:
    if radius_meters < 0:
        raise ValueError("radius_meters must be >= 0")
    return haversine_distance_meters(center, point) <= radius_meters


def bounding_box(center: Position, radius_km: float) -> tuple[float, float, float, float]:
    """Return ``(min_lon, min_lat, max_lon, max_lat)`` enclosing a circle of ``radius_km``.

    The box is only a coarse prefilter; callers must still apply an exact
    distance check. When the box reaches a pole every longitude is included.
    """
    if radius_km < 0:
        raise ValueError("radius_km must be >= 0")
    delta_lat = radius_km / _KM_PER_DEGREE
    min_lat = center.latitude - delta_lat
    max_lat = center.latitude + delta_lat
    if min_lat <= -90 or max_lat >= 90:
        return -180.0, max(min_lat, -90.0), 180.0, min(max_lat, 90.0)
    # widest longitude reached on the circle, at the tangent latitude
    ratio = math.sin(radius_km * 1000 / EARTH_RADIUS_METERS) / math.cos(math.radians(center.latitude))
    if ratio >= 1:
        return -180.0, min_lat, 180.0, max_lat
    delta_lng = math.degrees(math.asin(ratio))
    min_lng = center.longitude - delta_lng
    max_lng = center.longitude + delta_lng
    if min_lng < -180 or max_lng > 180:
        # crosses the antimeridian
        return -180.0, min_lat, 180.0, max_lat
    return min_lng, min_lat, max_lng, max_lat
