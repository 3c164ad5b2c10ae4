import math

from geo_engine.models import Position

EARTH_RADIUS_METERS = 6_371_000


def haversine_distance_meters(start: Position, end: Position) -> float:
    start_lat = math.radians(start.latitude)
    end_lat = math.radians(end.latitude)
    delta_lat = math.radians(end.latitude - start.latitude)
    delta_lng = math.radians(end.longitude - start.longitude)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(start_lat) * math.cos(end_lat) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def haversine_distance_km(start: Position, end: Position) -> float:
    return haversine_distance_meters(start, end) / 1000.0


def meters_to_km(distance_meters: float, ndigits: int = 2) -> float:
    return round(distance_meters / 1000.0, ndigits)
