"""Geo engine core package."""

from geo_engine.coverage import calculate_public_area_coverage
from geo_engine.distance import EARTH_RADIUS_METERS, haversine_distance_km, haversine_distance_meters, meters_to_km
from geo_engine.geofence import bounding_box, is_point_inside_radius
from geo_engine.models import Position
from geo_engine.obfuscation import DEFAULT_OBFUSCATION_RANGE, DEFAULT_SALT_PREFIX, obfuscate_position

__all__ = [
    "DEFAULT_OBFUSCATION_RANGE",
    "DEFAULT_SALT_PREFIX",
    "EARTH_RADIUS_METERS",
    "Position",
    "bounding_box",
    "calculate_public_area_coverage",
    "haversine_distance_km",
    "haversine_distance_meters",
    "is_point_inside_radius",
    "meters_to_km",
    "obfuscate_position",
]
