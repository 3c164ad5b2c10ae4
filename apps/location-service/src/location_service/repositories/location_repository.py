from __future__ import annotations

import logging

from geo_engine.distance import haversine_distance_km
from geo_engine.models import Position

from location_service.geo_index import GeoIndexStore
from location_service.models import NearbyCandidate
from location_service.validation import (
    validate_coordinates,
    validate_limit,
    validate_radius,
    validate_ttl,
    validate_user_id,
)

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_TTL_SECONDS = 86400
DEFAULT_NEARBY_LIMIT = 50


class LocationRepository:
    """Validates domain calls and translates them into geo index operations."""

    def __init__(self, geo_index: GeoIndexStore) -> None:
        self._geo_index = geo_index

    async def add_user_location(self, user_id: str, longitude: float, latitude: float) -> bool:
        validate_user_id(user_id)
        validate_coordinates(longitude, latitude)
        await self._geo_index.upsert(user_id, longitude, latitude)
        return True

    async def add_user_location_with_metadata(
        self,
        user_id: str,
        longitude: float,
        latitude: float,
        metadata: dict[str, object] | None = None,
        ttl_seconds: int = DEFAULT_LOCATION_TTL_SECONDS,
    ) -> bool:
        validate_user_id(user_id)
        validate_coordinates(longitude, latitude)
        validate_ttl(ttl_seconds)
        await self._geo_index.upsert_with_metadata(user_id, longitude, latitude, metadata or {}, ttl_seconds)
        return True

    async def get_user_location(self, user_id: str) -> Position | None:
        validate_user_id(user_id)
        return await self._geo_index.get(user_id)

    async def get_user_location_metadata(self, user_id: str) -> dict[str, str]:
        validate_user_id(user_id)
        return await self._geo_index.get_metadata(user_id)

    async def has_active_location(self, user_id: str) -> bool:
        return await self.get_user_location(user_id) is not None

    async def find_nearby_users(
        self,
        longitude: float,
        latitude: float,
        radius_km: float,
        exclude_user_id: str | None = None,
        limit: int = DEFAULT_NEARBY_LIMIT,
    ) -> list[NearbyCandidate]:
        validate_coordinates(longitude, latitude)
        validate_radius(radius_km)
        validate_limit(limit)
        return await self._geo_index.scan_near(longitude, latitude, radius_km, exclude_user_id, limit)

    async def remove_user_location(self, user_id: str) -> bool:
        validate_user_id(user_id)
        await self._geo_index.remove(user_id)
        return True

    async def get_distance_between_users(self, user_id_1: str, user_id_2: str) -> float | None:
        validate_user_id(user_id_1)
        validate_user_id(user_id_2)
        first = await self._geo_index.get(user_id_1)
        second = await self._geo_index.get(user_id_2)
        if first is None or second is None:
            return None
        return round(haversine_distance_km(first, second), 2)

    async def get_location_ttl(self, user_id: str) -> int:
        validate_user_id(user_id)
        return await self._geo_index.ttl(user_id)

    def calculate_distance(self, lng1: float, lat1: float, lng2: float, lat2: float) -> float:
        validate_coordinates(lng1, lat1)
        validate_coordinates(lng2, lat2)
        start = Position(longitude=lng1, latitude=lat1)
        end = Position(longitude=lng2, latitude=lat2)
        return round(haversine_distance_km(start, end), 2)

    async def get_location_statistics(self) -> dict[str, object]:
        positions = await self._geo_index.list_positions()
        return {
            "total_active_locations": len(positions),
            "users": [user_id for user_id, _ in positions],
        }

    async def clear_all_locations(self) -> bool:
        await self._geo_index.clear()
        logger.info("geo_index_cleared", extra={"component": "location_repository"})
        return True
