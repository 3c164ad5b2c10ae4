"""Proximity engine: obfuscated location writes, nearby discovery and distance access policy.

Coordinates never leave this module in a result payload. Writes go to the
ephemeral geo index first and are then mirrored into the durable profile; the
two writes are not transactional, so a failed mirror leaves the profile stale
until the next successful update.
"""

from __future__ import annotations

import logging
from typing import Any

from geo_engine.coverage import calculate_public_area_coverage
from geo_engine.distance import meters_to_km
from geo_engine.models import Position
from geo_engine.obfuscation import DEFAULT_OBFUSCATION_RANGE, DEFAULT_SALT_PREFIX, obfuscate_position

from location_service.errors import LocationError, NoLocationDataError, NotFoundError, ValidationError
from location_service.models import AccessDecision, UserProfile
from location_service.profile_store import ProfileStore
from location_service.repositories.location_repository import (
    DEFAULT_LOCATION_TTL_SECONDS,
    DEFAULT_NEARBY_LIMIT,
    LocationRepository,
)
from location_service.validation import (
    MAX_LIMIT,
    validate_accuracy,
    validate_coordinates,
    validate_limit,
    validate_privacy_settings,
    validate_radius,
    validate_user_id,
)

logger = logging.getLogger(__name__)

UPDATE_SOURCE = "user_update"


class LocationService:
    def __init__(
        self,
        location_repository: LocationRepository,
        profile_store: ProfileStore,
        *,
        obfuscation_range: float = DEFAULT_OBFUSCATION_RANGE,
        salt_prefix: str = DEFAULT_SALT_PREFIX,
        location_ttl_seconds: int = DEFAULT_LOCATION_TTL_SECONDS,
    ) -> None:
        self._locations = location_repository
        self._profiles = profile_store
        self._obfuscation_range = obfuscation_range
        self._salt_prefix = salt_prefix
        self._location_ttl_seconds = location_ttl_seconds

    def obfuscate(self, user_id: str, longitude: float, latitude: float) -> Position:
        return obfuscate_position(
            user_id,
            longitude,
            latitude,
            obfuscation_range=self._obfuscation_range,
            salt_prefix=self._salt_prefix,
        )

    async def update_user_location(
        self,
        user_id: str,
        longitude: float,
        latitude: float,
        accuracy: float | None = None,
    ) -> dict[str, Any]:
        validate_user_id(user_id)
        validate_coordinates(longitude, latitude)
        validate_accuracy(accuracy)
        await self._require_profile(user_id)

        obfuscated = self.obfuscate(user_id, longitude, latitude)
        metadata = {
            "accuracy": str(accuracy) if accuracy is not None else "unknown",
            "source": UPDATE_SOURCE,
        }
        await self._locations.add_user_location_with_metadata(
            user_id,
            obfuscated.longitude,
            obfuscated.latitude,
            metadata,
            self._location_ttl_seconds,
        )
        try:
            mirrored = await self._profiles.update_location(user_id, obfuscated.longitude, obfuscated.latitude)
        except Exception:
            logger.error("location_profile_mirror_failed", extra={"component": "location_service", "user_id": user_id})
            raise
        if mirrored is None:
            logger.error("location_profile_mirror_failed", extra={"component": "location_service", "user_id": user_id})
            raise NotFoundError("User not found")
        logger.info("location_updated", extra={"component": "location_service", "user_id": user_id})
        return {"success": True, "message": "Location updated successfully"}

    async def get_nearby_users(
        self,
        user_id: str,
        radius_km: float,
        limit: int = DEFAULT_NEARBY_LIMIT,
    ) -> dict[str, Any]:
        validate_user_id(user_id)
        validate_radius(radius_km)
        validate_limit(limit)
        await self._require_profile(user_id)

        center = await self._locations.get_user_location(user_id)
        if center is None:
            raise NoLocationDataError("User location not found")

        # Scan wide, then truncate after the privacy filter so private users do not eat into the limit.
        candidates = await self._locations.find_nearby_users(
            center.longitude,
            center.latitude,
            radius_km,
            exclude_user_id=user_id,
            limit=MAX_LIMIT,
        )
        if not candidates:
            return {"success": True, "users": [], "total_count": 0}

        public_profiles = await self._profiles.find_nearby_public(
            center.longitude,
            center.latitude,
            radius_km,
            exclude_id=user_id,
        )
        public_by_id = {profile.user_id: profile for profile in public_profiles}

        users: list[dict[str, Any]] = []
        for candidate in sorted(candidates, key=lambda item: item.distance_meters):
            profile = public_by_id.get(candidate.user_id)
            if profile is None:
                continue
            users.append(
                {
                    "user_id": profile.user_id,
                    "name": profile.name,
                    "email": profile.email,
                    "distance_km": meters_to_km(candidate.distance_meters),
                }
            )
        users = users[:limit]
        logger.info(
            "nearby_users_resolved",
            extra={
                "component": "location_service",
                "user_id": user_id,
                "radius_km": radius_km,
                "candidate_count": len(candidates),
                "public_count": len(public_by_id),
                "result_count": len(users),
            },
        )
        return {"success": True, "users": users, "total_count": len(users)}

    async def get_distance_between_users(self, user_id_1: str, user_id_2: str) -> dict[str, Any]:
        if not user_id_1 or not user_id_2:
            raise ValidationError("Both user IDs are required")
        distance_km = await self._locations.get_distance_between_users(user_id_1, user_id_2)
        if distance_km is None:
            return {"success": False, "error": "One or both users do not have location data"}
        return {"success": True, "distance_km": distance_km}

    async def remove_user_location(self, user_id: str) -> dict[str, Any]:
        validate_user_id(user_id)
        await self._locations.remove_user_location(user_id)
        logger.info("location_removed", extra={"component": "location_service", "user_id": user_id})
        return {"success": True, "message": "Location removed successfully"}

    async def update_location_privacy(self, user_id: str, privacy_settings: dict[str, Any]) -> dict[str, Any]:
        validate_user_id(user_id)
        validate_privacy_settings(privacy_settings)
        updated = await self._profiles.update_privacy_settings(user_id, privacy_settings)
        if updated is None:
            raise NotFoundError("User not found")
        logger.info(
            "location_privacy_updated",
            extra={"component": "location_service", "user_id": user_id, "fields": sorted(privacy_settings)},
        )
        return {
            "success": True,
            "privacy": {
                "is_publicly_visible": updated.is_publicly_visible,
                "public_radius_km": updated.public_radius_km,
            },
            "message": "Privacy settings updated successfully",
        }

    async def get_user_location_status(self, user_id: str) -> dict[str, Any]:
        validate_user_id(user_id)
        profile = await self._require_profile(user_id)
        location = await self._locations.get_user_location(user_id)
        metadata = await self._locations.get_user_location_metadata(user_id) if location else {}
        ttl_seconds = await self._locations.get_location_ttl(user_id) if location else -1
        return {
            "has_location": location is not None,
            "is_publicly_visible": profile.is_publicly_visible,
            "public_radius_km": profile.public_radius_km,
            "last_update": metadata.get("lastUpdate"),
            "ttl_seconds": ttl_seconds,
        }

    async def validate_location_access(self, requesting_user_id: str, target_user_id: str) -> dict[str, Any]:
        validate_user_id(requesting_user_id)
        validate_user_id(target_user_id)
        return (await self._decide_access(requesting_user_id, target_user_id)).to_dict()

    async def _decide_access(self, requesting_user_id: str, target_user_id: str) -> AccessDecision:
        if requesting_user_id == target_user_id:
            return AccessDecision(allowed=True, reason="Own location access")
        target = await self._profiles.find_by_id(target_user_id)
        if target is None:
            return AccessDecision(allowed=False, reason="Target user not found")
        if not target.is_publicly_visible:
            return AccessDecision(allowed=False, reason="User location is private")
        distance_km = await self._locations.get_distance_between_users(requesting_user_id, target_user_id)
        if distance_km is None:
            return AccessDecision(allowed=False, reason="Location data not available")
        # the target's radius gates access to the target
        if distance_km > target.public_radius_km:
            return AccessDecision(allowed=False, reason="Outside public radius")
        return AccessDecision(allowed=True, reason="Access granted")

    async def get_location_statistics(self) -> dict[str, Any]:
        location_stats = await self._locations.get_location_statistics()
        user_stats = await self._profiles.get_statistics()
        total_users = user_stats["total_users"]
        coverage = round(user_stats["users_with_location"] / total_users * 100) if total_users > 0 else 0
        return {
            "active_locations": location_stats["total_active_locations"],
            "total_users": total_users,
            "public_users": user_stats["public_users"],
            "users_with_location": user_stats["users_with_location"],
            "location_coverage": coverage,
        }

    async def batch_update_locations(self, location_updates: list[dict[str, Any]]) -> dict[str, Any]:
        if not isinstance(location_updates, list):
            raise ValidationError("Location updates must be a list")
        results: list[dict[str, Any]] = []
        for update in location_updates:
            user_id = update.get("user_id") if isinstance(update, dict) else None
            try:
                if not isinstance(update, dict):
                    raise ValidationError("Location update must be a mapping")
                await self.update_user_location(
                    user_id,
                    update.get("longitude"),
                    update.get("latitude"),
                    update.get("accuracy"),
                )
            except LocationError as exc:
                results.append({"user_id": user_id, "success": False, "error": str(exc)})
                continue
            results.append({"user_id": user_id, "success": True})
        success_count = sum(1 for item in results if item["success"])
        logger.info(
            "location_batch_processed",
            extra={
                "component": "location_service",
                "total": len(results),
                "success_count": success_count,
            },
        )
        return {
            "success": True,
            "results": results,
            "total_processed": len(location_updates),
            "success_count": success_count,
            "error_count": len(results) - success_count,
        }

    def calculate_public_area_coverage(self, public_radius_km: float) -> dict[str, float]:
        try:
            return calculate_public_area_coverage(public_radius_km)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    async def _require_profile(self, user_id: str) -> UserProfile:
        profile = await self._profiles.find_by_id(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile
