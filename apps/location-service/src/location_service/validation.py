from __future__ import annotations

import math
from typing import Any

from location_service.errors import ValidationError
from location_service.models import MAX_PUBLIC_RADIUS_KM, MIN_PUBLIC_RADIUS_KM

MAX_RADIUS_KM = 1000
MAX_LIMIT = 1000
MAX_TTL_SECONDS = 86400 * 30


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_user_id(user_id: Any) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("User ID is required")


def validate_coordinates(longitude: Any, latitude: Any) -> None:
    if not _is_number(longitude) or not _is_number(latitude):
        raise ValidationError("Coordinates must be numbers")
    if longitude < -180 or longitude > 180:
        raise ValidationError("Invalid longitude: must be between -180 and 180")
    if latitude < -90 or latitude > 90:
        raise ValidationError("Invalid latitude: must be between -90 and 90")


def validate_radius(radius_km: Any) -> None:
    if not _is_number(radius_km) or radius_km <= 0:
        raise ValidationError("Radius must be a positive number")
    if radius_km > MAX_RADIUS_KM:
        raise ValidationError(f"Radius cannot exceed {MAX_RADIUS_KM} km")


def validate_limit(limit: Any) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValidationError("Limit must be a positive integer")
    if limit > MAX_LIMIT:
        raise ValidationError(f"Limit cannot exceed {MAX_LIMIT}")


def validate_ttl(ttl_seconds: Any) -> None:
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int) or ttl_seconds <= 0:
        raise ValidationError("TTL must be a positive integer")
    if ttl_seconds > MAX_TTL_SECONDS:
        raise ValidationError("TTL cannot exceed 30 days")


def validate_accuracy(accuracy: Any) -> None:
    if accuracy is None:
        return
    if not _is_number(accuracy) or accuracy <= 0:
        raise ValidationError("Accuracy must be a positive number")


def validate_privacy_settings(settings: Any) -> None:
    if not isinstance(settings, dict):
        raise ValidationError("Privacy settings must be a mapping")
    unknown = set(settings) - {"is_publicly_visible", "public_radius_km"}
    if unknown:
        raise ValidationError(f"Unknown privacy settings: {', '.join(sorted(unknown))}")
    if "is_publicly_visible" in settings and not isinstance(settings["is_publicly_visible"], bool):
        raise ValidationError("is_publicly_visible must be a boolean")
    if "public_radius_km" in settings:
        radius = settings["public_radius_km"]
        if not _is_number(radius) or radius < MIN_PUBLIC_RADIUS_KM or radius > MAX_PUBLIC_RADIUS_KM:
            raise ValidationError("Public radius must be between 1 and 1000 km")
