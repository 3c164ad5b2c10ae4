from __future__ import annotations

from devkit.config import ServiceSettings, load_settings


class LocationSettings(ServiceSettings):
    SERVICE_NAME: str = "location-service"
    LOCATION_OBFUSCATION_RANGE_DEG: float = 0.005
    LOCATION_SALT_PREFIX: str = "location_salt_"
    LOCATION_TTL_SECONDS: int = 86400
    SESSION_TTL_SECONDS: int = 86400
    ACCESS_TOKEN_MINUTES: int = 60
    LOCATION_SERVICE_HOST: str = "0.0.0.0"
    LOCATION_SERVICE_PORT: int = 8110


def load_location_settings() -> LocationSettings:
    return load_settings("location-service", LocationSettings)
