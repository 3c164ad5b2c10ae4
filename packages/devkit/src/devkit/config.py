from __future__ import annotations

from typing import TypeVar

from pydantic_settings import BaseSettings, SettingsConfigDict

S = TypeVar("S", bound="ServiceSettings")


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "service"
    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    JWT_SECRET_KEY: str = "dev-only-secret"
    LOG_LEVEL: str = "INFO"


def load_settings(service_name: str, settings_cls: type[S] = ServiceSettings) -> S:  # type: ignore[assignment]
    return settings_cls(SERVICE_NAME=service_name)
