from pydantic import BaseModel, Field


class LocationUpdateRequest(BaseModel):
    longitude: float
    latitude: float
    accuracy: float | None = Field(default=None, description="Reported accuracy in meters")


class PrivacyUpdateRequest(BaseModel):
    is_publicly_visible: bool | None = None
    public_radius_km: float | None = None
