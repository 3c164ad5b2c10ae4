from __future__ import annotations

from dataclasses import dataclass, field

from devkit.clock import now_utc_iso
from geo_engine.models import Position

DEFAULT_PUBLIC_RADIUS_KM = 50.0
MIN_PUBLIC_RADIUS_KM = 1.0
MAX_PUBLIC_RADIUS_KM = 1000.0


@dataclass
class UserProfile:
    user_id: str
    name: str
    email: str
    is_publicly_visible: bool = False
    public_radius_km: float = DEFAULT_PUBLIC_RADIUS_KM
    last_known_location: Position | None = None
    created_at: str = field(default_factory=now_utc_iso)
    updated_at: str = field(default_factory=now_utc_iso)


@dataclass(frozen=True)
class NearbyCandidate:
    user_id: str
    distance_meters: float


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str

    def to_dict(self) -> dict[str, object]:
        return {"allowed": self.allowed, "reason": self.reason}
