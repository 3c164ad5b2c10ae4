import asyncio
import math
from uuid import uuid4

from fastapi.testclient import TestClient

from location_service.app import create_app
from location_service.config import LocationSettings
from location_service.errors import StoreError
from location_service.geo_index import InMemoryGeoIndexStore
from location_service.models import UserProfile
from location_service.profile_store import ProfileStore
from location_service.repositories.location_repository import LocationRepository
from location_service.services.location_service import LocationService
from shared.security import InMemorySessionStore, JWTManager

SECRET = "test-secret"
SF_LONGITUDE = -122.4194
SF_LATITUDE = 37.7749
KM_PER_DEGREE_LAT = math.pi * 6371 / 180


class BrokenProfileStore(ProfileStore):
    async def find_by_id(self, user_id: str):
        raise StoreError("profile store query failed")


def _settings() -> LocationSettings:
    return LocationSettings(JWT_SECRET_KEY=SECRET, DATABASE_URL=None, REDIS_URL=None)


def _token(subject: str) -> dict[str, str]:
    token = JWTManager(secret=SECRET).issue_access_token(subject, jti=str(uuid4()))
    return {"Authorization": f"Bearer {token}"}


def _client(
    *,
    users: tuple[tuple[str, bool], ...] = (("alice", True), ("bob", True)),
    sessions: tuple[str, ...] = ("alice", "bob"),
    profile_store: ProfileStore | None = None,
) -> TestClient:
    profiles = profile_store or ProfileStore()
    session_store = InMemorySessionStore()

    async def _seed() -> None:
        for user_id, public in users:
            await profiles.create_profile(
                UserProfile(
                    user_id=user_id,
                    name=user_id.title(),
                    email=f"{user_id}@example.com",
                    is_publicly_visible=public,
                )
            )
        for user_id in sessions:
            await session_store.create_session(user_id, {"socket_id": f"sock-{user_id}"})

    asyncio.run(_seed())
    service = LocationService(LocationRepository(InMemoryGeoIndexStore()), profiles, obfuscation_range=0)
    app = create_app(
        settings=_settings(),
        location_service=service,
        profile_store=profiles,
        session_store=session_store,
        jwt=JWTManager(secret=SECRET),
    )
    return TestClient(app)


def _put_location(client: TestClient, user_id: str, longitude: float, latitude: float):
    return client.put(
        "/v1/locations/me",
        headers=_token(user_id),
        json={"longitude": longitude, "latitude": latitude, "accuracy": 10},
    )


def test_probes_do_not_require_auth() -> None:
    client = _client()
    assert client.get("/healthz").json() == {"success": True, "data": {"status": "ok"}, "meta": {}}
    assert client.get("/readyz").json()["data"] == {"status": "ready"}


def test_missing_and_invalid_tokens_are_rejected() -> None:
    client = _client()
    missing = client.get("/v1/locations/me/status")
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "UNAUTHORIZED"

    invalid = client.get("/v1/locations/me/status", headers={"Authorization": "Bearer not-a-token"})
    assert invalid.status_code == 401
    assert invalid.json()["error"]["code"] == "INVALID_TOKEN"


def test_token_with_non_ascii_signature_is_unauthorized() -> None:
    client = _client()
    header = "Bearer a.b.\xe9".encode("latin-1")
    response = client.get("/v1/locations/me/status", headers={"Authorization": header})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_TOKEN"


def test_token_without_live_session_is_rejected() -> None:
    client = _client(sessions=("alice",))
    response = client.get("/v1/locations/me/status", headers=_token("bob"))
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "SESSION_EXPIRED"


def test_update_location_then_status() -> None:
    with _client() as client:
        response = _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)
        assert response.status_code == 200
        assert response.json()["data"] == {"message": "Location updated successfully"}

        status = client.get("/v1/locations/me/status", headers=_token("alice"))
        body = status.json()["data"]
        assert body["has_location"] is True
        assert body["is_publicly_visible"] is True
        assert body["ttl_seconds"] > 0
        assert "longitude" not in body and "latitude" not in body


def test_invalid_coordinates_map_to_validation_error() -> None:
    client = _client()
    response = _put_location(client, "alice", 200, 0)
    assert response.status_code == 422
    assert response.json()["error"] == {
        "code": "VALIDATION_ERROR",
        "message": "Invalid longitude: must be between -180 and 180",
    }

    malformed = client.put("/v1/locations/me", headers=_token("alice"), json={"longitude": "east"})
    assert malformed.status_code == 422
    assert malformed.json()["error"]["code"] == "VALIDATION_ERROR"


def test_unknown_profile_maps_to_not_found() -> None:
    client = _client(sessions=("alice", "carol"))
    response = _put_location(client, "carol", SF_LONGITUDE, SF_LATITUDE)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_nearby_requires_a_live_position() -> None:
    client = _client()
    response = client.get("/v1/locations/nearby", params={"radius_km": 10}, headers=_token("alice"))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "LOCATION_NOT_FOUND"


def test_nearby_returns_public_users_without_coordinates() -> None:
    client = _client(users=(("alice", True), ("bob", True), ("carol", False)), sessions=("alice", "bob", "carol"))
    _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)
    _put_location(client, "bob", SF_LONGITUDE, SF_LATITUDE + 2.5 / KM_PER_DEGREE_LAT)
    _put_location(client, "carol", SF_LONGITUDE, SF_LATITUDE - 3 / KM_PER_DEGREE_LAT)

    response = client.get("/v1/locations/nearby", params={"radius_km": 10, "limit": 5}, headers=_token("alice"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["data"] == [{"user_id": "bob", "name": "Bob", "email": "bob@example.com", "distance_km": 2.5}]
    assert payload["meta"] == {"total_count": 1, "radius_km": 10.0, "limit": 5}


def test_nearby_rejects_out_of_range_radius() -> None:
    client = _client()
    _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)
    response = client.get("/v1/locations/nearby", params={"radius_km": 5000}, headers=_token("alice"))
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_distance_is_gated_by_access_policy() -> None:
    client = _client(users=(("alice", True), ("bob", False)))
    _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)
    _put_location(client, "bob", SF_LONGITUDE, SF_LATITUDE + 12 / KM_PER_DEGREE_LAT)

    denied = client.get("/v1/locations/distance/bob", headers=_token("alice"))
    assert denied.status_code == 403
    assert denied.json()["error"] == {"code": "ACCESS_DENIED", "message": "User location is private"}

    allowed = client.get("/v1/locations/distance/alice", headers=_token("bob"))
    assert allowed.status_code == 200
    assert allowed.json()["data"] == {"distance_km": 12.0}

    access = client.get("/v1/locations/access/bob", headers=_token("alice"))
    assert access.json()["data"] == {"allowed": False, "reason": "User location is private"}


def test_own_distance_without_position_is_location_not_found() -> None:
    client = _client()
    response = client.get("/v1/locations/distance/alice", headers=_token("alice"))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "LOCATION_NOT_FOUND"


def test_privacy_update_and_remove_location() -> None:
    client = _client()
    _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)

    updated = client.put(
        "/v1/locations/me/privacy",
        headers=_token("alice"),
        json={"is_publicly_visible": False, "public_radius_km": 5},
    )
    assert updated.status_code == 200
    assert updated.json()["data"] == {"is_publicly_visible": False, "public_radius_km": 5.0}

    rejected = client.put("/v1/locations/me/privacy", headers=_token("alice"), json={"public_radius_km": 0.5})
    assert rejected.status_code == 422

    removed = client.delete("/v1/locations/me", headers=_token("alice"))
    assert removed.json()["data"] == {"message": "Location removed successfully"}
    status = client.get("/v1/locations/me/status", headers=_token("alice")).json()["data"]
    assert status["has_location"] is False
    assert status["is_publicly_visible"] is False


def test_coverage_and_internal_stats() -> None:
    client = _client()
    _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)

    coverage = client.get("/v1/locations/coverage", params={"radius_km": 50}, headers=_token("alice"))
    assert coverage.json()["data"] == {"radius_km": 50.0, "area_km2": 7853.98, "area_miles2": 3032.44}
    invalid = client.get("/v1/locations/coverage", params={"radius_km": 0}, headers=_token("alice"))
    assert invalid.status_code == 422

    stats = client.get("/internal/location-stats", headers=_token("alice")).json()["data"]
    assert stats == {
        "active_locations": 1,
        "total_users": 2,
        "public_users": 2,
        "users_with_location": 1,
        "location_coverage": 50,
    }


def test_store_failures_map_to_bad_gateway() -> None:
    client = _client(users=(), profile_store=BrokenProfileStore())
    response = _put_location(client, "alice", SF_LONGITUDE, SF_LATITUDE)
    assert response.status_code == 502
    assert response.json()["error"] == {"code": "STORE_ERROR", "message": "profile store query failed"}
