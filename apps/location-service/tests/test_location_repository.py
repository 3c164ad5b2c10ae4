import math

import pytest

from location_service.errors import ValidationError
from location_service.geo_index import InMemoryGeoIndexStore
from location_service.repositories.location_repository import LocationRepository

KM_PER_DEGREE_LAT = math.pi * 6371 / 180


class UntouchableGeoIndex:
    def __getattr__(self, name: str):
        raise AssertionError(f"geo index must not be called before validation: {name}")


def _guarded_repository() -> LocationRepository:
    return LocationRepository(UntouchableGeoIndex())  # type: ignore[arg-type]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("longitude", "latitude"),
    [(200, 0), (0, -95), (-180.5, 10), (10, 90.01), ("1", 0), (True, 0), (float("nan"), 0), (None, 0)],
)
async def test_invalid_coordinates_rejected_before_store_call(longitude, latitude) -> None:
    repository = _guarded_repository()
    with pytest.raises(ValidationError):
        await repository.add_user_location("u1", longitude, latitude)
    with pytest.raises(ValidationError):
        await repository.find_nearby_users(longitude, latitude, 10)


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", ["", "   ", None, 42])
async def test_invalid_user_id_rejected(user_id) -> None:
    repository = _guarded_repository()
    with pytest.raises(ValidationError, match="User ID is required"):
        await repository.get_user_location(user_id)
    with pytest.raises(ValidationError):
        await repository.remove_user_location(user_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("radius_km", [0, -1, 1000.5, "5", True])
async def test_invalid_radius_rejected(radius_km) -> None:
    with pytest.raises(ValidationError):
        await _guarded_repository().find_nearby_users(-122.4194, 37.7749, radius_km)


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 1001, 2.5, True])
async def test_invalid_limit_rejected(limit) -> None:
    with pytest.raises(ValidationError):
        await _guarded_repository().find_nearby_users(-122.4194, 37.7749, 10, limit=limit)


@pytest.mark.asyncio
@pytest.mark.parametrize("ttl_seconds", [0, -5, 86400 * 30 + 1, 1.5])
async def test_invalid_ttl_rejected(ttl_seconds) -> None:
    with pytest.raises(ValidationError):
        await _guarded_repository().add_user_location_with_metadata("u1", 0, 0, {}, ttl_seconds)


@pytest.mark.asyncio
async def test_boundary_values_are_accepted() -> None:
    repository = LocationRepository(InMemoryGeoIndexStore())
    await repository.add_user_location_with_metadata("pole", 180, 90, {}, 86400 * 30)
    await repository.add_user_location("antipole", -180, -90)
    found = await repository.find_nearby_users(0, 0, 1000, limit=1000)
    assert found == []


@pytest.mark.asyncio
async def test_location_lifecycle() -> None:
    repository = LocationRepository(InMemoryGeoIndexStore())
    await repository.add_user_location_with_metadata("u1", -122.4194, 37.7749, {"source": "user_update"})
    await repository.add_user_location("u2", -122.4194, 37.7749 + 1 / KM_PER_DEGREE_LAT)

    assert await repository.has_active_location("u1")
    assert await repository.get_distance_between_users("u1", "u2") == 1.0
    assert await repository.get_distance_between_users("u1", "ghost") is None
    assert (await repository.get_user_location_metadata("u1"))["source"] == "user_update"
    assert 0 < await repository.get_location_ttl("u1") <= 86400
    assert await repository.get_location_ttl("u2") == -1

    nearby = await repository.find_nearby_users(-122.4194, 37.7749, 5, exclude_user_id="u1")
    assert [item.user_id for item in nearby] == ["u2"]

    stats = await repository.get_location_statistics()
    assert stats["total_active_locations"] == 2
    assert sorted(stats["users"]) == ["u1", "u2"]

    assert await repository.remove_user_location("u1")
    assert not await repository.has_active_location("u1")

    assert await repository.clear_all_locations()
    assert (await repository.get_location_statistics())["total_active_locations"] == 0


def test_calculate_distance_validates_and_rounds() -> None:
    repository = LocationRepository(InMemoryGeoIndexStore())
    distance = repository.calculate_distance(-122.4194, 37.7749, -118.2437, 34.0522)
    assert 550 < distance < 570
    assert distance == round(distance, 2)
    with pytest.raises(ValidationError):
        repository.calculate_distance(-122.4194, 37.7749, 181, 0)
