from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from devkit.clock import now_utc_iso
from geo_engine.distance import haversine_distance_meters
from geo_engine.models import Position

from location_service.errors import StoreError
from location_service.models import NearbyCandidate

logger = logging.getLogger(__name__)

# Redis measures GEOSEARCH radii on a slightly larger sphere than the haversine
# oracle, so the native search is padded and then re-filtered exactly.
_NATIVE_RADIUS_PADDING = 1.01

# KEYS[1] metadata hash; ARGV[1] ttl seconds, then field/value pairs.
_WRITE_METADATA_SCRIPT = """
redis.call("HSET", KEYS[1], unpack(ARGV, 2))
redis.call("EXPIRE", KEYS[1], ARGV[1])
return 1
"""

# KEYS[1] geo set, KEYS[2] metadata hash; ARGV[1] member. Returns 1 while the hash is live.
_PRUNE_IF_EXPIRED_SCRIPT = """
if redis.call("EXISTS", KEYS[2]) == 1 then
  return 1
end
redis.call("ZREM", KEYS[1], ARGV[1])
return 0
"""


class GeoIndexStore(ABC):
    @abstractmethod
    async def upsert(self, user_id: str, longitude: float, latitude: float) -> None:
        raise NotImplementedError

    @abstractmethod
    async def upsert_with_metadata(
        self,
        user_id: str,
        longitude: float,
        latitude: float,
        metadata: dict[str, object],
        ttl_seconds: int,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, user_id: str) -> Position | None:
        raise NotImplementedError

    @abstractmethod
    async def get_metadata(self, user_id: str) -> dict[str, str]:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, user_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def scan_near(
        self,
        longitude: float,
        latitude: float,
        radius_km: float,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[NearbyCandidate]:
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, user_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def list_positions(self) -> list[tuple[str, Position]]:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


def _stringify_metadata(metadata: dict[str, object]) -> dict[str, str]:
    payload = {key: value if isinstance(value, str) else str(value) for key, value in metadata.items()}
    payload["lastUpdate"] = now_utc_iso()
    return payload


def _linear_scan(
    center: Position,
    positions: list[tuple[str, Position]],
    radius_km: float,
    exclude_id: str | None,
    limit: int,
) -> list[NearbyCandidate]:
    radius_meters = radius_km * 1000
    found: list[NearbyCandidate] = []
    for user_id, position in positions:
        if exclude_id is not None and user_id == exclude_id:
            continue
        distance = haversine_distance_meters(center, position)
        if distance <= radius_meters:
            found.append(NearbyCandidate(user_id=user_id, distance_meters=distance))
    found.sort(key=lambda item: item.distance_meters)
    return found[:limit]


@dataclass
class _Entry:
    position: Position
    metadata: dict[str, str]
    expires_at: float | None


class InMemoryGeoIndexStore(GeoIndexStore):
    """Reference implementation: linear haversine scan over every tracked position."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    async def upsert(self, user_id: str, longitude: float, latitude: float) -> None:
        existing = self._live(user_id)
        metadata = dict(existing.metadata) if existing else {}
        metadata["lastUpdate"] = now_utc_iso()
        self._entries[user_id] = _Entry(
            position=Position(longitude=longitude, latitude=latitude),
            metadata=metadata,
            expires_at=existing.expires_at if existing else None,
        )

    async def upsert_with_metadata(
        self,
        user_id: str,
        longitude: float,
        latitude: float,
        metadata: dict[str, object],
        ttl_seconds: int,
    ) -> None:
        self._entries[user_id] = _Entry(
            position=Position(longitude=longitude, latitude=latitude),
            metadata=_stringify_metadata(metadata),
            expires_at=self._clock() + ttl_seconds,
        )

    async def get(self, user_id: str) -> Position | None:
        entry = self._live(user_id)
        return entry.position if entry else None

    async def get_metadata(self, user_id: str) -> dict[str, str]:
        entry = self._live(user_id)
        return dict(entry.metadata) if entry else {}

    async def remove(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    async def scan_near(
        self,
        longitude: float,
        latitude: float,
        radius_km: float,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[NearbyCandidate]:
        center = Position(longitude=longitude, latitude=latitude)
        return _linear_scan(center, await self.list_positions(), radius_km, exclude_id, limit)

    async def ttl(self, user_id: str) -> int:
        entry = self._live(user_id)
        if entry is None or entry.expires_at is None:
            return -1
        return int(entry.expires_at - self._clock())

    async def list_positions(self) -> list[tuple[str, Position]]:
        found: list[tuple[str, Position]] = []
        for user_id in list(self._entries):
            entry = self._live(user_id)
            if entry is not None:
                found.append((user_id, entry.position))
        return found

    async def clear(self) -> None:
        self._entries.clear()

    def _live(self, user_id: str) -> _Entry | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._entries.pop(user_id, None)
            return None
        return entry


class RedisGeoClient(Protocol):
    async def geoadd(self, name: str, values: list[Any]) -> int: ...

    async def geopos(self, name: str, *values: str) -> list[tuple[float, float] | None]: ...

    async def geosearch(self, name: str, **kwargs: Any) -> list[Any]: ...

    async def zrange(self, name: str, start: int, end: int) -> list[str]: ...

    async def zrem(self, name: str, *values: str) -> int: ...

    async def hset(self, name: str, mapping: dict[str, str]) -> int: ...

    async def hgetall(self, name: str) -> dict[str, str]: ...

    async def expire(self, name: str, time: int) -> bool: ...

    async def ttl(self, name: str) -> int: ...

    async def delete(self, *names: str) -> int: ...

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any: ...


class RedisGeoIndexStore(GeoIndexStore):
    """Positions live in one GEO sorted set; liveness and TTL live on a per-user metadata hash.

    A sorted-set member cannot expire on its own, so a member whose metadata
    hash has expired is treated as absent and pruned when next encountered.
    Writes land on the hash before the member, and the prune re-checks the
    hash inside Redis, so a concurrent update is never pruned away.
    """

    def __init__(
        self,
        client: RedisGeoClient,
        *,
        geo_key: str = "user_locations",
        metadata_prefix: str = "location:",
        native_search: bool = True,
    ) -> None:
        self._client = client
        self._geo_key = geo_key
        self._metadata_prefix = metadata_prefix
        self._native_search = native_search

    def _metadata_key(self, user_id: str) -> str:
        return f"{self._metadata_prefix}{user_id}"

    async def upsert(self, user_id: str, longitude: float, latitude: float) -> None:
        await self._call("hset", self._metadata_key(user_id), mapping={"lastUpdate": now_utc_iso()})
        await self._call("geoadd", self._geo_key, [longitude, latitude, user_id])

    async def upsert_with_metadata(
        self,
        user_id: str,
        longitude: float,
        latitude: float,
        metadata: dict[str, object],
        ttl_seconds: int,
    ) -> None:
        fields: list[str] = []
        for field, value in _stringify_metadata(metadata).items():
            fields.extend((field, value))
        await self._call("eval", _WRITE_METADATA_SCRIPT, 1, self._metadata_key(user_id), ttl_seconds, *fields)
        await self._call("geoadd", self._geo_key, [longitude, latitude, user_id])

    async def get(self, user_id: str) -> Position | None:
        if not await self._is_live(user_id):
            return None
        positions = await self._call("geopos", self._geo_key, user_id)
        if not positions or positions[0] is None:
            return None
        longitude, latitude = positions[0]
        return Position(longitude=float(longitude), latitude=float(latitude))

    async def get_metadata(self, user_id: str) -> dict[str, str]:
        return dict(await self._call("hgetall", self._metadata_key(user_id)) or {})

    async def remove(self, user_id: str) -> None:
        await self._call("zrem", self._geo_key, user_id)
        await self._call("delete", self._metadata_key(user_id))

    async def scan_near(
        self,
        longitude: float,
        latitude: float,
        radius_km: float,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[NearbyCandidate]:
        center = Position(longitude=longitude, latitude=latitude)
        if not self._native_search:
            return _linear_scan(center, await self.list_positions(), radius_km, exclude_id, limit)
        rows = await self._call(
            "geosearch",
            self._geo_key,
            longitude=longitude,
            latitude=latitude,
            radius=radius_km * _NATIVE_RADIUS_PADDING,
            unit="km",
            withcoord=True,
            sort="ASC",
        )
        candidates: list[tuple[str, Position]] = []
        for member, coords in rows:
            member = str(member)
            if exclude_id is not None and member == exclude_id:
                continue
            if not await self._is_live(member):
                continue
            candidates.append((member, Position(longitude=float(coords[0]), latitude=float(coords[1]))))
        return _linear_scan(center, candidates, radius_km, exclude_id, limit)

    async def ttl(self, user_id: str) -> int:
        remaining = await self._call("ttl", self._metadata_key(user_id))
        return int(remaining) if remaining is not None and remaining >= 0 else -1

    async def list_positions(self) -> list[tuple[str, Position]]:
        members = [str(member) for member in await self._call("zrange", self._geo_key, 0, -1)]
        if not members:
            return []
        positions = await self._call("geopos", self._geo_key, *members)
        found: list[tuple[str, Position]] = []
        for member, coords in zip(members, positions):
            if coords is None or not await self._is_live(member):
                continue
            found.append((member, Position(longitude=float(coords[0]), latitude=float(coords[1]))))
        return found

    async def clear(self) -> None:
        members = [str(member) for member in await self._call("zrange", self._geo_key, 0, -1)]
        await self._call("delete", self._geo_key)
        for member in members:
            await self._call("delete", self._metadata_key(member))

    async def _is_live(self, user_id: str) -> bool:
        live = await self._call(
            "eval", _PRUNE_IF_EXPIRED_SCRIPT, 2, self._geo_key, self._metadata_key(user_id), user_id
        )
        if live:
            return True
        logger.debug("geo_index_pruned_expired_member", extra={"component": "geo_index", "user_id": user_id})
        return False

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        method = getattr(self._client, operation)
        try:
            return await method(*args, **kwargs)
        except Exception as exc:
            logger.error(
                "geo_index_command_failed",
                extra={"component": "geo_index", "operation": operation, "error": type(exc).__name__},
            )
            raise StoreError(f"geo index {operation} failed") from exc
