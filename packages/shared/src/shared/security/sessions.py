from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol

DEFAULT_SESSION_TTL_SECONDS = 86400


class RedisLike(Protocol):
    async def hset(self, name: str, mapping: dict[str, str]) -> int: ...

    async def hgetall(self, name: str) -> dict[str, str]: ...

    async def expire(self, name: str, time: int) -> bool: ...

    async def exists(self, *names: str) -> int: ...

    async def ttl(self, name: str) -> int: ...

    async def delete(self, *names: str) -> int: ...

    async def sadd(self, name: str, *values: str) -> int: ...

    async def srem(self, name: str, *values: str) -> int: ...


def _stringify(data: dict[str, object]) -> dict[str, str]:
    return {key: value if isinstance(value, str) else str(value) for key, value in data.items()}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    async def create_session(
        self,
        user_id: str,
        data: dict[str, object],
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        raise NotImplementedError

    async def get_session(self, user_id: str) -> dict[str, str] | None:
        raise NotImplementedError

    async def is_session_valid(self, user_id: str) -> bool:
        raise NotImplementedError

    async def refresh_session(self, user_id: str, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> bool:
        raise NotImplementedError

    async def delete_session(self, user_id: str) -> bool:
        raise NotImplementedError

    async def get_session_ttl(self, user_id: str) -> int:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._items: dict[str, tuple[float, dict[str, str]]] = {}

    async def create_session(
        self,
        user_id: str,
        data: dict[str, object],
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        now = _now_iso()
        payload = _stringify(data)
        payload["createdAt"] = now
        payload["lastActivity"] = now
        self._items[user_id] = (self._clock() + ttl_seconds, payload)

    async def get_session(self, user_id: str) -> dict[str, str] | None:
        item = self._live(user_id)
        return dict(item[1]) if item else None

    async def is_session_valid(self, user_id: str) -> bool:
        return self._live(user_id) is not None

    async def refresh_session(self, user_id: str, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> bool:
        item = self._live(user_id)
        if item is None:
            return False
        payload = item[1]
        payload["lastActivity"] = _now_iso()
        self._items[user_id] = (self._clock() + ttl_seconds, payload)
        return True

    async def delete_session(self, user_id: str) -> bool:
        return self._items.pop(user_id, None) is not None

    async def get_session_ttl(self, user_id: str) -> int:
        item = self._live(user_id)
        if item is None:
            return -1
        return int(item[0] - self._clock())

    def _live(self, user_id: str) -> tuple[float, dict[str, str]] | None:
        item = self._items.get(user_id)
        if item is None:
            return None
        if item[0] <= self._clock():
            self._items.pop(user_id, None)
            return None
        return item


class RedisSessionStore(SessionStore):
    def __init__(
        self,
        redis_client: RedisLike,
        *,
        key_prefix: str = "session:",
        active_sessions_key: str = "active_sessions",
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._active_sessions_key = active_sessions_key

    def _key(self, user_id: str) -> str:
        return f"{self._key_prefix}{user_id}"

    async def create_session(
        self,
        user_id: str,
        data: dict[str, object],
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ) -> None:
        now = _now_iso()
        payload = _stringify(data)
        payload["createdAt"] = now
        payload["lastActivity"] = now
        await self._redis.hset(self._key(user_id), mapping=payload)
        await self._redis.expire(self._key(user_id), ttl_seconds)
        await self._redis.sadd(self._active_sessions_key, user_id)

    async def get_session(self, user_id: str) -> dict[str, str] | None:
        data = await self._redis.hgetall(self._key(user_id))
        if not data:
            await self._forget(user_id)
            return None
        return data

    async def is_session_valid(self, user_id: str) -> bool:
        if (await self._redis.exists(self._key(user_id))) > 0:
            return True
        await self._forget(user_id)
        return False

    async def refresh_session(self, user_id: str, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS) -> bool:
        # EXPIRE fails on a missing key, so an expired session is never recreated by the HSET
        if not await self._redis.expire(self._key(user_id), ttl_seconds):
            await self._forget(user_id)
            return False
        await self._redis.hset(self._key(user_id), mapping={"lastActivity": _now_iso()})
        return True

    async def delete_session(self, user_id: str) -> bool:
        await self._forget(user_id)
        return (await self._redis.delete(self._key(user_id))) > 0

    async def get_session_ttl(self, user_id: str) -> int:
        ttl = await self._redis.ttl(self._key(user_id))
        return ttl if ttl >= 0 else -1

    async def _forget(self, user_id: str) -> None:
        await self._redis.srem(self._active_sessions_key, user_id)
