from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from shared.security import InMemorySessionStore, RedisSessionStore, SessionStore

logger = logging.getLogger(__name__)


class AsyncRedisManager:
    """Lazily connected redis.asyncio client that reconnects and retries failed commands."""

    def __init__(
        self,
        url: str,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._url = url
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._client_factory = client_factory
        self._client: Any | None = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> Any:
        async with self._lock:
            if self._client is None:
                self._client = self._new_client()
            try:
                await self._client.ping()
            except Exception:
                logger.warning("redis_ping_failed", extra={"component": "devkit"})
                self._client = self._new_client()
                await self._client.ping()
            return self._client

    async def reconnect(self) -> Any:
        async with self._lock:
            if self._client is not None:
                await self._close_quietly(self._client)
            self._client = self._new_client()
            await self._client.ping()
            return self._client

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                try:
                    await self._client.close()
                finally:
                    self._client = None

    async def execute(self, operation: str, *args, **kwargs):
        attempt = 0
        while True:
            client = await self.get_client()
            method = getattr(client, operation)
            try:
                return await method(*args, **kwargs)
            except Exception as exc:
                attempt += 1
                if attempt >= self._max_retries:
                    raise
                logger.warning(
                    "redis_command_retry",
                    extra={
                        "component": "devkit",
                        "operation": operation,
                        "attempt": attempt,
                        "error": type(exc).__name__,
                    },
                )
                await self.reconnect()
                await asyncio.sleep(self._base_delay_seconds * (2 ** (attempt - 1)))

    async def _close_quietly(self, client: Any) -> None:
        try:
            await client.close()
        except Exception as exc:
            logger.info(
                "redis_close_failed",
                extra={"component": "devkit", "error": type(exc).__name__},
            )

    def _new_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory(self._url)
        import redis.asyncio as redis

        return redis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)

        async def _call(*args, **kwargs):
            return await self.execute(name, *args, **kwargs)

        return _call


def create_redis_client(url: str | None) -> AsyncRedisManager | None:
    if not url:
        return None
    return AsyncRedisManager(url)


def create_session_store(redis_client: Any | None) -> SessionStore:
    if redis_client is None:
        return InMemorySessionStore()
    return RedisSessionStore(redis_client)
