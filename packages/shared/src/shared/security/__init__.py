from shared.security.jwt_utils import AuthTokenPayload, JWTManager
from shared.security.sessions import (
    DEFAULT_SESSION_TTL_SECONDS,
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
)

__all__ = [
    "AuthTokenPayload",
    "DEFAULT_SESSION_TTL_SECONDS",
    "InMemorySessionStore",
    "JWTManager",
    "RedisSessionStore",
    "SessionStore",
]
