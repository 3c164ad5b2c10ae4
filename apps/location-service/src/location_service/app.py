from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from devkit.observability import configure_otel, configure_probe_access_log_filter
from devkit.redis import create_redis_client, create_session_store
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from location_service.config import LocationSettings, load_location_settings
from location_service.errors import LocationError, NoLocationDataError, NotFoundError, StoreError, ValidationError
from location_service.geo_index import GeoIndexStore, InMemoryGeoIndexStore, RedisGeoIndexStore
from location_service.profile_store import ProfileStore
from location_service.repositories.location_repository import LocationRepository
from location_service.response import error_response, success_response
from location_service.schemas import LocationUpdateRequest, PrivacyUpdateRequest
from location_service.services.location_service import LocationService
from shared.security import JWTManager, SessionStore

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"

# NoLocationDataError is checked before NotFoundError so each keeps its own code.
_ERROR_MAP: tuple[tuple[type[LocationError], int, str], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR"),
    (NoLocationDataError, status.HTTP_404_NOT_FOUND, "LOCATION_NOT_FOUND"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (StoreError, status.HTTP_502_BAD_GATEWAY, "STORE_ERROR"),
)


def _status_for(exc: LocationError) -> tuple[int, str]:
    for error_type, status_code, code in _ERROR_MAP:
        if isinstance(exc, error_type):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "LOCATION_ERROR"


def _build_location_service(
    settings: LocationSettings,
    geo_index: GeoIndexStore,
    profile_store: ProfileStore,
) -> LocationService:
    return LocationService(
        LocationRepository(geo_index),
        profile_store,
        obfuscation_range=settings.LOCATION_OBFUSCATION_RANGE_DEG,
        salt_prefix=settings.LOCATION_SALT_PREFIX,
        location_ttl_seconds=settings.LOCATION_TTL_SECONDS,
    )


def create_app(
    *,
    settings: LocationSettings | None = None,
    location_service: LocationService | None = None,
    profile_store: ProfileStore | None = None,
    session_store: SessionStore | None = None,
    jwt: JWTManager | None = None,
) -> FastAPI:
    settings = settings or load_location_settings()
    redis_client = create_redis_client(settings.REDIS_URL)
    if location_service is None:
        profile_store = profile_store or ProfileStore(database_url=settings.DATABASE_URL)
        geo_index: GeoIndexStore = (
            RedisGeoIndexStore(redis_client) if redis_client is not None else InMemoryGeoIndexStore()
        )
        location_service = _build_location_service(settings, geo_index, profile_store)
    session_store = session_store or create_session_store(redis_client)
    jwt = jwt or JWTManager(secret=settings.JWT_SECRET_KEY, access_minutes=settings.ACCESS_TOKEN_MINUTES)
    service = location_service

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if profile_store is not None:
            await profile_store.ensure_ready()
        try:
            yield
        finally:
            if profile_store is not None:
                await profile_store.close()
            if redis_client is not None:
                await redis_client.close()

    app = FastAPI(title="Location Service", version=SERVICE_VERSION, lifespan=lifespan)
    configure_otel(settings.SERVICE_NAME, SERVICE_VERSION)
    configure_probe_access_log_filter()

    async def resolve_requester(authorization: str | None = Header(default=None)) -> str:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "UNAUTHORIZED", "message": "missing bearer token"},
            )
        token = authorization.split(" ", 1)[1]
        try:
            payload = jwt.decode(token)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": str(exc)},
            ) from exc
        if not await session_store.refresh_session(payload.sub, ttl_seconds=settings.SESSION_TTL_SECONDS):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "SESSION_EXPIRED", "message": "session is no longer valid"},
            )
        return payload.sub

    @app.exception_handler(HTTPException)
    async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            payload = {"success": False, "error": exc.detail}
        else:
            payload = error_response("HTTP_ERROR", str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(LocationError)
    async def handle_location_error(request: Request, exc: LocationError) -> JSONResponse:
        status_code, code = _status_for(exc)
        if status_code >= 500:
            logger.error(
                "location_request_failed",
                extra={"component": "location_api", "path": request.url.path, "error": type(exc).__name__},
            )
        return JSONResponse(status_code=status_code, content=error_response(code, str(exc)))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(err["msg"] for err in exc.errors())
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_response("VALIDATION_ERROR", message),
        )

    @app.get("/healthz")
    async def healthz() -> dict:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict:
        return success_response({"status": "ready"}, meta={})

    @app.put("/v1/locations/me")
    async def update_my_location(body: LocationUpdateRequest, requester: str = Depends(resolve_requester)) -> dict:
        result = await service.update_user_location(requester, body.longitude, body.latitude, body.accuracy)
        return success_response({"message": result["message"]}, meta={})

    @app.delete("/v1/locations/me")
    async def remove_my_location(requester: str = Depends(resolve_requester)) -> dict:
        result = await service.remove_user_location(requester)
        return success_response({"message": result["message"]}, meta={})

    @app.get("/v1/locations/me/status")
    async def my_location_status(requester: str = Depends(resolve_requester)) -> dict:
        return success_response(await service.get_user_location_status(requester), meta={})

    @app.put("/v1/locations/me/privacy")
    async def update_my_privacy(body: PrivacyUpdateRequest, requester: str = Depends(resolve_requester)) -> dict:
        result = await service.update_location_privacy(requester, body.model_dump(exclude_none=True))
        return success_response(result["privacy"], meta={})

    @app.get("/v1/locations/nearby")
    async def nearby_users(
        radius_km: float = Query(...),
        limit: int = Query(default=50),
        requester: str = Depends(resolve_requester),
    ) -> dict:
        result = await service.get_nearby_users(requester, radius_km, limit)
        return success_response(
            result["users"],
            meta={"total_count": result["total_count"], "radius_km": radius_km, "limit": limit},
        )

    @app.get("/v1/locations/access/{target_user_id}")
    async def location_access(target_user_id: str, requester: str = Depends(resolve_requester)) -> dict:
        return success_response(await service.validate_location_access(requester, target_user_id), meta={})

    @app.get("/v1/locations/distance/{target_user_id}")
    async def distance_to_user(target_user_id: str, requester: str = Depends(resolve_requester)) -> dict:
        decision = await service.validate_location_access(requester, target_user_id)
        if not decision["allowed"]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ACCESS_DENIED", "message": decision["reason"]},
            )
        result = await service.get_distance_between_users(requester, target_user_id)
        if not result["success"]:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "LOCATION_NOT_FOUND", "message": result["error"]},
            )
        return success_response({"distance_km": result["distance_km"]}, meta={})

    @app.get("/v1/locations/coverage")
    async def public_area_coverage(
        radius_km: float = Query(...),
        _: str = Depends(resolve_requester),
    ) -> dict:
        return success_response(service.calculate_public_area_coverage(radius_km), meta={})

    @app.get("/internal/location-stats")
    async def location_stats(_: str = Depends(resolve_requester)) -> dict:
        return success_response(await service.get_location_statistics(), meta={})

    return app


app = create_app()
