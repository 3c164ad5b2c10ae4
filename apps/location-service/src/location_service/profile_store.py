from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime
from typing import Any, TypeVar

from devkit.clock import now_utc, now_utc_iso, parse_iso
from devkit.db import AsyncDatabaseManager, Base, create_all_tables
from geo_engine.distance import haversine_distance_meters
from geo_engine.geofence import bounding_box
from geo_engine.models import Position
from sqlalchemy import Boolean, DateTime, Float, String, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from location_service.errors import StoreError
from location_service.models import DEFAULT_PUBLIC_RADIUS_KM, UserProfile

T = TypeVar("T")
logger = logging.getLogger(__name__)

PRIVACY_FIELDS = ("is_publicly_visible", "public_radius_km")


class ProfileORM(Base):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    is_publicly_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    public_radius_km: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_PUBLIC_RADIUS_KM)
    last_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_latitude: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProfileStore:
    """Durable per-user profile records; in-memory unless a database URL is configured."""

    def __init__(self, database_url: str | None = None) -> None:
        self._profiles: dict[str, UserProfile] = {}
        self._db = AsyncDatabaseManager(database_url) if database_url else None
        self._orm_ready = False

    async def ensure_ready(self) -> None:
        await self._ensure_orm_ready()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.disconnect()

    async def create_profile(self, profile: UserProfile) -> UserProfile:
        if self._db is None:
            self._profiles[profile.user_id] = replace(profile)
            return replace(profile)

        async def _run(session: AsyncSession) -> UserProfile:
            row = await session.get(ProfileORM, profile.user_id)
            location = profile.last_known_location
            if row is None:
                row = ProfileORM(
                    user_id=profile.user_id,
                    created_at=parse_iso(profile.created_at) or now_utc(),
                )
                session.add(row)
            row.name = profile.name
            row.email = profile.email
            row.is_publicly_visible = profile.is_publicly_visible
            row.public_radius_km = profile.public_radius_km
            row.last_longitude = location.longitude if location else None
            row.last_latitude = location.latitude if location else None
            row.updated_at = now_utc()
            return self._to_profile(row)

        return await self._run(_run)

    async def find_by_id(self, user_id: str) -> UserProfile | None:
        if self._db is None:
            profile = self._profiles.get(user_id)
            return replace(profile) if profile is not None else None

        async def _run(session: AsyncSession) -> UserProfile | None:
            row = await session.get(ProfileORM, user_id)
            return self._to_profile(row) if row is not None else None

        return await self._run(_run)

    async def find_nearby_public(
        self,
        longitude: float,
        latitude: float,
        radius_km: float,
        exclude_id: str | None = None,
    ) -> list[UserProfile]:
        center = Position(longitude=longitude, latitude=latitude)
        if self._db is None:
            candidates = [
                replace(profile)
                for profile in self._profiles.values()
                if profile.is_publicly_visible and profile.last_known_location is not None
            ]
        else:
            min_lng, min_lat, max_lng, max_lat = bounding_box(center, radius_km)

            async def _run(session: AsyncSession) -> list[UserProfile]:
                stmt = select(ProfileORM).where(
                    ProfileORM.is_publicly_visible.is_(True),
                    ProfileORM.last_longitude.is_not(None),
                    ProfileORM.last_latitude.is_not(None),
                    ProfileORM.last_latitude.between(min_lat, max_lat),
                    ProfileORM.last_longitude.between(min_lng, max_lng),
                )
                rows = (await session.scalars(stmt)).all()
                return [self._to_profile(row) for row in rows]

            candidates = await self._run(_run)

        radius_meters = radius_km * 1000
        ranked: list[tuple[float, UserProfile]] = []
        for profile in candidates:
            if exclude_id is not None and profile.user_id == exclude_id:
                continue
            assert profile.last_known_location is not None
            distance = haversine_distance_meters(center, profile.last_known_location)
            if distance <= radius_meters:
                ranked.append((distance, profile))
        ranked.sort(key=lambda item: item[0])
        return [profile for _, profile in ranked]

    async def update_location(self, user_id: str, longitude: float, latitude: float) -> UserProfile | None:
        if self._db is None:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            profile.last_known_location = Position(longitude=longitude, latitude=latitude)
            profile.updated_at = now_utc_iso()
            return replace(profile)

        async def _run(session: AsyncSession) -> UserProfile | None:
            row = await session.get(ProfileORM, user_id)
            if row is None:
                return None
            row.last_longitude = longitude
            row.last_latitude = latitude
            row.updated_at = now_utc()
            return self._to_profile(row)

        return await self._run(_run)

    async def update_privacy_settings(self, user_id: str, settings: dict[str, Any]) -> UserProfile | None:
        updates = {key: settings[key] for key in PRIVACY_FIELDS if key in settings}
        if self._db is None:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            for key, value in updates.items():
                setattr(profile, key, value)
            profile.updated_at = now_utc_iso()
            return replace(profile)

        async def _run(session: AsyncSession) -> UserProfile | None:
            row = await session.get(ProfileORM, user_id)
            if row is None:
                return None
            for key, value in updates.items():
                setattr(row, key, value)
            row.updated_at = now_utc()
            return self._to_profile(row)

        return await self._run(_run)

    async def get_statistics(self) -> dict[str, int]:
        if self._db is None:
            profiles = list(self._profiles.values())
            total = len(profiles)
            public = sum(1 for profile in profiles if profile.is_publicly_visible)
            with_location = sum(1 for profile in profiles if profile.last_known_location is not None)
        else:

            async def _run(session: AsyncSession) -> tuple[int, int, int]:
                total_count = await session.scalar(select(func.count()).select_from(ProfileORM))
                public_count = await session.scalar(
                    select(func.count()).select_from(ProfileORM).where(ProfileORM.is_publicly_visible.is_(True))
                )
                located_count = await session.scalar(
                    select(func.count()).select_from(ProfileORM).where(ProfileORM.last_longitude.is_not(None))
                )
                return int(total_count or 0), int(public_count or 0), int(located_count or 0)

            total, public, with_location = await self._run(_run)
        return {
            "total_users": total,
            "public_users": public,
            "private_users": total - public,
            "users_with_location": with_location,
        }

    async def _run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        assert self._db is not None
        try:
            await self._ensure_orm_ready()
            return await self._db.run_with_session(fn)
        except SQLAlchemyError as exc:
            logger.error(
                "profile_store_query_failed",
                extra={"component": "profile_store", "error": type(exc).__name__},
            )
            raise StoreError("profile store query failed") from exc

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return
        await self._db.connect()
        await create_all_tables(self._db.engine, Base.metadata)
        self._orm_ready = True

    def _to_profile(self, row: ProfileORM) -> UserProfile:
        location = None
        if row.last_longitude is not None and row.last_latitude is not None:
            location = Position(longitude=row.last_longitude, latitude=row.last_latitude)
        return UserProfile(
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            is_publicly_visible=bool(row.is_publicly_visible),
            public_radius_km=float(row.public_radius_km),
            last_known_location=location,
            created_at=row.created_at.isoformat() if row.created_at else now_utc_iso(),
            updated_at=row.updated_at.isoformat() if row.updated_at else now_utc_iso(),
        )
