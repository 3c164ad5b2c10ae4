"""Deterministic per-user coordinate obfuscation.

Every user gets a fixed pseudo-random offset derived from a salted SHA-256
digest of their id. The same user and input always produce the same output,
so distances between stored positions stay internally consistent, while two
users at the same true coordinate receive uncorrelated offsets.
"""

from __future__ import annotations

import hashlib

from geo_engine.models import Position

DEFAULT_OBFUSCATION_RANGE = 0.005
DEFAULT_SALT_PREFIX = "location_salt_"

_SEED_BYTES = 8
_AXIS_MASK = 0xFFFFFFFF
_AXIS_SCALE = float(1 << 32)


def _axis_fraction(bits: int) -> float:
    # centre of the bit bucket, so 0 and 1 are never reached
    return (bits + 0.5) / _AXIS_SCALE


def offset_fractions(user_id: str, salt_prefix: str = DEFAULT_SALT_PREFIX) -> tuple[float, float]:
    """Return the ``(longitude, latitude)`` fractions in the open interval ``(0, 1)`` for ``user_id``."""
    digest = hashlib.sha256(f"{salt_prefix}{user_id}".encode("utf-8")).digest()
    seed = int.from_bytes(digest[:_SEED_BYTES], "big")
    lng_fraction = _axis_fraction(seed & _AXIS_MASK)
    lat_fraction = _axis_fraction((seed >> 32) & _AXIS_MASK)
    return lng_fraction, lat_fraction


def obfuscate_position(
    user_id: str,
    longitude: float,
    latitude: float,
    *,
    obfuscation_range: float = DEFAULT_OBFUSCATION_RANGE,
    salt_prefix: str = DEFAULT_SALT_PREFIX,
) -> Position:
    # Results are not wrapped at the poles or the antimeridian.
    lng_fraction, lat_fraction = offset_fractions(user_id, salt_prefix)
    lng_offset = (lng_fraction * 2 - 1) * obfuscation_range
    lat_offset = (lat_fraction * 2 - 1) * obfuscation_range
    return Position(longitude=longitude + lng_offset, latitude=latitude + lat_offset)
