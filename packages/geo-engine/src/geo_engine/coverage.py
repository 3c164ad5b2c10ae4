import math

SQUARE_MILES_PER_SQUARE_KM = 0.386102


def calculate_public_area_coverage(radius_km: float) -> dict[str, float]:
    if isinstance(radius_km, bool) or not isinstance(radius_km, (int, float)) or radius_km <= 0:
        raise ValueError("radius_km must be a positive number")
    area_km2 = math.pi * radius_km**2
    return {
        "radius_km": float(radius_km),
        "area_km2": round(area_km2, 2),
        "area_miles2": round(area_km2 * SQUARE_MILES_PER_SQUARE_KM, 2),
    }
