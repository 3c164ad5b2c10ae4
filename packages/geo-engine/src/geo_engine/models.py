from dataclasses import dataclass


@dataclass(frozen=True)
class Position:
    longitude: float
    latitude: float
