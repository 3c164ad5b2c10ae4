class LocationError(Exception):
    """Base location subsystem exception."""


class ValidationError(LocationError):
    """Raised when an identifier, coordinate, radius, limit, TTL or setting is malformed."""


class NotFoundError(LocationError):
    """Raised when the user profile does not exist."""


class NoLocationDataError(LocationError):
    """Raised when a profile exists but has no live position in the geo index."""


class StoreError(LocationError):
    """Raised when an underlying store call fails."""
