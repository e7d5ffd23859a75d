"""
Exception hierarchy for boundary tile generation.

Precondition failures (configuration, input data, storage initialization)
abort a run before any tile is processed. Per-tile failures are reported
and the run continues.
"""

from typing import Optional


class BoundaryTilesError(Exception):
    """Base class for all boundary tile errors."""
    pass


class ConfigurationError(BoundaryTilesError):
    """Raised when configuration is invalid or incomplete."""
    pass


class InvalidGeoJSONError(BoundaryTilesError):
    """Raised when input is not a usable GeoJSON FeatureCollection."""
    pass


class StorageInitializationError(BoundaryTilesError):
    """Raised when a tile store cannot be created or reached."""
    pass


class TileEncodingError(BoundaryTilesError):
    """Raised when a tile cannot be encoded to MVT."""
    pass


class TileUploadError(BoundaryTilesError):
    """Raised when a tile store rejects a write."""

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        message = f"Failed to upload tile {key}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
