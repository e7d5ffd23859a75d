"""
Shared utilities: configuration, exceptions and logging setup.
"""

from .config import Config, StorageConfig, TilingConfig, PreparationConfig
from .exceptions import (
    BoundaryTilesError,
    ConfigurationError,
    InvalidGeoJSONError,
    StorageInitializationError,
    TileEncodingError,
    TileUploadError,
)
from .logging_config import configure_logging

__all__ = [
    "Config",
    "StorageConfig",
    "TilingConfig",
    "PreparationConfig",
    "BoundaryTilesError",
    "ConfigurationError",
    "InvalidGeoJSONError",
    "StorageInitializationError",
    "TileEncodingError",
    "TileUploadError",
    "configure_logging",
]
