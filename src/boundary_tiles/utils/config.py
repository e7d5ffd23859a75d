"""
Configuration management for boundary tile generation.

Settings are plain dataclasses validated on construction. ``Config.from_env``
assembles them from environment variables, loading a ``.env`` file first
when one is present.

Environment Variables:
    TILE_STORAGE_BACKEND: gcs (default), s3 or local
    STORAGE_BUCKET: Destination bucket (falls back to VITE_FIREBASE_STORAGE_BUCKET)
    FIREBASE_ADMIN_CREDENTIALS: Service account JSON for the gcs backend
    AWS_REGION / AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: s3 backend credentials
    S3_ENDPOINT_URL: Optional S3-compatible endpoint
    TILE_OUTPUT_DIR: Root directory for the local backend
    TILE_KEY_PREFIX: Key prefix for all objects (default "boundaries")
    DATA_DIR: Directory holding {type}.geojson.json inputs
    BOUNDARY_TYPES: Comma separated boundary types
    TILE_MIN_ZOOM / TILE_MAX_ZOOM: Zoom range for boundary preparation
    TILE_WORKERS: Number of tiling workers
    LOG_LEVEL / LOG_FORMAT: Logging level and format (json or console)
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError


STORAGE_BACKENDS = ("gcs", "s3", "local")

# geojson-vt accepts zoom levels in the 0-24 range
MAX_SUPPORTED_ZOOM = 24


@dataclass
class StorageConfig:
    """Tile destination configuration."""
    backend: str = "gcs"
    bucket: Optional[str] = None
    key_prefix: str = "boundaries"
    credentials: Optional[Dict[str, Any]] = None
    region: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint_url: Optional[str] = None
    local_root: Optional[str] = None

    def __post_init__(self):
        if self.backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Storage backend must be one of: {', '.join(STORAGE_BACKENDS)}"
            )
        if self.backend in ("gcs", "s3") and not self.bucket:
            raise ConfigurationError(
                f"A bucket name is required for the {self.backend} backend"
            )
        if self.backend == "local" and not self.local_root:
            raise ConfigurationError("local_root is required for the local backend")
        self.key_prefix = self.key_prefix.strip("/")


@dataclass
class TilingConfig:
    """Tile index and encoding parameters."""
    tolerance: float = 3.0
    extent: int = 4096
    buffer: int = 64
    layer_name: str = "geojsonLayer"
    generate_id: bool = True

    def __post_init__(self):
        if self.tolerance < 0:
            raise ConfigurationError("Tolerance must be non-negative")
        if self.extent <= 0:
            raise ConfigurationError("Extent must be positive")
        if self.buffer < 0:
            raise ConfigurationError("Buffer must be non-negative")
        if not self.layer_name:
            raise ConfigurationError("Layer name cannot be empty")


@dataclass
class PreparationConfig:
    """Settings for the full boundary preparation job."""
    data_dir: str = "data"
    boundary_types: List[str] = field(
        default_factory=lambda: ["states", "counties", "zipcodes"]
    )
    min_zoom: int = 0
    max_zoom: int = 12
    num_workers: int = 16
    simplify_tolerance: float = 0.01
    max_retries: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        if not 0 <= self.min_zoom <= self.max_zoom <= MAX_SUPPORTED_ZOOM:
            raise ConfigurationError(
                f"Zoom range must satisfy 0 <= min_zoom <= max_zoom <= {MAX_SUPPORTED_ZOOM}"
            )
        if self.num_workers < 1:
            raise ConfigurationError("Worker count must be positive")
        if self.max_retries < 0:
            raise ConfigurationError("Retry count must be non-negative")
        if not self.boundary_types:
            raise ConfigurationError("At least one boundary type is required")

    @property
    def zoom_levels(self) -> List[int]:
        return list(range(self.min_zoom, self.max_zoom + 1))

    @classmethod
    def from_env(cls) -> "PreparationConfig":
        try:
            return cls(
                data_dir=os.getenv("DATA_DIR", str(Path.cwd() / "data")),
                boundary_types=_split_list(
                    os.getenv("BOUNDARY_TYPES", "states,counties,zipcodes")
                ),
                min_zoom=int(os.getenv("TILE_MIN_ZOOM", "0")),
                max_zoom=int(os.getenv("TILE_MAX_ZOOM", "12")),
                num_workers=int(os.getenv("TILE_WORKERS", "16")),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e


@dataclass
class Config:
    """Top-level configuration."""
    storage: StorageConfig
    tiling: TilingConfig = field(default_factory=TilingConfig)
    preparation: PreparationConfig = field(default_factory=PreparationConfig)
    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(
        cls,
        env_file: Optional[str] = None,
        storage_overrides: Optional[Dict[str, Any]] = None
    ) -> "Config":
        """
        Build configuration from environment variables.

        Args:
            env_file: Explicit .env file; the default lookup is used when omitted
            storage_overrides: StorageConfig fields that take precedence over the environment
        """
        if env_file:
            if not Path(env_file).exists():
                raise ConfigurationError(f"Environment file not found: {env_file}")
            load_dotenv(env_file)
        else:
            load_dotenv()

        storage_settings = {
            'backend': os.getenv("TILE_STORAGE_BACKEND", "gcs").lower(),
            'bucket': os.getenv("STORAGE_BUCKET") or os.getenv("VITE_FIREBASE_STORAGE_BUCKET"),
            'key_prefix': os.getenv("TILE_KEY_PREFIX", "boundaries"),
            'region': os.getenv("AWS_REGION"),
            'access_key_id': os.getenv("AWS_ACCESS_KEY_ID"),
            'secret_access_key': os.getenv("AWS_SECRET_ACCESS_KEY"),
            'endpoint_url': os.getenv("S3_ENDPOINT_URL"),
            'local_root': os.getenv("TILE_OUTPUT_DIR"),
        }
        storage_settings.update(storage_overrides or {})
        if storage_settings['backend'] == "gcs" and 'credentials' not in storage_settings:
            storage_settings['credentials'] = _load_service_account()

        storage = StorageConfig(**storage_settings)

        preparation = PreparationConfig.from_env()

        return cls(
            storage=storage,
            preparation=preparation,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


def _load_service_account() -> Optional[Dict[str, Any]]:
    """Read service account credentials from the environment or firebase-admin.json."""
    raw = os.getenv("FIREBASE_ADMIN_CREDENTIALS")
    source = "FIREBASE_ADMIN_CREDENTIALS"
    if raw is None:
        credentials_file = Path.cwd() / "firebase-admin.json"
        if not credentials_file.exists():
            return None
        raw = credentials_file.read_text(encoding="utf-8")
        source = str(credentials_file)

    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid service account JSON in {source}: {e}") from e


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]
