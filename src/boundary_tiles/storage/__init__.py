"""
Storage Module

Blob destinations for published tiles and boundary metadata.
"""

from .tile_store import (
    TileStore,
    GCSTileStore,
    S3TileStore,
    LocalTileStore,
    create_tile_store,
)

__all__ = [
    "TileStore",
    "GCSTileStore",
    "S3TileStore",
    "LocalTileStore",
    "create_tile_store",
]
