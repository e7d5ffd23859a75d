"""
Tile Generation Module

Slices boundary datasets into a Web Mercator tile pyramid, encodes each
non-empty tile as a gzipped Mapbox Vector Tile and writes it to a tile store.
"""

from .events import ErrorEvent, ProgressEvent, TileRunResult
from .tile_index import TileFeature, TileIndex, TileSpec
from .tile_pipeline import TilePipeline, tile_key
from .vector_tile_encoder import VectorTileEncoder
from .worker_pool import TileWorkerPool, WorkerOutcome, partition_zoom_levels

__all__ = [
    "ErrorEvent",
    "ProgressEvent",
    "TileRunResult",
    "TileFeature",
    "TileIndex",
    "TileSpec",
    "TilePipeline",
    "tile_key",
    "VectorTileEncoder",
    "TileWorkerPool",
    "WorkerOutcome",
    "partition_zoom_levels",
]
