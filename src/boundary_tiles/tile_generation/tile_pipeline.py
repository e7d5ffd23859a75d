"""
Tile Pipeline

Turns one boundary dataset into a published vector tile pyramid:

1. Build a TileIndex once, sized for the highest requested zoom.
2. Open the tile store.
3. Visit every (z, x, y) of every requested zoom level, in the order the
   levels were given, x outer and y inner.
4. Encode, gzip and upload each non-empty tile to
   ``{prefix}/{boundary_type}/tiles/{z}/{x}/{y}.mvt``.

A run is a generator of events: exactly one ProgressEvent per visited
coordinate, plus an ErrorEvent for every tile that failed to encode or
upload. Failures before the first tile (bad input, bad zoom levels, storage
that cannot be opened) and unexpected errors inside the loop produce a
single fatal ErrorEvent and end the run. Failed uploads are not retried.
"""

import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import structlog

from .events import (
    ErrorEvent,
    PipelineEvent,
    ProgressEvent,
    TileRunResult,
    TILE_FAILED,
    TILE_SKIPPED,
    TILE_UPLOADED,
)
from .tile_index import TileIndex, TileSpec, tiles_in_zoom
from .vector_tile_encoder import MVT_CONTENT_ENCODING, MVT_CONTENT_TYPE, VectorTileEncoder
from ..monitoring.metrics import MetricsCollector
from ..storage.tile_store import TileStore, create_tile_store
from ..utils.config import MAX_SUPPORTED_ZOOM, StorageConfig, TilingConfig
from ..utils.exceptions import (
    StorageInitializationError,
    TileEncodingError,
    TileUploadError,
)


StoreFactory = Callable[[StorageConfig], TileStore]


def tile_key(key_prefix: str, boundary_type: str, z: int, x: int, y: int) -> str:
    """Object key of a tile."""
    key = f"{boundary_type}/tiles/{z}/{x}/{y}.mvt"
    return f"{key_prefix}/{key}" if key_prefix else key


def validate_zoom_levels(zoom_levels: Sequence[int]) -> List[int]:
    """Check zoom levels are a non-empty sequence of integers in 0-24."""
    if zoom_levels is None or len(zoom_levels) == 0:
        raise ValueError("No zoom levels specified")

    levels = list(zoom_levels)
    for zoom in levels:
        if isinstance(zoom, bool) or not isinstance(zoom, int):
            raise ValueError(f"Zoom levels must be integers, got {zoom!r}")
        if not 0 <= zoom <= MAX_SUPPORTED_ZOOM:
            raise ValueError(f"Zoom levels must be between 0 and {MAX_SUPPORTED_ZOOM}, got {zoom}")
    return levels


class TilePipeline:
    """
    Sequential tile generation for one boundary dataset at a time.

    The pipeline holds no per-run state, so one instance may serve
    several runs one after another. Concurrent runs should use separate
    instances and separate stores.
    """

    def __init__(
        self,
        tiling_config: Optional[TilingConfig] = None,
        store_factory: StoreFactory = create_tile_store,
        metrics: Optional[MetricsCollector] = None
    ):
        """
        Initialize the pipeline.

        Args:
            tiling_config: Index and encoding parameters
            store_factory: Creates a store when run() is given a StorageConfig
            metrics: Optional metrics collector
        """
        self.tiling = tiling_config or TilingConfig()
        self.store_factory = store_factory
        self.metrics = metrics
        self.encoder = VectorTileEncoder(
            layer_name=self.tiling.layer_name,
            extent=self.tiling.extent
        )
        self.logger = structlog.get_logger(component="TilePipeline")

    def run(
        self,
        boundary_type: str,
        zoom_levels: Sequence[int],
        geojson: Dict[str, Any],
        storage: Union[StorageConfig, TileStore]
    ) -> Iterator[PipelineEvent]:
        """
        Generate and upload tiles, yielding progress and error events.

        Args:
            boundary_type: Dataset name used in object keys (e.g. "states")
            zoom_levels: Zoom levels to generate, processed in the given order
            geojson: FeatureCollection with WGS84 coordinates
            storage: A StorageConfig to open a store from, or an open store
        """
        logger = self.logger.bind(boundary_type=boundary_type)
        start_time = time.time()

        try:
            if not boundary_type or '/' in boundary_type:
                raise ValueError(f"Invalid boundary type: {boundary_type!r}")
            levels = validate_zoom_levels(zoom_levels)

            index = TileIndex(
                geojson,
                max_zoom=max(levels),
                tolerance=self.tiling.tolerance,
                extent=self.tiling.extent,
                buffer=self.tiling.buffer,
                generate_id=self.tiling.generate_id
            )
            store = self._open_store(storage)
        except Exception as e:
            logger.error("Tile pipeline initialization failed", error=str(e))
            self._count_run(boundary_type, 'fatal')
            yield ErrorEvent(boundary_type, f"Initialization failed: {e}", fatal=True)
            return

        total_tiles = sum(tiles_in_zoom(z) for z in levels)
        logger.info("Starting tile generation", zoom_levels=levels, total_tiles=total_tiles)

        try:
            for z in levels:
                tiles_per_axis = 1 << z
                logger.debug("Processing zoom level", zoom=z, tile_count=tiles_per_axis ** 2)

                for x in range(tiles_per_axis):
                    for y in range(tiles_per_axis):
                        status, error = self._process_tile(index, store, boundary_type, z, x, y)
                        if error is not None:
                            yield error

                        self._count_tile(boundary_type, status)
                        yield ProgressEvent(boundary_type, (z, x, y), status)
        except Exception as e:
            logger.exception("Unexpected error in tile pipeline")
            self._count_run(boundary_type, 'fatal')
            yield ErrorEvent(boundary_type, str(e), fatal=True)
            return

        elapsed = time.time() - start_time
        self._count_run(boundary_type, 'completed')
        if self.metrics is not None:
            self.metrics.record_histogram(
                'tile_run_duration_seconds', elapsed, {'boundary_type': boundary_type}
            )
        logger.info("Tile generation completed", total_tiles=total_tiles, processing_time=elapsed)

    def execute(
        self,
        boundary_type: str,
        zoom_levels: Sequence[int],
        geojson: Dict[str, Any],
        storage: Union[StorageConfig, TileStore],
        on_event: Optional[Callable[[PipelineEvent], None]] = None
    ) -> TileRunResult:
        """Run to completion and summarize the events."""
        start_time = time.time()
        result = TileRunResult(boundary_type=boundary_type)

        for event in self.run(boundary_type, zoom_levels, geojson, storage):
            result.record(event)
            if on_event is not None:
                on_event(event)

        result.processing_time = time.time() - start_time
        return result

    def _open_store(self, storage: Union[StorageConfig, TileStore]) -> TileStore:
        if isinstance(storage, TileStore):
            return storage
        if isinstance(storage, StorageConfig):
            return self.store_factory(storage)
        raise StorageInitializationError(
            f"Expected a StorageConfig or TileStore, got {type(storage).__name__}"
        )

    def _process_tile(
        self,
        index: TileIndex,
        store: TileStore,
        boundary_type: str,
        z: int,
        x: int,
        y: int
    ) -> Tuple[str, Optional[ErrorEvent]]:
        """Encode and upload one tile; returns its status and any error event."""
        features = index.get_tile(z, x, y)
        if not features:
            return TILE_SKIPPED, None

        tile = TileSpec(x=x, y=y, z=z)
        key = tile_key(store.config.key_prefix, boundary_type, z, x, y)

        try:
            data = self.encoder.encode_compressed(features, tile)
            self._upload_tile(store, key, data)
        except TileUploadError as e:
            message = str(e)
        except TileEncodingError as e:
            message = f"Error processing tile z={z} x={x} y={y}: {e}"
        else:
            return TILE_UPLOADED, None

        self.logger.error(
            "Tile failed",
            boundary_type=boundary_type,
            tile_id=tile.tile_id,
            key=key,
            error=message
        )
        return TILE_FAILED, ErrorEvent(boundary_type, message, fatal=False, tile=(z, x, y))

    @staticmethod
    def _upload_tile(store: TileStore, key: str, data: bytes) -> None:
        try:
            store.save(
                key,
                data,
                content_type=MVT_CONTENT_TYPE,
                content_encoding=MVT_CONTENT_ENCODING
            )
        except TileUploadError:
            raise
        except Exception as e:
            raise TileUploadError(key, e) from e

    def _count_tile(self, boundary_type: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(
                'tiles_processed_total',
                labels={'boundary_type': boundary_type, 'status': status}
            )

    def _count_run(self, boundary_type: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(
                'tile_runs_total',
                labels={'boundary_type': boundary_type, 'status': status}
            )
