"""
Boundary Processor

Runs the full boundary preparation job:

1. Clear everything under the key prefix in the destination.
2. For each boundary type, load ``{data_dir}/{type}.geojson.json``,
   drop malformed features and simplify geometries.
3. Upload ``{prefix}/{type}/metadata.json``, retrying with exponential
   backoff.
4. Generate the tile pyramid with a pool of tile workers, tracking
   progress against the total number of tile coordinates.

A boundary type that fails is logged and the job moves on to the next one.
Failing to clear the destination aborts the job.
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..data_ingestion.boundary_ingester import BoundaryDataset, BoundaryIngester
from ..monitoring.metrics import MetricsCollector
from ..monitoring.progress import ProgressTracker
from ..storage.tile_store import TileStore, create_tile_store
from ..tile_generation.events import PipelineEvent, ProgressEvent
from ..tile_generation.tile_index import tiles_in_zoom
from ..tile_generation.worker_pool import TileWorkerPool, WorkerOutcome
from ..utils.config import Config
from ..utils.exceptions import TileUploadError


@dataclass
class BoundaryResult:
    """Outcome of preparing one boundary type."""
    boundary_type: str
    success: bool
    feature_count: int = 0
    tiles_visited: int = 0
    tiles_uploaded: int = 0
    tiles_failed: int = 0
    error: Optional[str] = None
    processing_time: float = 0.0


@dataclass
class PreparationReport:
    """Outcome of a whole preparation job."""
    results: List[BoundaryResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'skipped': list(self.skipped),
            'results': [result.__dict__.copy() for result in self.results],
        }


def total_tile_count(zoom_levels: List[int]) -> int:
    return sum(tiles_in_zoom(z) for z in zoom_levels)


class BoundaryProcessor:
    """Prepares and publishes tiles for every configured boundary type."""

    def __init__(
        self,
        config: Config,
        store: Optional[TileStore] = None,
        metrics: Optional[MetricsCollector] = None,
        worker_pool: Optional[TileWorkerPool] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the processor.

        Args:
            config: Job configuration
            store: Store used for clearing and metadata; created from config if omitted
            metrics: Optional metrics collector shared with the workers
            worker_pool: Tile worker pool; created from config if omitted
            sleep: Delay function used between retries
        """
        self.config = config
        self.metrics = metrics
        self.store = store or create_tile_store(config.storage)
        self.worker_pool = worker_pool or TileWorkerPool(
            num_workers=config.preparation.num_workers,
            tiling_config=config.tiling,
            metrics=metrics
        )
        self.ingester = BoundaryIngester(
            simplify_tolerance=config.preparation.simplify_tolerance
        )
        self._sleep = sleep
        self.logger = structlog.get_logger(component="BoundaryProcessor")

    @property
    def key_prefix(self) -> str:
        return self.config.storage.key_prefix

    def _key(self, *parts: str) -> str:
        return "/".join(part for part in (self.key_prefix, *parts) if part)

    def run(self) -> PreparationReport:
        """
        Run the job for every configured boundary type.

        Raises:
            Exception: If the destination cannot be cleared
        """
        preparation = self.config.preparation
        report = PreparationReport()

        self.clear_destination()

        for boundary_type in preparation.boundary_types:
            input_file = Path(preparation.data_dir) / f"{boundary_type}.geojson.json"

            if not input_file.exists():
                self.logger.error("Missing input file", boundary_type=boundary_type, input_file=str(input_file))
                report.skipped.append(boundary_type)
                continue

            report.results.append(self.process_boundary(boundary_type, input_file))

        if report.success:
            self.logger.info("All boundaries processed successfully", boundary_types=preparation.boundary_types)
        else:
            self.logger.error(
                "Some boundaries failed",
                failed=[r.boundary_type for r in report.results if not r.success]
            )
        return report

    def clear_destination(self) -> int:
        """Delete all existing objects under the key prefix."""
        prefix = f"{self.key_prefix}/" if self.key_prefix else ""
        self.logger.info("Clearing existing data from bucket", prefix=prefix)
        try:
            return self.store.delete_prefix(prefix)
        except Exception as e:
            self.logger.error("Error clearing bucket", prefix=prefix, error=str(e))
            raise

    def process_boundary(self, boundary_type: str, input_file: Path) -> BoundaryResult:
        """Load, describe and tile one boundary type; never raises."""
        start_time = time.time()
        result = BoundaryResult(boundary_type=boundary_type, success=False)
        logger = self.logger.bind(boundary_type=boundary_type)

        try:
            logger.info("Processing boundary", input_file=str(input_file))
            dataset = self.ingester.load_boundary(boundary_type, input_file)
            result.feature_count = dataset.feature_count

            self.upload_metadata(dataset)

            outcomes = self.generate_tiles(dataset)
            for outcome in outcomes:
                result.tiles_visited += outcome.result.tiles_visited
                result.tiles_uploaded += outcome.result.tiles_uploaded
                result.tiles_failed += outcome.result.tiles_failed

            failed_workers = [o for o in outcomes if o.exit_code != 0]
            if failed_workers:
                result.error = "; ".join(
                    f"worker {o.worker_id} (zoom {o.zoom_levels}): {o.result.fatal_error}"
                    for o in failed_workers
                )
            else:
                result.success = True
        except Exception as e:
            logger.error("Error processing boundary", error=str(e))
            result.error = str(e)

        result.processing_time = time.time() - start_time
        return result

    def upload_metadata(self, dataset: BoundaryDataset) -> None:
        preparation = self.config.preparation
        metadata = {
            'bounds': dataset.bounds,
            'minZoom': preparation.min_zoom,
            'maxZoom': preparation.max_zoom,
            'featureCount': dataset.feature_count,
        }
        self.upload_with_retry(
            self._key(dataset.name, 'metadata.json'),
            json.dumps(metadata).encode('utf-8'),
            content_type='application/json'
        )

    def upload_with_retry(self, key: str, data: bytes, content_type: str) -> None:
        """
        Upload an object, retrying with exponential backoff.

        Raises:
            TileUploadError: If every attempt fails
        """
        max_retries = self.config.preparation.max_retries
        retry_delay = self.config.preparation.retry_delay

        for attempt in range(max_retries + 1):
            try:
                self.store.save(key, data, content_type=content_type)
                return
            except TileUploadError as e:
                if attempt >= max_retries:
                    raise
                self.logger.warning(
                    "Retrying upload",
                    key=key,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    error=str(e)
                )
                self._sleep(retry_delay * 2 ** attempt)

    def generate_tiles(self, dataset: BoundaryDataset) -> List[WorkerOutcome]:
        zoom_levels = self.config.preparation.zoom_levels
        progress = ProgressTracker(
            total_tile_count(zoom_levels),
            f"{dataset.name} tiles",
            metrics=self.metrics,
            boundary_type=dataset.name
        )

        def on_event(event: PipelineEvent) -> None:
            if isinstance(event, ProgressEvent):
                progress.increment()

        outcomes = self.worker_pool.run(
            dataset.name,
            zoom_levels,
            dataset.geojson,
            self.config.storage,
            on_event=on_event
        )
        progress.complete()
        return outcomes
