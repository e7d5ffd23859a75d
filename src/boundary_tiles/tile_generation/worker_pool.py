"""
Tile Worker Pool

Splits a dataset's zoom levels into contiguous chunks and runs one
TilePipeline per chunk on its own thread. Workers share nothing but the
read-only input: each builds its own index and opens its own store. Events
travel back to the calling thread through a queue, where they are handed to
the caller in arrival order.
"""

import math
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from .events import ErrorEvent, PipelineEvent, TileRunResult
from .tile_pipeline import StoreFactory, TilePipeline, validate_zoom_levels
from ..monitoring.metrics import MetricsCollector
from ..storage.tile_store import create_tile_store
from ..utils.config import StorageConfig, TilingConfig


def partition_zoom_levels(zoom_levels: Sequence[int], num_workers: int) -> List[List[int]]:
    """Split zoom levels into at most ``num_workers`` contiguous, non-empty chunks."""
    if num_workers < 1:
        raise ValueError("Worker count must be positive")

    levels = list(zoom_levels)
    per_worker = max(1, math.ceil(len(levels) / num_workers))

    chunks = []
    for i in range(num_workers):
        chunk = levels[i * per_worker:(i + 1) * per_worker]
        if chunk:
            chunks.append(chunk)
    return chunks


@dataclass
class WorkerOutcome:
    """How one worker's run ended."""
    worker_id: int
    zoom_levels: List[int]
    result: TileRunResult

    @property
    def exit_code(self) -> int:
        return 0 if self.result.success else 1


class TileWorkerPool:
    """Runs tile pipelines for disjoint zoom level chunks concurrently."""

    def __init__(
        self,
        num_workers: int = 16,
        tiling_config: Optional[TilingConfig] = None,
        store_factory: StoreFactory = create_tile_store,
        metrics: Optional[MetricsCollector] = None
    ):
        self.num_workers = num_workers
        self.tiling = tiling_config or TilingConfig()
        self.store_factory = store_factory
        self.metrics = metrics
        self.logger = structlog.get_logger(component="TileWorkerPool")

    def run(
        self,
        boundary_type: str,
        zoom_levels: Sequence[int],
        geojson: Dict[str, Any],
        storage: StorageConfig,
        on_event: Optional[Callable[[PipelineEvent], None]] = None
    ) -> List[WorkerOutcome]:
        """
        Run all workers and block until every one has finished.

        Returns:
            One outcome per worker, ordered by worker id
        """
        chunks = partition_zoom_levels(validate_zoom_levels(zoom_levels), self.num_workers)
        results = {
            worker_id: TileRunResult(boundary_type=boundary_type)
            for worker_id in range(len(chunks))
        }
        events: "queue.Queue" = queue.Queue()

        self.logger.info(
            "Starting tile workers",
            boundary_type=boundary_type,
            workers=len(chunks),
            zoom_chunks=chunks
        )

        with ThreadPoolExecutor(
            max_workers=max(1, len(chunks)),
            thread_name_prefix=f"tiles-{boundary_type}"
        ) as executor:
            for worker_id, chunk in enumerate(chunks):
                executor.submit(
                    self._work, worker_id, boundary_type, chunk, geojson, storage, events
                )

            finished = 0
            while finished < len(chunks):
                worker_id, event = events.get()
                if event is None:
                    finished += 1
                    continue

                results[worker_id].record(event)
                if isinstance(event, ErrorEvent):
                    self.logger.error(
                        "Worker error",
                        worker_id=worker_id,
                        boundary_type=boundary_type,
                        fatal=event.fatal,
                        error=event.error
                    )
                if on_event is not None:
                    on_event(event)

        outcomes = [
            WorkerOutcome(worker_id=worker_id, zoom_levels=chunks[worker_id], result=results[worker_id])
            for worker_id in range(len(chunks))
        ]
        for outcome in outcomes:
            if outcome.exit_code != 0:
                self.logger.error(
                    "Worker stopped with exit code",
                    worker_id=outcome.worker_id,
                    exit_code=outcome.exit_code,
                    zoom_levels=outcome.zoom_levels
                )
        return outcomes

    def _work(
        self,
        worker_id: int,
        boundary_type: str,
        zoom_levels: List[int],
        geojson: Dict[str, Any],
        storage: StorageConfig,
        events: "queue.Queue"
    ) -> None:
        """Worker body: forward every pipeline event, then a ``None`` end marker."""
        pipeline = TilePipeline(
            tiling_config=self.tiling,
            store_factory=self.store_factory,
            metrics=self.metrics
        )
        try:
            for event in pipeline.run(boundary_type, zoom_levels, geojson, storage):
                events.put((worker_id, event))
        except Exception as e:
            self.logger.exception("Fatal error in worker", worker_id=worker_id)
            events.put((worker_id, ErrorEvent(boundary_type, str(e), fatal=True)))
        finally:
            events.put((worker_id, None))
