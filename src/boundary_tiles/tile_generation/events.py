"""
Pipeline events and run summaries.

Events are what a pipeline run reports to whoever drives it. ``to_message``
gives the compact wire form passed between a worker and its parent.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


TILE_UPLOADED = "uploaded"
TILE_SKIPPED = "skipped"
TILE_FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """One tile coordinate visited, whatever its outcome."""
    boundary_type: str
    tile: Tuple[int, int, int]
    status: str

    def to_message(self) -> Dict[str, Any]:
        return {'type': 'progress', 'data': 1}


@dataclass(frozen=True)
class ErrorEvent:
    """A tile failure (non-fatal) or a run-ending failure (fatal)."""
    boundary_type: str
    error: str
    fatal: bool = False
    tile: Optional[Tuple[int, int, int]] = None

    def to_message(self) -> Dict[str, Any]:
        return {'type': 'error', 'error': self.error}


PipelineEvent = Union[ProgressEvent, ErrorEvent]


@dataclass
class TileRunResult:
    """Summary of a pipeline run, accumulated from its events."""
    boundary_type: str
    tiles_visited: int = 0
    tiles_uploaded: int = 0
    tiles_skipped: int = 0
    tiles_failed: int = 0
    errors: List[str] = field(default_factory=list)
    fatal_error: Optional[str] = None
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.fatal_error is None

    def record(self, event: PipelineEvent) -> None:
        if isinstance(event, ProgressEvent):
            self.tiles_visited += 1
            if event.status == TILE_UPLOADED:
                self.tiles_uploaded += 1
            elif event.status == TILE_SKIPPED:
                self.tiles_skipped += 1
            elif event.status == TILE_FAILED:
                self.tiles_failed += 1
        elif event.fatal:
            self.fatal_error = event.error
        else:
            self.errors.append(event.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'boundary_type': self.boundary_type,
            'tiles_visited': self.tiles_visited,
            'tiles_uploaded': self.tiles_uploaded,
            'tiles_skipped': self.tiles_skipped,
            'tiles_failed': self.tiles_failed,
            'errors': list(self.errors),
            'fatal_error': self.fatal_error,
            'processing_time': self.processing_time,
        }
