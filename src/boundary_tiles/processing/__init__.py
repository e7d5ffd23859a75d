"""
Processing Module

Orchestration of the boundary preparation job.
"""

from .boundary_processor import (
    BoundaryProcessor,
    BoundaryResult,
    PreparationReport,
    total_tile_count,
)

__all__ = [
    "BoundaryProcessor",
    "BoundaryResult",
    "PreparationReport",
    "total_tile_count",
]
