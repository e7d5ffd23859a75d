"""
Data Ingestion Module

Loading, cleaning and validation of boundary GeoJSON inputs.
"""

from .base_ingester import BaseDataIngester
from .boundary_ingester import BoundaryDataset, BoundaryIngester, calculate_bounds
from .geojson_validator import GeoJSONValidator, ValidationResult

__all__ = [
    "BaseDataIngester",
    "BoundaryDataset",
    "BoundaryIngester",
    "calculate_bounds",
    "GeoJSONValidator",
    "ValidationResult",
]
