"""
Boundary Tiles

Vector tile generation for administrative boundary datasets: GeoJSON in,
gzipped Mapbox Vector Tiles out, published to object storage.
"""

__version__ = "1.0.0"

# Core modules
from . import data_ingestion
from . import monitoring
from . import processing
from . import storage
from . import tile_generation
from . import utils

__all__ = [
    "data_ingestion",
    "monitoring",
    "processing",
    "storage",
    "tile_generation",
    "utils",
]
