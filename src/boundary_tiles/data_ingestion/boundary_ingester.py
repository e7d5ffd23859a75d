"""
Boundary Ingester

Loads a boundary GeoJSON file, checks it is a FeatureCollection, drops
malformed features and simplifies the remaining geometries before tiling.
"""

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Union

import geopandas as gpd
from shapely.geometry import mapping, shape

from .base_ingester import BaseDataIngester
from ..utils.exceptions import InvalidGeoJSONError


@dataclass
class BoundaryDataset:
    """A named, validated FeatureCollection ready for tiling."""
    name: str
    geojson: Dict[str, Any]
    bounds: List[float]
    dropped_features: int = 0

    @property
    def feature_count(self) -> int:
        return len(self.geojson['features'])


def is_valid_feature(feature: Any) -> bool:
    """A Feature with a typed geometry and a coordinates array."""
    if not isinstance(feature, dict) or feature.get('type') != 'Feature':
        return False
    geometry = feature.get('geometry')
    return (
        isinstance(geometry, dict)
        and bool(geometry.get('type'))
        and isinstance(geometry.get('coordinates'), list)
    )


class BoundaryIngester(BaseDataIngester):
    """Ingests boundary FeatureCollections from GeoJSON files."""

    def __init__(self, simplify_tolerance: float = 0.01):
        """
        Args:
            simplify_tolerance: Simplification tolerance in degrees; 0 disables it
        """
        super().__init__()
        self.simplify_tolerance = simplify_tolerance

    def extract(self, source: Union[str, Path]) -> Any:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def validate(self, data: Any) -> bool:
        return (
            isinstance(data, dict)
            and data.get('type') == 'FeatureCollection'
            and isinstance(data.get('features'), list)
        )

    def transform(self, data: Dict[str, Any]) -> Dict[str, Any]:
        features = [copy.deepcopy(f) for f in data['features'] if is_valid_feature(f)]

        self.stats['records_processed'] = len(features)
        self.stats['records_dropped'] = len(data['features']) - len(features)

        if not features:
            raise InvalidGeoJSONError("No valid features found in GeoJSON")

        if self.stats['records_dropped']:
            self.logger.warning("Dropped invalid features", count=self.stats['records_dropped'])

        if self.simplify_tolerance > 0:
            geometries = gpd.GeoSeries([shape(f['geometry']) for f in features])
            simplified = geometries.simplify(self.simplify_tolerance, preserve_topology=True)
            for feature, geom in zip(features, simplified):
                feature['geometry'] = _to_json_geometry(mapping(geom))

        result = {'type': 'FeatureCollection', 'features': features}
        if 'bbox' in data:
            result['bbox'] = data['bbox']
        return result

    def load_boundary(self, name: str, source: Union[str, Path]) -> BoundaryDataset:
        """
        Load one boundary dataset.

        Raises:
            InvalidGeoJSONError: If the file cannot be read or holds no usable features
        """
        try:
            geojson = self.ingest(source)
        except (OSError, ValueError, InvalidGeoJSONError) as e:
            raise InvalidGeoJSONError(f"Failed to load GeoJSON from {source}: {e}") from e

        self.logger.info("Loaded boundary", boundary_type=name, feature_count=len(geojson['features']))

        return BoundaryDataset(
            name=name,
            geojson=geojson,
            bounds=geojson.get('bbox') or calculate_bounds(geojson),
            dropped_features=self.stats['records_dropped']
        )


def calculate_bounds(geojson: Dict[str, Any]) -> List[float]:
    """[minx, miny, maxx, maxy] over every feature geometry."""
    geometries = [
        shape(f['geometry']) for f in geojson['features']
        if f.get('geometry')
    ]
    minx, miny, maxx, maxy = gpd.GeoSeries(geometries).total_bounds
    return [float(minx), float(miny), float(maxx), float(maxy)]


def _to_json_geometry(value: Any) -> Any:
    """Turn shapely's tuple-based mapping into plain JSON lists."""
    if isinstance(value, dict):
        return {key: _to_json_geometry(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json_geometry(item) for item in value]
    return value
