"""
Tile Index

In-memory spatial index over a GeoJSON FeatureCollection that answers
"which clipped features are visible in tile (z, x, y)" queries.

Features are projected to Web Mercator once, indexed with an R-tree, and
sliced per tile with a buffer around the tile edges. Geometries are
simplified per zoom level with a tolerance expressed in tile units, except
at the index's maximum zoom where full detail is kept.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import geopandas as gpd
import structlog
from shapely.affinity import translate
from shapely.geometry import box, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from ..utils.config import MAX_SUPPORTED_ZOOM
from ..utils.exceptions import InvalidGeoJSONError


WGS84_EPSG = 4326
WEB_MERCATOR_EPSG = 3857

# Latitude limit of the square Web Mercator world
WEB_MERCATOR_MAX_LAT = 85.0511287798066

# Half the width of the Web Mercator world in meters
MERCATOR_HALF_WORLD = 20037508.342789244

GEOMETRY_FAMILIES = {
    'Point': 'point',
    'MultiPoint': 'point',
    'LineString': 'line',
    'LinearRing': 'line',
    'MultiLineString': 'line',
    'Polygon': 'polygon',
    'MultiPolygon': 'polygon',
}


@dataclass
class TileSpec:
    """A single tile address in the XYZ scheme."""
    x: int
    y: int
    z: int

    @property
    def tile_id(self) -> str:
        """Get unique tile identifier."""
        return f"{self.z}/{self.x}/{self.y}"

    @property
    def size(self) -> float:
        """Tile width in Web Mercator meters."""
        return 2 * MERCATOR_HALF_WORLD / (1 << self.z)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Tile bounds in Web Mercator meters (minx, miny, maxx, maxy)."""
        size = self.size
        minx = -MERCATOR_HALF_WORLD + self.x * size
        maxy = MERCATOR_HALF_WORLD - self.y * size
        return (minx, maxy - size, minx + size, maxy)

    def buffered_bounds(self, buffer: int, extent: int) -> Tuple[float, float, float, float]:
        """Tile bounds grown by ``buffer`` tile units on every side."""
        pad = self.size * buffer / extent
        minx, miny, maxx, maxy = self.bounds
        return (minx - pad, miny - pad, maxx + pad, maxy + pad)


@dataclass
class TileFeature:
    """A feature clipped to one tile, in Web Mercator coordinates."""
    geometry: BaseGeometry
    properties: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None


def validate_feature_collection(geojson: Any) -> None:
    """Raise InvalidGeoJSONError unless ``geojson`` is a FeatureCollection."""
    if not isinstance(geojson, dict):
        raise InvalidGeoJSONError(
            f"Input data is not a valid GeoJSON object: expected a mapping, got {type(geojson).__name__}"
        )
    if geojson.get('type') != 'FeatureCollection':
        raise InvalidGeoJSONError(
            f"Invalid GeoJSON: Must be a FeatureCollection, got type={geojson.get('type')!r}"
        )
    if not isinstance(geojson.get('features'), list):
        raise InvalidGeoJSONError("Invalid GeoJSON: FeatureCollection has no features array")


def wrap_longitudes(geom: BaseGeometry) -> BaseGeometry:
    """
    Move parts of a geometry lying past the antimeridian into the -180..180 world.

    A polygon spanning 170..190 becomes two parts, 170..180 and -180..-170.
    """
    minx, _, maxx, _ = geom.bounds
    if minx >= -180.0 and maxx <= 180.0:
        return geom

    parts = []
    for offset in (-360.0, 0.0, 360.0):
        # Copy of the world displaced by -offset, shifted back into range
        part = geom.intersection(box(-180.0 - offset, -90.0, 180.0 - offset, 90.0))
        if not part.is_empty:
            parts.append(translate(part, xoff=offset))

    return unary_union(parts)


class TileIndex:
    """
    Spatial index that slices a FeatureCollection into vector tiles.

    The index is built once and owned by a single pipeline run.
    """

    def __init__(
        self,
        geojson: Dict[str, Any],
        max_zoom: int,
        tolerance: float = 3.0,
        extent: int = 4096,
        buffer: int = 64,
        generate_id: bool = False
    ):
        """
        Build the index.

        Args:
            geojson: FeatureCollection with WGS84 coordinates
            max_zoom: Highest zoom level that will be queried at full detail
            tolerance: Simplification tolerance in tile units
            extent: Tile extent in tile units
            buffer: Geometry margin beyond tile edges, in tile units
            generate_id: Use each feature's position in the input as its id

        Raises:
            InvalidGeoJSONError: If the input is not a FeatureCollection
            ValueError: If max_zoom is outside 0-24
        """
        if not 0 <= max_zoom <= MAX_SUPPORTED_ZOOM:
            raise ValueError(f"max_zoom should be in the 0-{MAX_SUPPORTED_ZOOM} range")
        validate_feature_collection(geojson)

        self.max_zoom = max_zoom
        self.tolerance = tolerance
        self.extent = extent
        self.buffer = buffer
        self.generate_id = generate_id

        self.logger = structlog.get_logger(component="TileIndex")

        self._ids: List[Optional[int]] = []
        self._properties: List[Dict[str, Any]] = []
        self._zoom_cache: Tuple[Optional[int], Optional[gpd.GeoSeries]] = (None, None)

        self.features = self._build(geojson['features'])

        self.logger.info(
            "Tile index built",
            feature_count=len(self.features),
            skipped_features=len(geojson['features']) - len(self.features),
            max_zoom=max_zoom
        )

    def _build(self, features: List[Any]) -> gpd.GeoDataFrame:
        """Convert input features to an indexed Web Mercator GeoDataFrame."""
        geometries = []
        source_index = []

        for i, feature in enumerate(features):
            self._ids.append(self._feature_id(feature, i))
            properties = feature.get('properties') if isinstance(feature, dict) else None
            self._properties.append(properties if isinstance(properties, dict) else {})

            if not isinstance(feature, dict) or not feature.get('geometry'):
                continue

            try:
                geom = wrap_longitudes(shape(feature['geometry']))
            except Exception as e:
                self.logger.warning("Skipping feature with invalid geometry", feature_index=i, error=str(e))
                continue

            if geom.is_empty:
                continue

            geometries.append(geom)
            source_index.append(i)

        gdf = gpd.GeoDataFrame(
            {'source_index': source_index},
            geometry=geometries,
            crs=f"EPSG:{WGS84_EPSG}"
        )

        if gdf.empty:
            return gdf.set_crs(epsg=WEB_MERCATOR_EPSG, allow_override=True)

        # Clamp to the latitudes Web Mercator can represent
        gdf.geometry = gdf.geometry.clip_by_rect(
            -180.0, -WEB_MERCATOR_MAX_LAT, 180.0, WEB_MERCATOR_MAX_LAT
        )
        gdf = gdf[~gdf.geometry.is_empty]

        gdf = gdf.to_crs(epsg=WEB_MERCATOR_EPSG).reset_index(drop=True)
        gdf.sindex

        return gdf

    def _feature_id(self, feature: Any, position: int) -> Optional[int]:
        if self.generate_id:
            return position
        if isinstance(feature, dict):
            fid = feature.get('id')
            if isinstance(fid, int) and not isinstance(fid, bool) and fid >= 0:
                return fid
        return None

    def simplification_tolerance(self, zoom: int) -> float:
        """Tolerance in meters for a zoom level; zero at or beyond max_zoom."""
        if zoom >= self.max_zoom or self.tolerance == 0:
            return 0.0
        return self.tolerance / self.extent * TileSpec(0, 0, zoom).size

    def _zoom_geometries(self, zoom: int) -> gpd.GeoSeries:
        """Geometries simplified for a zoom level, cached for the current level."""
        cached_zoom, cached = self._zoom_cache
        if cached_zoom == zoom and cached is not None:
            return cached

        tolerance = self.simplification_tolerance(zoom)
        geometries = self.features.geometry
        if tolerance > 0:
            geometries = geometries.simplify(tolerance, preserve_topology=True)

        self._zoom_cache = (zoom, geometries)
        return geometries

    def get_tile(self, z: int, x: int, y: int) -> Optional[List[TileFeature]]:
        """
        Get the features visible in a tile.

        Returns:
            Clipped features in input order, or None if the tile is empty
        """
        if not 0 <= z <= MAX_SUPPORTED_ZOOM:
            raise ValueError(f"Zoom level {z} outside 0-{MAX_SUPPORTED_ZOOM}")
        tiles_per_axis = 1 << z
        if not (0 <= x < tiles_per_axis and 0 <= y < tiles_per_axis):
            raise ValueError(f"Tile {z}/{x}/{y} outside the zoom {z} grid")

        if self.features.empty:
            return None

        tile = TileSpec(x=x, y=y, z=z)
        clip_bounds = tile.buffered_bounds(self.buffer, self.extent)

        geometries = self._zoom_geometries(z)
        positions = sorted(geometries.sindex.query(box(*clip_bounds), predicate='intersects'))
        if not positions:
            return None

        clipped = geometries.iloc[positions].clip_by_rect(*clip_bounds)
        source_indices = self.features['source_index'].iloc[positions]

        tile_features = []
        for source_geom, geom, source_idx in zip(
            geometries.iloc[positions], clipped, source_indices
        ):
            if geom is None or geom.is_empty:
                continue

            family = GEOMETRY_FAMILIES.get(source_geom.geom_type)
            for part in self._explode(geom, family):
                tile_features.append(TileFeature(
                    geometry=part,
                    properties=self._properties[source_idx],
                    id=self._ids[source_idx]
                ))

        return tile_features or None

    @staticmethod
    def _explode(geom: BaseGeometry, family: Optional[str]) -> List[BaseGeometry]:
        """Split collections, keeping parts of the source geometry's family."""
        if geom.geom_type == 'GeometryCollection':
            parts = [part for part in geom.geoms if not part.is_empty]
        else:
            parts = [geom]

        if family is None:
            return [part for part in parts if part.geom_type in GEOMETRY_FAMILIES]

        # Clipping along a tile edge can leave degenerate lower-dimension parts
        return [part for part in parts if GEOMETRY_FAMILIES.get(part.geom_type) == family]


def tiles_in_zoom(zoom: int) -> int:
    """Number of tiles in a zoom level's grid."""
    return 4 ** zoom
