"""
Vector Tile Encoder

Encodes clipped tile features as a single-layer Mapbox Vector Tile (MVT v2)
and gzip-compresses the result for storage.
"""

import gzip
import json
from typing import Any, Dict, List

import mapbox_vector_tile

from .tile_index import TileFeature, TileSpec
from ..utils.exceptions import TileEncodingError


MVT_CONTENT_TYPE = 'application/x-protobuf'
MVT_CONTENT_ENCODING = 'gzip'


class VectorTileEncoder:
    """Encode and compress tiles produced by a TileIndex."""

    def __init__(self, layer_name: str = "geojsonLayer", extent: int = 4096):
        self.layer_name = layer_name
        self.extent = extent

    def encode(self, features: List[TileFeature], tile: TileSpec) -> bytes:
        """
        Encode features to an uncompressed MVT payload.

        Coordinates are quantized from the tile's Web Mercator bounds to
        ``extent`` units; geometry inside the buffer lands outside 0..extent.
        """
        try:
            layer = {
                'name': self.layer_name,
                'features': [self._prepare_feature(feature) for feature in features],
            }
            return mapbox_vector_tile.encode(
                [layer],
                default_options={
                    'quantize_bounds': tile.bounds,
                    'extents': self.extent,
                }
            )
        except Exception as e:
            raise TileEncodingError(f"Could not encode tile {tile.tile_id}: {e}") from e

    @staticmethod
    def compress(data: bytes) -> bytes:
        """Gzip a payload with a fixed header timestamp so output is reproducible."""
        return gzip.compress(data, mtime=0)

    def encode_compressed(self, features: List[TileFeature], tile: TileSpec) -> bytes:
        return self.compress(self.encode(features, tile))

    def _prepare_feature(self, feature: TileFeature) -> Dict[str, Any]:
        prepared = {
            'geometry': feature.geometry,
            'properties': self._prepare_properties(feature.properties),
        }
        if feature.id is not None:
            prepared['id'] = int(feature.id)
        return prepared

    @staticmethod
    def _prepare_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
        """Keep scalar values; JSON-encode nested ones and drop nulls."""
        prepared = {}
        for key, value in properties.items():
            if value is None:
                continue
            if isinstance(value, (str, bool, int, float)):
                prepared[str(key)] = value
            else:
                prepared[str(key)] = json.dumps(value, sort_keys=True)
        return prepared
