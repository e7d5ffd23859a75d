"""
Shared test doubles and sample data for the unit tests.
"""

import threading
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))

from boundary_tiles.storage.tile_store import TileStore
from boundary_tiles.utils.config import StorageConfig
from boundary_tiles.utils.exceptions import TileUploadError


class RecordingStore(TileStore):
    """In-memory store that records every write and can be told to fail."""

    def __init__(self, key_prefix="boundaries", fail_keys=None, fail_times=None):
        super().__init__(StorageConfig(backend="local", local_root="unused", key_prefix=key_prefix))
        self.objects = {}
        self.writes = []
        self.fail_keys = set(fail_keys or [])
        # key -> number of times the next saves should fail
        self.fail_times = dict(fail_times or {})
        self.deleted_prefixes = []
        self._lock = threading.Lock()

    def save(self, key, data, content_type, content_encoding=None):
        with self._lock:
            if key in self.fail_keys:
                raise TileUploadError(key, RuntimeError("simulated outage"))
            if self.fail_times.get(key, 0) > 0:
                self.fail_times[key] -= 1
                raise TileUploadError(key, RuntimeError("simulated outage"))

            self.writes.append((key, content_type, content_encoding))
            self.objects[key] = data

    def list_keys(self, prefix):
        with self._lock:
            return sorted(key for key in self.objects if key.startswith(prefix))

    def delete_prefix(self, prefix):
        with self._lock:
            self.deleted_prefixes.append(prefix)
            keys = [key for key in self.objects if key.startswith(prefix)]
            for key in keys:
                del self.objects[key]
            return len(keys)

    def tile_keys(self):
        return [key for key, _, _ in self.writes if key.endswith(".mvt")]


def polygon_feature(min_lon, min_lat, max_lon, max_lat, **properties):
    return {
        'type': 'Feature',
        'properties': properties,
        'geometry': {
            'type': 'Polygon',
            'coordinates': [[
                [min_lon, min_lat],
                [max_lon, min_lat],
                [max_lon, max_lat],
                [min_lon, max_lat],
                [min_lon, min_lat],
            ]],
        },
    }


def feature_collection(*features):
    return {'type': 'FeatureCollection', 'features': list(features)}


def world_collection():
    """A single polygon touching every tile at low zoom levels."""
    return feature_collection(polygon_feature(-170.0, -80.0, 170.0, 80.0, name="World", code=1))


def colorado_collection():
    """A small state-sized polygon in the north-west quadrant."""
    return feature_collection(
        polygon_feature(-109.05, 36.99, -102.04, 41.0, name="Colorado", STATEFP="08")
    )
