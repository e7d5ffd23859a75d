"""
Unit tests for the tile pipeline.

Covers event counts, key layout, empty tiles, fatal preconditions, per-tile
failures and reproducible output.
"""

import gzip
import unittest
from pathlib import Path
from unittest.mock import Mock

import mapbox_vector_tile
import pytest

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))
sys.path.append(str(Path(__file__).parent))

from boundary_tiles.monitoring.metrics import MetricsCollector
from boundary_tiles.tile_generation.events import ErrorEvent, ProgressEvent, TileRunResult
from boundary_tiles.tile_generation.tile_pipeline import (
    TilePipeline,
    tile_key,
    validate_zoom_levels,
)
from boundary_tiles.utils.config import StorageConfig
from boundary_tiles.utils.exceptions import StorageInitializationError, TileEncodingError

from helpers import (
    RecordingStore,
    colorado_collection,
    feature_collection,
    polygon_feature,
    world_collection,
)


def split_events(events):
    progress = [e for e in events if isinstance(e, ProgressEvent)]
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    return progress, errors


class TestTilePipeline(unittest.TestCase):
    """Test suite for TilePipeline.run and execute."""

    def setUp(self):
        self.pipeline = TilePipeline()
        self.store = RecordingStore()

    def run_pipeline(self, zoom_levels, geojson, boundary_type="test", store=None):
        return list(self.pipeline.run(boundary_type, zoom_levels, geojson, store or self.store))

    def test_progress_event_per_coordinate(self):
        events = self.run_pipeline([0, 1, 2], colorado_collection())
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 1 + 4 + 16)
        self.assertEqual(errors, [])

    def test_visit_order_is_zoom_then_x_then_y(self):
        events = self.run_pipeline([1, 0], feature_collection())
        tiles = [e.tile for e in events if isinstance(e, ProgressEvent)]

        self.assertEqual(tiles, [(1, 0, 0), (1, 0, 1), (1, 1, 0), (1, 1, 1), (0, 0, 0)])

    def test_empty_collection_writes_nothing(self):
        events = self.run_pipeline([0, 1, 2, 3], feature_collection())
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 1 + 4 + 16 + 64)
        self.assertEqual(errors, [])
        self.assertEqual(self.store.writes, [])
        self.assertTrue(all(e.status == "skipped" for e in progress))

    def test_zoom_zero_tile_is_gzipped_mvt(self):
        events = self.run_pipeline([0], world_collection())
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 1)
        self.assertEqual(errors, [])
        self.assertEqual(
            self.store.writes,
            [("boundaries/test/tiles/0/0/0.mvt", "application/x-protobuf", "gzip")]
        )

        raw = gzip.decompress(self.store.objects["boundaries/test/tiles/0/0/0.mvt"])
        decoded = mapbox_vector_tile.decode(raw)
        self.assertIn("geojsonLayer", decoded)
        features = decoded["geojsonLayer"]["features"]
        self.assertGreaterEqual(len(features), 1)
        self.assertEqual(features[0]["properties"]["name"], "World")
        self.assertEqual(features[0]["id"], 0)

    def test_only_covered_tiles_are_written(self):
        self.run_pipeline([0, 1, 2], colorado_collection(), boundary_type="states")

        self.assertEqual(
            self.store.tile_keys(),
            [
                "boundaries/states/tiles/0/0/0.mvt",
                "boundaries/states/tiles/1/0/0.mvt",
                "boundaries/states/tiles/2/0/1.mvt",
            ]
        )

    def test_malformed_input_is_fatal(self):
        events = self.run_pipeline([0, 1], {'type': 'NotAFeatureCollection'})

        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ErrorEvent)
        self.assertTrue(events[0].fatal)
        self.assertIn("Initialization failed", events[0].error)
        self.assertEqual(self.store.writes, [])

    def test_non_mapping_input_is_fatal(self):
        events = self.run_pipeline([0], ["not", "geojson"])

        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].fatal)

    def test_invalid_zoom_levels_are_fatal(self):
        for zoom_levels in ([], [25], [-1], [0, "1"]):
            with self.subTest(zoom_levels=zoom_levels):
                events = self.run_pipeline(zoom_levels, world_collection())
                self.assertEqual(len(events), 1)
                self.assertTrue(events[0].fatal)

        self.assertEqual(self.store.writes, [])

    def test_store_initialization_failure_is_fatal(self):
        factory = Mock(side_effect=StorageInitializationError("bucket unavailable"))
        pipeline = TilePipeline(store_factory=factory)
        config = StorageConfig(backend="s3", bucket="tiles")

        events = list(pipeline.run("test", [0], world_collection(), config))

        factory.assert_called_once_with(config)
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].fatal)
        self.assertIn("bucket unavailable", events[0].error)

    def test_store_factory_used_for_storage_config(self):
        factory = Mock(return_value=self.store)
        pipeline = TilePipeline(store_factory=factory)

        list(pipeline.run("test", [0], world_collection(), StorageConfig(backend="s3", bucket="tiles")))

        self.assertEqual(self.store.tile_keys(), ["boundaries/test/tiles/0/0/0.mvt"])

    def test_write_failure_reports_one_error_and_continues(self):
        store = RecordingStore(fail_keys={"boundaries/test/tiles/1/0/0.mvt"})
        events = self.run_pipeline([0, 1], world_collection(), store=store)
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 5)
        self.assertEqual(len(errors), 1)
        self.assertFalse(errors[0].fatal)
        self.assertEqual(errors[0].tile, (1, 0, 0))
        self.assertIn("boundaries/test/tiles/1/0/0.mvt", errors[0].error)
        self.assertEqual(len(store.tile_keys()), 4)

        # Error for a tile comes before that tile's progress event
        error_position = events.index(errors[0])
        self.assertEqual(events[error_position + 1].tile, (1, 0, 0))
        self.assertEqual(events[error_position + 1].status, "failed")

    def test_unexpected_store_error_is_wrapped(self):
        store = RecordingStore()
        store.save = Mock(side_effect=ConnectionError("connection reset"))

        events = self.run_pipeline([0], world_collection(), store=store)
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 1)
        self.assertEqual(len(errors), 1)
        self.assertFalse(errors[0].fatal)
        self.assertIn("connection reset", errors[0].error)

    def test_encoding_failure_is_not_fatal(self):
        self.pipeline.encoder.encode_compressed = Mock(side_effect=TileEncodingError("bad geometry"))

        events = self.run_pipeline([0], world_collection())
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 1)
        self.assertEqual(len(errors), 1)
        self.assertIn("Error processing tile z=0 x=0 y=0", errors[0].error)

    def test_non_mapping_properties_are_not_fatal(self):
        feature = polygon_feature(-170.0, -80.0, 170.0, 80.0)
        feature['properties'] = ["a"]

        events = self.run_pipeline([0, 1], feature_collection(feature))
        progress, errors = split_events(events)

        self.assertEqual(len(progress), 5)
        self.assertEqual(errors, [])
        self.assertEqual(len(self.store.tile_keys()), 5)

    def test_geometry_past_antimeridian_reaches_both_edges(self):
        events = self.run_pipeline([1], feature_collection(polygon_feature(170.0, -10.0, 190.0, 10.0)))
        _, errors = split_events(events)

        self.assertEqual(errors, [])
        self.assertEqual(sorted(self.store.tile_keys()), [
            "boundaries/test/tiles/1/0/0.mvt",
            "boundaries/test/tiles/1/0/1.mvt",
            "boundaries/test/tiles/1/1/0.mvt",
            "boundaries/test/tiles/1/1/1.mvt",
        ])

    def test_unexpected_loop_error_is_fatal(self):
        self.pipeline.encoder.encode_compressed = Mock(side_effect=MemoryError("out of memory"))

        events = self.run_pipeline([0, 1], world_collection())

        self.assertIsInstance(events[-1], ErrorEvent)
        self.assertTrue(events[-1].fatal)
        self.assertEqual(self.store.writes, [])

    def test_reruns_are_byte_identical(self):
        first = RecordingStore()
        second = RecordingStore()

        self.run_pipeline([0, 1, 2], colorado_collection(), store=first)
        self.run_pipeline([0, 1, 2], colorado_collection(), store=second)

        self.assertEqual(first.objects, second.objects)
        self.assertTrue(first.objects)

    def test_features_without_geometry_are_skipped(self):
        geojson = world_collection()
        geojson['features'].insert(0, {'type': 'Feature', 'properties': {'name': 'Nothing'}, 'geometry': None})

        events = self.run_pipeline([0], geojson)
        _, errors = split_events(events)

        self.assertEqual(errors, [])
        decoded = mapbox_vector_tile.decode(
            gzip.decompress(self.store.objects["boundaries/test/tiles/0/0/0.mvt"])
        )
        features = decoded["geojsonLayer"]["features"]
        self.assertEqual(len(features), 1)
        # Ids follow input position, including skipped features
        self.assertEqual(features[0]["id"], 1)

    def test_execute_summarizes_run(self):
        store = RecordingStore(fail_keys={"boundaries/test/tiles/1/1/1.mvt"})
        received = []

        result = self.pipeline.execute("test", [0, 1], world_collection(), store, on_event=received.append)

        self.assertIsInstance(result, TileRunResult)
        self.assertTrue(result.success)
        self.assertEqual(result.tiles_visited, 5)
        self.assertEqual(result.tiles_uploaded, 4)
        self.assertEqual(result.tiles_failed, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(len(received), 6)

    def test_execute_reports_fatal_error(self):
        result = self.pipeline.execute("test", [0], {'type': 'Feature'}, self.store)

        self.assertFalse(result.success)
        self.assertIn("FeatureCollection", result.fatal_error)
        self.assertEqual(result.tiles_visited, 0)

    def test_metrics_are_recorded(self):
        metrics = MetricsCollector()
        pipeline = TilePipeline(metrics=metrics)

        list(pipeline.run("test", [0, 1], colorado_collection(), self.store))

        self.assertEqual(metrics.get_counter_total('tiles_processed_total', boundary_type="test"), 5)
        self.assertEqual(
            metrics.get_counter_total('tiles_processed_total', boundary_type="test", status="uploaded"), 2
        )
        self.assertEqual(metrics.get_counter_total('tile_runs_total', status="completed"), 1)

    def test_invalid_boundary_type_is_fatal(self):
        events = self.run_pipeline([0], world_collection(), boundary_type="a/b")

        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].fatal)


class TestTileKey:
    """Tests for object key layout."""

    def test_default_prefix(self):
        assert tile_key("boundaries", "counties", 3, 1, 2) == "boundaries/counties/tiles/3/1/2.mvt"

    def test_empty_prefix(self):
        assert tile_key("", "zipcodes", 0, 0, 0) == "zipcodes/tiles/0/0/0.mvt"


class TestValidateZoomLevels:
    """Tests for zoom level validation."""

    def test_valid_levels_keep_order(self):
        assert validate_zoom_levels((3, 0, 24)) == [3, 0, 24]

    @pytest.mark.parametrize("levels", [[], None, [True], [1.5], [25]])
    def test_invalid_levels(self, levels):
        with pytest.raises(ValueError):
            validate_zoom_levels(levels)


class TestEventMessages:
    """Tests for the compact event wire format."""

    def test_progress_message(self):
        event = ProgressEvent("states", (0, 0, 0), "uploaded")
        assert event.to_message() == {'type': 'progress', 'data': 1}

    def test_error_message(self):
        event = ErrorEvent("states", "Failed to upload tile", tile=(1, 0, 0))
        assert event.to_message() == {'type': 'error', 'error': "Failed to upload tile"}


if __name__ == '__main__':
    unittest.main()
