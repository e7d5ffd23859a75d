"""
Unit tests for the boundary preparation job.
"""

import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

import sys
sys.path.append(str(Path(__file__).parent.parent.parent / "src"))
sys.path.append(str(Path(__file__).parent))

from boundary_tiles.monitoring.metrics import MetricsCollector
from boundary_tiles.processing.boundary_processor import BoundaryProcessor, total_tile_count
from boundary_tiles.tile_generation.worker_pool import TileWorkerPool
from boundary_tiles.utils.config import Config, PreparationConfig, StorageConfig
from boundary_tiles.utils.exceptions import TileUploadError

from helpers import RecordingStore, colorado_collection, feature_collection


class TestBoundaryProcessor(unittest.TestCase):
    """Test suite for BoundaryProcessor."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.data_dir = Path(self.temp_dir)

        self.config = Config(
            storage=StorageConfig(backend="local", local_root=str(self.data_dir / "out")),
            preparation=PreparationConfig(
                data_dir=str(self.data_dir),
                boundary_types=["states", "counties"],
                min_zoom=0,
                max_zoom=2,
                num_workers=2,
            )
        )
        self.store = RecordingStore()
        self.sleeps = []

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_processor(self, store=None, metrics=None):
        store = store or self.store
        pool = TileWorkerPool(
            num_workers=self.config.preparation.num_workers,
            tiling_config=self.config.tiling,
            store_factory=Mock(return_value=store)
        )
        return BoundaryProcessor(self.config, store=store, metrics=metrics, worker_pool=pool, sleep=self.sleeps.append)

    def write_input(self, boundary_type, data):
        path = self.data_dir / f"{boundary_type}.geojson.json"
        path.write_text(json.dumps(data), encoding='utf-8')
        return path

    def test_total_tile_count(self):
        self.assertEqual(total_tile_count(list(range(13))), sum(4 ** z for z in range(13)))
        self.assertEqual(total_tile_count([0, 1, 2]), 21)

    def test_run_publishes_metadata_and_tiles(self):
        self.write_input("states", colorado_collection())
        self.write_input("counties", colorado_collection())

        report = self.make_processor().run()

        self.assertTrue(report.success)
        self.assertEqual(self.store.deleted_prefixes, ["boundaries/"])
        self.assertEqual([r.boundary_type for r in report.results], ["states", "counties"])

        metadata = json.loads(self.store.objects["boundaries/states/metadata.json"])
        self.assertEqual(metadata['minZoom'], 0)
        self.assertEqual(metadata['maxZoom'], 2)
        self.assertEqual(metadata['featureCount'], 1)
        self.assertEqual(len(metadata['bounds']), 4)

        self.assertIn("boundaries/counties/tiles/2/0/1.mvt", self.store.objects)
        states = report.results[0]
        self.assertEqual(states.tiles_visited, 21)
        self.assertEqual(states.tiles_uploaded, 3)

    def test_missing_input_is_skipped(self):
        self.write_input("states", colorado_collection())

        report = self.make_processor().run()

        self.assertTrue(report.success)
        self.assertEqual(report.skipped, ["counties"])
        self.assertEqual(len(report.results), 1)

    def test_invalid_input_fails_type_and_continues(self):
        self.write_input("states", feature_collection({'type': 'Feature', 'geometry': None}))
        self.write_input("counties", colorado_collection())

        report = self.make_processor().run()

        self.assertFalse(report.success)
        states, counties = report.results
        self.assertFalse(states.success)
        self.assertIn("No valid features found", states.error)
        self.assertTrue(counties.success)

    def test_clear_failure_aborts(self):
        store = RecordingStore()
        store.delete_prefix = Mock(side_effect=RuntimeError("Access Denied"))
        self.write_input("states", colorado_collection())

        with self.assertRaises(RuntimeError):
            self.make_processor(store).run()

        self.assertEqual(store.writes, [])

    def test_metadata_upload_retries_with_backoff(self):
        store = RecordingStore(fail_times={"boundaries/states/metadata.json": 2})
        processor = self.make_processor(store)

        processor.upload_with_retry("boundaries/states/metadata.json", b"{}", "application/json")

        self.assertEqual(self.sleeps, [1.0, 2.0])
        self.assertEqual(store.objects["boundaries/states/metadata.json"], b"{}")

    def test_metadata_upload_gives_up(self):
        store = RecordingStore(fail_keys={"boundaries/states/metadata.json"})
        processor = self.make_processor(store)

        with self.assertRaises(TileUploadError):
            processor.upload_with_retry("boundaries/states/metadata.json", b"{}", "application/json")

        self.assertEqual(self.sleeps, [1.0, 2.0, 4.0])

    def test_metadata_failure_fails_boundary(self):
        store = RecordingStore(fail_keys={"boundaries/states/metadata.json"})
        self.write_input("states", colorado_collection())
        self.write_input("counties", colorado_collection())

        report = self.make_processor(store).run()

        states, counties = report.results
        self.assertFalse(states.success)
        self.assertTrue(counties.success)
        self.assertFalse(any(key.startswith("boundaries/states/tiles/") for key in store.objects))

    def test_tile_errors_do_not_fail_boundary(self):
        store = RecordingStore(fail_keys={"boundaries/states/tiles/1/0/0.mvt"})
        self.write_input("states", colorado_collection())

        report = self.make_processor(store).run()

        self.assertTrue(report.success)
        self.assertEqual(report.results[0].tiles_failed, 1)

    def test_progress_gauge_labelled_by_boundary_type(self):
        metrics = MetricsCollector()
        self.write_input("states", colorado_collection())

        self.make_processor(metrics=metrics).run()

        exported = metrics.export_metrics()
        self.assertIn('tile_run_progress_ratio{boundary_type="states"} 1.0', exported)
        self.assertNotIn("states tiles", exported)

    def test_report_to_dict(self):
        self.write_input("states", colorado_collection())

        report = self.make_processor().run()
        as_dict = report.to_dict()

        self.assertTrue(as_dict['success'])
        self.assertEqual(as_dict['skipped'], ["counties"])
        self.assertEqual(as_dict['results'][0]['boundary_type'], "states")
        json.dumps(as_dict)


if __name__ == '__main__':
    unittest.main()
