"""Unit tests for ndt_2d.config.

Author: Navigation Engineer
Date: 2024
"""

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from ndt_2d import MapperConfig, ScanMatcherConfig, load_config, save_config


class TestScanMatcherConfig(unittest.TestCase):
    """Test scan matcher parameters."""

    def test_defaults(self):
        cfg = ScanMatcherConfig()
        self.assertEqual(cfg.resolution, 0.25)
        self.assertEqual(cfg.linear_size, 0.3)
        self.assertIsNone(cfg.map_size)
        self.assertEqual(cfg.num_threads, 1)

    def test_positivity(self):
        """Non-positive values are rejected."""
        for name in ("resolution", "angular_res", "linear_res", "linear_size", "range_max"):
            with self.subTest(name=name):
                with self.assertRaises(ValueError):
                    ScanMatcherConfig(**{name: 0.0})

    def test_min_points_and_peak_ratio(self):
        with self.assertRaises(ValueError):
            ScanMatcherConfig(min_points=1)
        with self.assertRaises(ValueError):
            ScanMatcherConfig(peak_ratio=1.5)
        with self.assertRaises(ValueError):
            ScanMatcherConfig(map_size=-1.0)

    def test_unknown_key(self):
        with self.assertRaises(ValueError):
            ScanMatcherConfig.from_dict({"resolutoin": 0.5})


class TestMapperConfig(unittest.TestCase):
    """Test mapper parameters and JSON loading."""

    def test_defaults(self):
        cfg = MapperConfig()
        self.assertEqual(cfg.map_resolution, 0.05)
        self.assertEqual(cfg.minimum_travel_distance, 0.1)
        self.assertEqual(cfg.minimum_travel_rotation, 1.0)
        self.assertEqual(cfg.rolling_depth, 10)
        self.assertIsInstance(cfg.matcher, ScanMatcherConfig)

    def test_nested_from_dict(self):
        cfg = MapperConfig.from_dict({"rolling_depth": 5, "matcher": {"linear_size": 0.5}})
        self.assertEqual(cfg.rolling_depth, 5)
        self.assertEqual(cfg.matcher.linear_size, 0.5)
        self.assertEqual(cfg.matcher.resolution, 0.25)

    def test_ndt_cell_size_lives_on_matcher(self):
        """The NDT cell size is configured through the nested matcher."""
        cfg = MapperConfig.from_dict({"map_resolution": 0.1, "matcher": {"resolution": 0.5}})
        self.assertEqual(cfg.map_resolution, 0.1)
        self.assertEqual(cfg.matcher.resolution, 0.5)
        self.assertNotIn("ndt_resolution", cfg.to_dict())
        with self.assertRaises(ValueError):
            MapperConfig.from_dict({"ndt_resolution": 0.25})

    def test_occupied_band_order(self):
        with self.assertRaises(ValueError):
            MapperConfig(occupied_lower=1.0, occupied_upper=0.5)

    def test_json_round_trip(self):
        cfg = MapperConfig(rolling_depth=3, map_size=20.0,
                           matcher=ScanMatcherConfig(angular_size=0.1))
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "mapper.json"
            save_config(cfg, path)
            self.assertEqual(load_config(path), cfg)

    def test_load_partial_file(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "mapper.json"
            path.write_text(json.dumps({"publish_period": 1.0}))
            cfg = load_config(path)
        self.assertEqual(cfg.publish_period, 1.0)
        self.assertEqual(cfg.map_resolution, 0.05)

    def test_load_errors(self):
        with TemporaryDirectory() as tmp:
            with self.assertRaises(FileNotFoundError):
                load_config(Path(tmp) / "missing.json")

            path = Path(tmp) / "list.json"
            path.write_text("[1, 2]")
            with self.assertRaises(ValueError):
                load_config(path)


if __name__ == "__main__":
    unittest.main()
