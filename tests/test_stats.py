from __future__ import annotations

import sys
import unittest
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from orbcloud.stats import cloud_extent, kmeans, percentile


class PercentileTests(unittest.TestCase):
    def test_nearest_rank(self) -> None:
        values = np.arange(1.0, 11.0)
        self.assertEqual(percentile(values, 0.95), 10.0)
        self.assertEqual(percentile(values, 0.5), 6.0)
        self.assertEqual(percentile(values, 0.0), 1.0)
        self.assertEqual(percentile(values, 1.0), 10.0)

    def test_order_does_not_matter(self) -> None:
        rng = np.random.default_rng(0)
        values = rng.normal(size=101)
        self.assertEqual(percentile(values, 0.8), percentile(np.sort(values), 0.8))

    def test_empty_returns_default(self) -> None:
        self.assertEqual(percentile([], 0.95), 0.0)
        self.assertEqual(percentile(np.array([]), 0.5, default=60.0), 60.0)


class KMeansTests(unittest.TestCase):
    def test_every_point_is_assigned_once(self) -> None:
        rng = np.random.default_rng(1)
        points = np.vstack([rng.normal(loc=100.0, size=(150, 3)), rng.normal(loc=-100.0, size=(150, 3))])
        clusters = kmeans(points, 2, np.random.default_rng(2))
        self.assertEqual(len(clusters), 2)
        members = np.sort(np.concatenate(clusters))
        np.testing.assert_array_equal(members, np.arange(300))

    def test_same_seed_same_partition(self) -> None:
        points = np.random.default_rng(3).normal(scale=50.0, size=(400, 3))
        first = kmeans(points, 4, np.random.default_rng(7))
        second = kmeans(points, 4, np.random.default_rng(7))
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a, b)

    def test_more_clusters_than_distinct_points(self) -> None:
        points = np.zeros((5, 3))
        clusters = kmeans(points, 3, np.random.default_rng(0))
        self.assertEqual(len(clusters), 3)
        self.assertEqual(sum(len(c) for c in clusters), 5)

    def test_empty_input(self) -> None:
        self.assertEqual(kmeans(np.empty((0, 3)), 2, np.random.default_rng(0)), [])


class CloudExtentTests(unittest.TestCase):
    def test_floor_for_small_or_empty_clouds(self) -> None:
        self.assertEqual(cloud_extent(np.empty((0, 3))), 120.0)
        self.assertEqual(cloud_extent(np.array([[10.0, 0.0, 0.0]])), 120.0)

    def test_margin_over_max_radius(self) -> None:
        points = np.array([[0.0, 0.0, 500.0], [30.0, 40.0, 0.0]])
        self.assertAlmostEqual(cloud_extent(points), 510.0)


if __name__ == "__main__":
    unittest.main()
