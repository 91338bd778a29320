"""Unit tests for ndt_2d.sim (ray-cast LiDAR simulation).

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from ndt_2d import Pose2d, box_room_walls, laser_scan_to_points, simulate_laser_scan, wall_distances
from ndt_2d.sim import ray_segment_intersection, sample_walls


class TestRaySegmentIntersection:
    """Test suite for ray_segment_intersection."""

    def test_hit(self):
        """Test a perpendicular hit."""
        d = ray_segment_intersection([0, 0], [1, 0], [2, -1], [2, 1])
        assert d == pytest.approx(2.0)

    def test_behind_ray(self):
        """Test segments behind the origin are missed."""
        assert ray_segment_intersection([0, 0], [1, 0], [-2, -1], [-2, 1]) == float("inf")

    def test_parallel_and_degenerate(self):
        """Test parallel rays and zero-length segments are missed."""
        assert ray_segment_intersection([0, 0], [1, 0], [0, 1], [5, 1]) == float("inf")
        assert ray_segment_intersection([0, 0], [1, 0], [2, 0], [2, 0]) == float("inf")

    def test_outside_segment(self):
        """Test rays passing beside the segment are missed."""
        assert ray_segment_intersection([0, 0], [1, 0], [2, 1], [2, 3]) == float("inf")


class TestSimulateLaserScan:
    """Test suite for simulate_laser_scan."""

    def test_box_room_ranges(self):
        """Test axis-aligned beams in a 10 x 6 room."""
        walls = box_room_walls(10.0, 6.0)
        laser = simulate_laser_scan(Pose2d(), walls, num_rays=4)
        np.testing.assert_allclose(laser.ranges, [5.0, 3.0, 5.0, 3.0], atol=1e-9)
        assert laser.angle_increment == pytest.approx(np.pi / 2)

    def test_heading_rotates_beams(self):
        """Test beam 0 points along the sensor heading."""
        walls = box_room_walls(10.0, 6.0)
        laser = simulate_laser_scan(Pose2d(0.0, 0.0, np.pi / 2), walls, num_rays=4)
        np.testing.assert_allclose(laser.ranges, [3.0, 5.0, 3.0, 5.0], atol=1e-9)

    def test_occlusion(self):
        """Test the closest wall is reported."""
        walls = [
            (np.array([4.0, -1.0]), np.array([4.0, 1.0])),
            (np.array([2.0, -1.0]), np.array([2.0, 1.0])),
        ]
        laser = simulate_laser_scan(Pose2d(), walls, num_rays=4)
        assert laser.ranges[0] == pytest.approx(2.0)

    def test_no_return_is_nan(self):
        """Test beams without a hit within range are NaN."""
        walls = [(np.array([20.0, -1.0]), np.array([20.0, 1.0]))]
        laser = simulate_laser_scan(Pose2d(), walls, num_rays=8, max_range=10.0)
        assert np.all(np.isnan(laser.ranges))
        assert laser_scan_to_points(laser).shape == (0, 2)

    def test_noise_is_reproducible(self):
        """Test the same seed gives the same noisy sweep."""
        walls = box_room_walls(10.0, 6.0)
        a = simulate_laser_scan(Pose2d(), walls, num_rays=36, noise_std=0.02,
                                rng=np.random.default_rng(7))
        b = simulate_laser_scan(Pose2d(), walls, num_rays=36, noise_std=0.02,
                                rng=np.random.default_rng(7))
        clean = simulate_laser_scan(Pose2d(), walls, num_rays=36)

        np.testing.assert_array_equal(a.ranges, b.ranges)
        assert not np.allclose(a.ranges, clean.ranges)
        assert np.max(np.abs(a.ranges - clean.ranges)) < 0.2

    def test_points_lie_on_walls(self):
        """Test noiseless returns land on the walls."""
        walls = box_room_walls(10.0, 6.0, obstacles=True)
        pose = Pose2d(1.0, -0.5, 0.3)
        points = laser_scan_to_points(simulate_laser_scan(pose, walls, num_rays=90))

        c, s = np.cos(pose.theta), np.sin(pose.theta)
        world = points @ np.array([[c, s], [-s, c]]) + [pose.x, pose.y]
        assert np.all(wall_distances(world, walls, spacing=0.005) < 0.01)

    def test_validation(self):
        """Test bad sweep parameters are rejected."""
        walls = box_room_walls(10.0, 6.0)
        with pytest.raises(ValueError):
            simulate_laser_scan(Pose2d(), walls, num_rays=0)
        with pytest.raises(ValueError):
            simulate_laser_scan(Pose2d(), walls, max_range=-1.0)


class TestWalls:
    """Test suite for room and wall helpers."""

    def test_box_room(self):
        """Test a plain room has four closed walls."""
        walls = box_room_walls(4.0, 2.0, center=(1.0, 1.0))
        assert len(walls) == 4
        corners = np.array([w[0] for w in walls])
        np.testing.assert_allclose(corners.min(axis=0), [-1.0, 0.0])
        np.testing.assert_allclose(corners.max(axis=0), [3.0, 2.0])

    def test_obstacles(self):
        """Test obstacles add a partition and a pillar."""
        assert len(box_room_walls(10.0, 6.0, obstacles=True)) == 9

    def test_sample_walls_spacing(self):
        """Test wall samples include both endpoints."""
        samples = sample_walls([(np.array([0.0, 0.0]), np.array([1.0, 0.0]))], spacing=0.1)
        assert samples.shape == (11, 2)
        np.testing.assert_allclose(samples[[0, -1]], [[0.0, 0.0], [1.0, 0.0]])

    def test_wall_distances(self):
        """Test nearest-wall distances."""
        walls = [(np.array([0.0, 0.0]), np.array([1.0, 0.0]))]
        d = wall_distances(np.array([[0.5, 0.0], [0.5, 0.3]]), walls)
        np.testing.assert_allclose(d, [0.0, 0.3], atol=0.01)
