"""Unit tests for ndt_2d.ndt.NDT.

Tests grid construction, scan ingestion and aggregate likelihood scoring.

Author: Navigation Engineer
Date: 2024
"""

import numpy as np
import pytest

from ndt_2d import NDT, Point, Pose2d, Scan, se2_apply


def make_scan(points, pose=Pose2d(), scan_id=0):
    return Scan(id=scan_id, pose=pose, points=np.asarray(points, dtype=float))


class TestNDTConstruction:
    """Test suite for NDT grid layout."""

    def test_dimensions(self):
        """Test cell counts for exact multiples of the resolution."""
        ndt = NDT(1.0, 10.0, 10.0, -5.0, -5.0)
        assert ndt.size_x == 10
        assert ndt.size_y == 10
        assert len(ndt.cells) == 100

    def test_dimensions_round_up(self):
        """Test partial cells round up."""
        ndt = NDT(0.25, 1.1, 0.6, 0.0, 0.0)
        assert ndt.size_x == 5
        assert ndt.size_y == 3

    def test_exact_multiple_with_float_resolution(self):
        """Test 10 / 0.1 does not gain a spurious column."""
        ndt = NDT(0.1, 10.0, 10.0, -5.0, -5.0)
        assert ndt.size_x == 100

    def test_row_major_indexing(self):
        """Test flat index = row * size_x + col."""
        ndt = NDT(1.0, 10.0, 10.0, -5.0, -5.0)
        assert ndt.cell_index(Point(-4.5, -4.5)) == 0
        assert ndt.cell_index(Point(-3.5, -4.5)) == 1
        assert ndt.cell_index(Point(-4.5, -3.5)) == 10
        assert ndt.cell_index(Point(3.5, 3.5)) == 8 * 10 + 8

    def test_out_of_bounds_index(self):
        """Test points outside [origin, origin + size) map to no cell."""
        ndt = NDT(1.0, 10.0, 10.0, -5.0, -5.0)
        assert ndt.cell_index(Point(5.0, 0.0)) is None
        assert ndt.cell_index(Point(-5.01, 0.0)) is None
        assert ndt.get_cell(Point(0.0, 7.0)) is None
        assert ndt.cell_index(Point(-5.0, -5.0)) == 0

    def test_bounds(self):
        """Test covered area."""
        ndt = NDT(0.5, 3.0, 2.0, 1.0, -1.0)
        assert ndt.bounds() == (1.0, -1.0, 4.0, 1.0)

    def test_invalid_parameters(self):
        """Test non-positive resolution/extent is rejected."""
        with pytest.raises(ValueError):
            NDT(0.0, 10.0, 10.0, 0.0, 0.0)
        with pytest.raises(ValueError):
            NDT(1.0, -1.0, 10.0, 0.0, 0.0)


class TestNDTLikelihood:
    """Test suite for ingestion and scoring."""

    def setup_method(self):
        self.ndt = NDT(1.0, 10.0, 10.0, -5.0, -5.0)
        self.points = np.array([[3.5, 3.5], [3.45, 3.4], [3.55, 3.6]])

    def test_single_scan_peak(self):
        """Test likelihood is 1 at the cell mean."""
        self.ndt.add_scan(make_scan(self.points), Pose2d())
        self.ndt.compute()

        score = self.ndt.likelihood(np.array([[3.5, 3.5]]))
        assert score == pytest.approx(1.0, abs=1e-12)
        assert self.ndt.likelihood(Point(3.5, 3.5)) == pytest.approx(1.0, abs=1e-12)

    def test_no_implicit_compute(self):
        """Test ingestion alone leaves the grid unscoreable."""
        self.ndt.add_scan(make_scan(self.points), Pose2d())
        assert self.ndt.likelihood(Point(3.5, 3.5)) == 0.0
        assert self.ndt.is_empty()

        self.ndt.compute()
        assert not self.ndt.is_empty()
        assert self.ndt.valid_cell_count == 1

    def test_scan_transformed_by_pose(self):
        """Test ingestion rotates then translates the scan points."""
        local = np.array([[0.5, 0.5], [0.45, 0.4], [0.55, 0.6]])
        pose = Pose2d(0.0, 0.0, np.pi / 2)
        self.ndt.add_scan(make_scan(local), pose)
        self.ndt.compute()

        mean_map = se2_apply(pose, np.array([[0.5, 0.5]]))[0]
        np.testing.assert_allclose(mean_map, [-0.5, 0.5], atol=1e-12)
        assert self.ndt.likelihood(mean_map) == pytest.approx(1.0, abs=1e-9)
        assert self.ndt.likelihood(np.array([0.5, 0.5])) == 0.0

    def test_scan_pose_default(self):
        """Test add_scan falls back to the scan's own pose."""
        scan = make_scan([[0.5, 0.5], [0.6, 0.5]], pose=Pose2d(1.0, 2.0, 0.0))
        assert self.ndt.add_scan(scan) == 2
        self.ndt.compute()
        assert self.ndt.likelihood(np.array([1.55, 2.5])) == pytest.approx(1.0)

    def test_out_of_bounds_points_discarded(self):
        """Test ingestion ignores points outside the grid."""
        points = np.vstack([self.points, [[50.0, 50.0], [-6.0, 0.0]]])
        added = self.ndt.add_points(points)
        self.ndt.compute()

        assert added == 3
        assert self.ndt.likelihood(np.array([50.0, 50.0])) == 0.0

    def test_sum_over_points(self):
        """Test likelihood of a point set is the sum of per-point scores."""
        self.ndt.add_points(self.points)
        self.ndt.compute()

        query = np.array([[3.5, 3.5], [3.49, 3.52], [0.0, 0.0], [100.0, 0.0]])
        per_point = self.ndt.likelihoods(query)
        assert per_point.shape == (4,)
        assert per_point[2] == 0.0
        assert per_point[3] == 0.0
        assert self.ndt.likelihood(query) == pytest.approx(per_point.sum())
        assert self.ndt.score_points(query) == pytest.approx(per_point.sum())

    def test_point_list_query(self):
        """Test a list of Point values scores like the equivalent array."""
        self.ndt.add_scan(make_scan(self.points), Pose2d())
        self.ndt.compute()

        assert self.ndt.likelihood([Point(3.5, 3.5)]) == pytest.approx(1.0, abs=1e-12)

        query = [Point(3.5, 3.5), Point(3.49, 3.52), Point(0.0, 0.0)]
        array_query = np.array([[3.5, 3.5], [3.49, 3.52], [0.0, 0.0]])
        np.testing.assert_allclose(self.ndt.likelihoods(query), self.ndt.likelihoods(array_query))
        assert self.ndt.score_points(query) == pytest.approx(self.ndt.score_points(array_query))

    def test_vectorized_matches_cell_score(self):
        """Test grid scoring agrees with the owning cell."""
        self.ndt.add_points(self.points)
        self.ndt.compute()
        cell = self.ndt.get_cell(Point(3.5, 3.5))

        rng = np.random.default_rng(1)
        query = rng.uniform(3.0, 4.0, size=(20, 2))
        expected = [cell.score(p) for p in query]
        np.testing.assert_allclose(self.ndt.likelihoods(query), expected, rtol=1e-9, atol=1e-12)

    def test_invalid_cell_contributes_zero(self):
        """Test a single-point cell contributes nothing."""
        self.ndt.add_points(np.array([[-2.5, -2.5]]))
        self.ndt.compute()
        assert self.ndt.likelihood(np.array([-2.5, -2.5])) == 0.0

    def test_multiple_scans_before_compute(self):
        """Test several scans accumulate into the same cells."""
        self.ndt.add_scan(make_scan(self.points[:2]), Pose2d())
        self.ndt.add_scan(make_scan(self.points[2:]), Pose2d())
        self.ndt.compute()
        assert self.ndt.get_cell(Point(3.5, 3.5)).point_count == 3

    def test_empty_query(self):
        """Test scoring no points returns 0."""
        self.ndt.add_points(self.points)
        self.ndt.compute()
        assert self.ndt.score_points(np.empty((0, 2))) == 0.0

    def test_add_points_shape_check(self):
        """Test malformed point arrays are rejected."""
        with pytest.raises(ValueError):
            self.ndt.add_points(np.zeros((3, 3)))

    def test_add_scan_requires_pose(self):
        """Test a bare array needs an explicit pose."""
        with pytest.raises(ValueError):
            self.ndt.add_scan(self.points)


class TestNDTFromScans:
    """Test suite for NDT.from_scans."""

    def test_fixed_size_centered(self):
        """Test a fixed map_size gives a grid centered on the origin."""
        scans = [make_scan([[1.0, 1.0], [1.1, 1.05]])]
        ndt = NDT.from_scans(scans, 0.5, map_size=10.0)
        assert ndt.bounds() == (-5.0, -5.0, 5.0, 5.0)
        assert ndt.valid_cell_count == 1

    def test_dynamic_size_covers_points(self):
        """Test the dynamic grid covers every map-frame point."""
        scans = [
            make_scan([[0.0, 0.0], [0.1, 0.0]], Pose2d(20.0, -3.0, 0.0), 0),
            make_scan([[0.0, 0.0], [0.0, 0.1]], Pose2d(-7.0, 4.0, 0.0), 1),
        ]
        ndt = NDT.from_scans(scans, 0.25)
        min_x, min_y, max_x, max_y = ndt.bounds()

        assert min_x < -7.0 and max_x > 20.1
        assert min_y < -3.0 and max_y > 4.1
        assert ndt.likelihood(np.array([20.05, -3.0])) == pytest.approx(1.0)
        # Lower corner lies on the cell lattice
        assert min_x / 0.25 == pytest.approx(round(min_x / 0.25))

    def test_dynamic_size_without_points(self):
        """Test no finite points gives no grid."""
        assert NDT.from_scans([make_scan(np.empty((0, 2)))], 0.25) is None
        assert NDT.from_scans([], 0.25) is None
