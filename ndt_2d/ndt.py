"""NDT (Normal Distributions Transform) grid model for 2D LiDAR mapping.

NDT represents the accumulated scans as a grid of local Gaussian
distributions rather than raw points, which gives a smooth likelihood
surface for scan matching.

Key components:
    - regularize_covariance: Eigenvalue flooring of a 2x2 covariance
    - information_matrix: Inverse of the regularized covariance
    - Cell: Point accumulation + batch Gaussian fit + point scoring
    - NDT: Dense, fixed-size grid of Cells with scan ingestion and
           aggregate likelihood evaluation

Score of a point p against a cell with mean μ and regularized covariance Σ:

    score(p) = exp(-0.5 * (p - μ)^T Σ^{-1} (p - μ))

The score is unnormalized (peak 1 at the mean) so per-point contributions can
be summed directly into a matching objective.

Author: Navigation Engineer
Date: 2024
"""

from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .se2 import se2_apply
from .types import Point, Pose2d

# Minor eigenvalue is floored to this fraction of the major eigenvalue.
DEFAULT_REGULARIZATION_RATIO = 0.0128

# Absolute variance floor (m^2), applied to both eigenvalues before the
# relative floor so that duplicate-point cells stay invertible.
DEFAULT_MIN_VARIANCE = 1e-9

# Minimum number of samples for a cell to carry a usable Gaussian.
DEFAULT_MIN_POINTS = 2

PointLike = Union[Point, np.ndarray, Tuple[float, float]]


def _as_point_array(p: PointLike) -> np.ndarray:
    if isinstance(p, Point):
        return p.to_array()
    arr = np.asarray(p, dtype=np.float64)
    if arr.shape != (2,):
        raise ValueError(f"point must have shape (2,), got {arr.shape}")
    return arr


def _as_point_set(points) -> np.ndarray:
    """Convert an (N, 2) array or a sequence of Point values to an (N, 2) array."""
    if isinstance(points, (list, tuple)) and points and isinstance(points[0], Point):
        return np.array([p.to_array() for p in points], dtype=np.float64)
    return np.asarray(points, dtype=np.float64)


def _regularized_eigen(
    cov: np.ndarray,
    ratio: float,
    min_variance: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (eigenvalues, eigenvectors) of the regularized covariance."""
    cov = np.asarray(cov, dtype=np.float64)
    if cov.shape != (2, 2):
        raise ValueError(f"cov must have shape (2, 2), got {cov.shape}")
    if not (0.0 < ratio <= 1.0):
        raise ValueError(f"ratio must be in (0, 1], got {ratio}")
    if min_variance <= 0.0:
        raise ValueError(f"min_variance must be positive, got {min_variance}")

    # eigh returns ascending eigenvalues: [minor, major]
    eigvals, eigvecs = np.linalg.eigh(0.5 * (cov + cov.T))
    eigvals = np.maximum(eigvals, min_variance)

    minor, major = eigvals
    floor = ratio * major
    if minor < floor:
        # Uniform scaling keeps the eigenvectors and the observed anisotropy.
        eigvals = eigvals * (floor / minor)

    return eigvals, eigvecs


def regularize_covariance(
    cov: np.ndarray,
    ratio: float = DEFAULT_REGULARIZATION_RATIO,
    min_variance: float = DEFAULT_MIN_VARIANCE,
) -> np.ndarray:
    """
    Regularize a 2x2 covariance so that it is safely invertible.

    Collinear or duplicate points make a cell covariance rank-deficient, which
    would give an unbounded Mahalanobis distance across the line. The
    covariance is eigendecomposed and its minor eigenvalue is floored to
    ``ratio`` times the major eigenvalue. When the floor applies, the whole
    spectrum is scaled by the same factor, so eigenvectors and the eigenvalue
    ratio of the observed spread are unchanged.

    The major eigenvalue is inflated by the same factor, which is large for
    nearly collinear cells: a rank-1 covariance has its minor eigenvalue
    clamped to ``min_variance`` and then both eigenvalues multiplied by
    ``ratio * major / min_variance``, so the major axis grows to
    ``ratio * major**2 / min_variance`` (0.00625 m^2 becomes about 500 m^2
    with the defaults). The resulting Gaussian is nearly flat along the line
    and sharp across it.

    Args:
        cov: Symmetric covariance matrix, shape (2, 2).
        ratio: Minimum allowed minor/major eigenvalue ratio, in (0, 1].
        min_variance: Absolute eigenvalue floor applied first (m^2).

    Returns:
        Regularized covariance, shape (2, 2), symmetric positive definite.

    Raises:
        ValueError: If cov is not (2, 2) or the parameters are out of range.

    Examples:
        >>> cov = np.array([[0.005, 0.0025], [0.0025, 0.00125]])  # rank 1
        >>> cov_reg = regularize_covariance(cov)
        >>> bool(np.all(np.linalg.eigvalsh(cov_reg) > 0))
        True

    Notes:
        A covariance that already satisfies the floor is returned unchanged
        (up to symmetrization).
    """
    eigvals, eigvecs = _regularized_eigen(cov, ratio, min_variance)
    return eigvecs @ np.diag(eigvals) @ eigvecs.T


def information_matrix(
    cov: np.ndarray,
    ratio: float = DEFAULT_REGULARIZATION_RATIO,
    min_variance: float = DEFAULT_MIN_VARIANCE,
) -> np.ndarray:
    """
    Inverse of the regularized covariance (precision matrix used for scoring).

    Computed from the eigendecomposition directly instead of a generic matrix
    inverse.

    Args:
        cov: Symmetric covariance matrix, shape (2, 2).
        ratio: Minimum allowed minor/major eigenvalue ratio.
        min_variance: Absolute eigenvalue floor (m^2).

    Returns:
        Precision matrix, shape (2, 2).
    """
    eigvals, eigvecs = _regularized_eigen(cov, ratio, min_variance)
    return eigvecs @ np.diag(1.0 / eigvals) @ eigvecs.T


class Cell:
    """
    One NDT grid element: accumulated points and their Gaussian.

    Points are recorded with ``add_point`` and statistics are derived only by
    an explicit ``compute`` call, which always starts from the full set of
    accumulated samples.

    Attributes:
        mean: Population mean of the accumulated points, shape (2,).
        covariance: Raw population covariance (divide by N), shape (2, 2).
        point_count: Number of points used by the last ``compute``.
        valid: True when point_count >= min_points after ``compute``.

    Example:
        >>> cell = Cell()
        >>> for p in [(3.5, 3.5), (3.5, 3.5), (3.4, 3.45), (3.6, 3.55)]:
        ...     cell.add_point(p)
        >>> cell.compute()
        >>> cell.score((3.5, 3.5))
        1.0
    """

    def __init__(
        self,
        min_points: int = DEFAULT_MIN_POINTS,
        regularization_ratio: float = DEFAULT_REGULARIZATION_RATIO,
        min_variance: float = DEFAULT_MIN_VARIANCE,
    ) -> None:
        if min_points < 2:
            raise ValueError(f"min_points must be >= 2, got {min_points}")

        self.min_points = min_points
        self.regularization_ratio = regularization_ratio
        self.min_variance = min_variance

        self._points: List[np.ndarray] = []
        self.mean: np.ndarray = np.zeros(2)
        self.covariance: np.ndarray = np.zeros((2, 2))
        self.point_count: int = 0
        self.valid: bool = False
        self.information: Optional[np.ndarray] = None

    def add_point(self, p: PointLike) -> None:
        """Record a point; statistics are unchanged until ``compute``."""
        self._points.append(_as_point_array(p))

    def compute(self) -> None:
        """
        Fit mean and population covariance to all accumulated points.

        Cells with fewer than ``min_points`` samples are marked invalid and
        score 0 for every query.
        """
        n = len(self._points)
        self.point_count = n

        if n < self.min_points:
            self.mean = np.mean(self._points, axis=0) if n > 0 else np.zeros(2)
            self.covariance = np.zeros((2, 2))
            self.information = None
            self.valid = False
            return

        points = np.asarray(self._points)  # shape (n, 2)
        self.mean = np.mean(points, axis=0)
        centered = points - self.mean
        cov = (centered.T @ centered) / n
        self.covariance = 0.5 * (cov + cov.T)
        self.information = information_matrix(
            self.covariance, self.regularization_ratio, self.min_variance
        )
        self.valid = True

    def regularized_covariance(self) -> Optional[np.ndarray]:
        """Covariance actually used for scoring, or None if invalid."""
        if not self.valid:
            return None
        return regularize_covariance(
            self.covariance, self.regularization_ratio, self.min_variance
        )

    def score(self, p: PointLike) -> float:
        """
        Unnormalized Gaussian likelihood of a point, in [0, 1].

        Returns exactly 1.0 at the mean and 0.0 for an invalid cell.
        """
        if not self.valid:
            return 0.0
        d = _as_point_array(p) - self.mean
        mahalanobis = float(d @ self.information @ d)
        return float(np.exp(-0.5 * mahalanobis))

    def clear(self) -> None:
        """Drop accumulated points and derived statistics."""
        self._points = []
        self.mean = np.zeros(2)
        self.covariance = np.zeros((2, 2))
        self.point_count = 0
        self.valid = False
        self.information = None

    # Scalar accessors for map export
    @property
    def mean_x(self) -> float:
        return float(self.mean[0])

    @property
    def mean_y(self) -> float:
        return float(self.mean[1])

    @property
    def cov_xx(self) -> float:
        return float(self.covariance[0, 0])

    @property
    def cov_xy(self) -> float:
        return float(self.covariance[0, 1])

    @property
    def cov_yy(self) -> float:
        return float(self.covariance[1, 1])

    def __len__(self) -> int:
        """Number of accumulated (not necessarily computed) points."""
        return len(self._points)


class NDT:
    """
    Dense NDT grid over a bounded rectangle of the map frame.

    The grid covers ``[origin, origin + size)`` with square cells of edge
    ``resolution``. Its dimensions never change after construction; a point
    outside the rectangle maps to no cell and is ignored by ingestion and
    scoring.

    Attributes:
        resolution: Cell edge length (meters).
        width, height: Requested extent of the grid (meters).
        origin_x, origin_y: Map-frame coordinates of the lower corner.
        size_x, size_y: Number of cells along x and y.
        cells: Row-major list of Cells, index = iy * size_x + ix.

    Example:
        >>> ndt = NDT(1.0, 10.0, 10.0, -5.0, -5.0)
        >>> points = np.array([[3.5, 3.5], [3.45, 3.4], [3.55, 3.6]])
        >>> ndt.add_points(points)
        >>> ndt.compute()
        >>> ndt.likelihood(np.array([[3.5, 3.5]]))
        1.0
    """

    def __init__(
        self,
        resolution: float,
        width: float,
        height: float,
        origin_x: float,
        origin_y: float,
        min_points: int = DEFAULT_MIN_POINTS,
        regularization_ratio: float = DEFAULT_REGULARIZATION_RATIO,
        min_variance: float = DEFAULT_MIN_VARIANCE,
    ) -> None:
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        if width <= 0 or height <= 0:
            raise ValueError(
                f"width and height must be positive, got {width} x {height}"
            )

        self.resolution = float(resolution)
        self.width = float(width)
        self.height = float(height)
        self.origin_x = float(origin_x)
        self.origin_y = float(origin_y)

        # Tolerance keeps exact multiples (10.0 / 0.1) from gaining a column
        self.size_x = int(np.ceil(width / resolution - 1e-9))
        self.size_y = int(np.ceil(height / resolution - 1e-9))

        self.cells: List[Cell] = [
            Cell(min_points, regularization_ratio, min_variance)
            for _ in range(self.size_x * self.size_y)
        ]

        n_cells = len(self.cells)
        self._means = np.zeros((n_cells, 2))
        self._information = np.zeros((n_cells, 2, 2))
        self._valid = np.zeros(n_cells, dtype=bool)

    @classmethod
    def from_scans(
        cls,
        scans: Sequence,
        resolution: float,
        map_size: Optional[float] = None,
        min_points: int = DEFAULT_MIN_POINTS,
        regularization_ratio: float = DEFAULT_REGULARIZATION_RATIO,
    ) -> Optional["NDT"]:
        """
        Build and compute an NDT from scans placed at their stored poses.

        Args:
            scans: Scans with sensor-frame ``points`` and a map-frame ``pose``.
            resolution: Cell size (meters).
            map_size: Edge of a square grid centered on the map origin. When
                      None, the grid is sized to the scans' map-frame points
                      with one cell of margin, its corner snapped to the
                      cell lattice.
            min_points: Minimum samples per scoreable cell.
            regularization_ratio: Covariance eigenvalue floor ratio.

        Returns:
            Computed NDT, or None when ``map_size`` is None and the scans
            hold no finite points.
        """
        if map_size is not None:
            half = 0.5 * map_size
            ndt = cls(
                resolution, map_size, map_size, -half, -half,
                min_points=min_points,
                regularization_ratio=regularization_ratio,
            )
        else:
            clouds = [se2_apply(s.pose, s.points) for s in scans if len(s.points) > 0]
            points = np.vstack(clouds) if clouds else np.empty((0, 2))
            points = points[np.isfinite(points).all(axis=1)]
            if points.shape[0] == 0:
                return None

            lower = np.floor(points.min(axis=0) / resolution) * resolution - resolution
            upper = points.max(axis=0) + 2 * resolution
            width, height = upper - lower
            ndt = cls(
                resolution, width, height, lower[0], lower[1],
                min_points=min_points,
                regularization_ratio=regularization_ratio,
            )

        for scan in scans:
            ndt.add_scan(scan, scan.pose)
        ndt.compute()
        return ndt

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------
    def _cell_indices(self, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Flat cell index per point and a mask of points inside the grid."""
        ix = np.floor((points[:, 0] - self.origin_x) / self.resolution)
        iy = np.floor((points[:, 1] - self.origin_y) / self.resolution)

        inside = (ix >= 0) & (ix < self.size_x) & (iy >= 0) & (iy < self.size_y)
        inside &= np.isfinite(points).all(axis=1)

        index = np.zeros(points.shape[0], dtype=np.int64)
        index[inside] = iy[inside].astype(np.int64) * self.size_x + ix[inside].astype(np.int64)
        return index, inside

    def cell_index(self, point: PointLike) -> Optional[int]:
        """Flat index of the cell containing a map-frame point, or None."""
        p = _as_point_array(point).reshape(1, 2)
        index, inside = self._cell_indices(p)
        if not inside[0]:
            return None
        return int(index[0])

    def get_cell(self, point: PointLike) -> Optional[Cell]:
        """Cell containing a map-frame point, or None outside the grid."""
        k = self.cell_index(point)
        return None if k is None else self.cells[k]

    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) of the area covered by cells."""
        return (
            self.origin_x,
            self.origin_y,
            self.origin_x + self.size_x * self.resolution,
            self.origin_y + self.size_y * self.resolution,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------
    def add_points(self, points: np.ndarray) -> int:
        """
        Add map-frame points to their cells.

        Args:
            points: Map-frame points, shape (N, 2).

        Returns:
            Number of points that landed inside the grid.
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] != 2:
            raise ValueError(f"points must have shape (N, 2), got {points.shape}")

        index, inside = self._cell_indices(points)
        for k, p in zip(index[inside], points[inside]):
            self.cells[k].add_point(p)
        return int(np.count_nonzero(inside))

    def add_scan(self, scan, pose: Optional[Pose2d] = None) -> int:
        """
        Transform a scan by a pose and add its points to the grid.

        Args:
            scan: Scan (sensor-frame ``points``) or an (N, 2) point array.
            pose: Pose to place the scan at; defaults to ``scan.pose``.

        Returns:
            Number of points that landed inside the grid.
        """
        points = getattr(scan, "points", scan)
        if pose is None:
            pose = getattr(scan, "pose", None)
            if pose is None:
                raise ValueError("pose is required when scan carries no pose")

        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if points.shape[0] == 0:
            return 0
        return self.add_points(se2_apply(pose, points))

    def compute(self) -> None:
        """Compute every cell once and refresh the scoring arrays."""
        for k, cell in enumerate(self.cells):
            cell.compute()
            if cell.valid:
                self._means[k] = cell.mean
                self._information[k] = cell.information
                self._valid[k] = True
            else:
                self._valid[k] = False

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def likelihoods(self, points: np.ndarray) -> np.ndarray:
        """
        Per-point likelihood of map-frame points.

        Points outside the grid or in invalid cells score 0.

        Args:
            points: Map-frame points, shape (N, 2), or a list of Point.

        Returns:
            Array of shape (N,) with values in [0, 1].
        """
        points = _as_point_set(points).reshape(-1, 2)
        scores = np.zeros(points.shape[0])
        if points.shape[0] == 0:
            return scores

        index, inside = self._cell_indices(points)
        candidates = np.flatnonzero(inside)
        usable = self._valid[index[candidates]]
        selected = candidates[usable]
        if selected.size == 0:
            return scores

        k = index[selected]
        d = points[selected] - self._means[k]
        mahalanobis = np.einsum("ni,nij,nj->n", d, self._information[k], d)
        scores[selected] = np.exp(-0.5 * mahalanobis)
        return scores

    def score_points(self, points: np.ndarray) -> float:
        """Sum of likelihoods of map-frame points (the matching objective)."""
        return float(np.sum(self.likelihoods(points)))

    def likelihood(self, points: Union[PointLike, np.ndarray]) -> float:
        """
        Likelihood of a single point, or summed likelihood of a point set.

        Args:
            points: A Point / (2,) array, or an (N, 2) array or list of
                    Point values in the map frame.

        Returns:
            Cell score for a single point, sum of scores for a point set.
        """
        if isinstance(points, Point):
            points = points.to_array()
        points = _as_point_set(points)
        if points.ndim == 1:
            return float(self.likelihoods(_as_point_array(points).reshape(1, 2))[0])
        return self.score_points(points)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def valid_cell_count(self) -> int:
        """Number of cells with a usable Gaussian after the last compute."""
        return int(np.count_nonzero(self._valid))

    def is_empty(self) -> bool:
        """True when no cell can contribute a score."""
        return self.valid_cell_count == 0

    def valid_cells(self) -> List[Tuple[int, Cell]]:
        """(index, cell) pairs of cells with a usable Gaussian."""
        return [(int(k), self.cells[k]) for k in np.flatnonzero(self._valid)]

    def __repr__(self) -> str:
        return (
            f"NDT(resolution={self.resolution}, cells={self.size_x}x{self.size_y}, "
            f"origin=({self.origin_x}, {self.origin_y}), valid={self.valid_cell_count})"
        )
